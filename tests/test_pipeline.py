"""
Tests for the installation pipeline state machine and its cleanup path.
"""
import logging
import signal

import pytest

import archsetup.core.pipeline as pipeline_module
from archsetup.core.exceptions import ArchsetupError, CapacityError, StageFailure, ValidationError
from archsetup.core.pipeline import PipelineState, describe_plan, deferred_interrupts
from archsetup.core.settings import InstallConfig


def _accept(summary):
    return True


def _decline(summary):
    return False


def _tools(cmd_runner):
    return [record["command"][0] for record in cmd_runner.commands_run]


# -----------------------------------------------------------------------
# Before confirmation
# -----------------------------------------------------------------------
class TestPreparation:
    """Nothing touches the disk before the operator confirms."""

    def test_invalid_config_aborts_without_commands(self, runner, make_pipeline):
        pipeline = make_pipeline(InstallConfig(), runner)
        with pytest.raises(ValidationError) as excinfo:
            pipeline.run(_accept)
        assert "Disk is not set" in excinfo.value.reasons
        assert pipeline.state is PipelineState.ABORTED
        assert runner.commands_named("parted") == []

    def test_capacity_rechecked(self, runner, config, make_pipeline):
        # Set behind the editor's back
        config.root_size_gib = 500
        pipeline = make_pipeline(config, runner)
        with pytest.raises(CapacityError):
            pipeline.run(_accept)
        assert pipeline.state is PipelineState.ABORTED
        assert runner.commands_named("parted") == []

    def test_decline_returns_to_idle(self, runner, config, make_pipeline):
        pipeline = make_pipeline(config, runner)
        commands_before = len(runner.commands_run)
        assert pipeline.run(_decline) is False
        assert pipeline.state is PipelineState.IDLE
        assert pipeline.history == [PipelineState.IDLE, PipelineState.VALIDATING, PipelineState.IDLE]
        assert _tools(runner)[commands_before:].count("parted") == 0

    def test_summary_names_the_disk(self, runner, config, make_pipeline):
        summaries = []
        make_pipeline(config, runner).run(lambda summary: summaries.append(summary) or False)
        assert "ALL DATA ON /dev/sda WILL BE ERASED." in summaries[0]
        assert "/dev/sda3" in summaries[0]

    def test_describe_plan_lists_packages(self, runner, config, make_pipeline):
        pipeline = make_pipeline(config, runner)
        plan = pipeline.prepare()
        summary = describe_plan(config, plan, "/mnt")
        assert "intel-ucode" in summary
        assert "xf86-video-intel" in summary

    def test_prepare_only_once(self, runner, config, make_pipeline):
        pipeline = make_pipeline(config, runner)
        pipeline.prepare()
        with pytest.raises(ArchsetupError):
            pipeline.prepare()


# -----------------------------------------------------------------------
# Successful run
# -----------------------------------------------------------------------
class TestSuccessfulRun:
    """All stages in order, then everything released."""

    def test_state_history(self, runner, config, make_pipeline):
        pipeline = make_pipeline(config, runner)
        assert pipeline.run(_accept) is True
        assert pipeline.history == [
            PipelineState.IDLE,
            PipelineState.VALIDATING,
            PipelineState.CONFIRMED,
            PipelineState.PARTITIONING,
            PipelineState.FORMATTING,
            PipelineState.MOUNTING,
            PipelineState.BOOTSTRAPPING_BASE,
            PipelineState.CONFIGURING_SYSTEM,
            PipelineState.CONFIGURING_SYSTEM,
            PipelineState.INSTALLING_BOOTLOADER,
            PipelineState.DONE,
        ]

    def test_command_order(self, runner, config, make_pipeline):
        make_pipeline(config, runner).run(_accept)
        tools = _tools(runner)
        assert tools.index("parted") < tools.index("mkfs.fat") < tools.index("mount")
        assert tools.index("mkswap") < tools.index("swapon")
        assert tools.index("swapon") < tools.index("pacstrap") < tools.index("genfstab")
        assert tools.index("genfstab") < tools.index("arch-chroot")

    def test_mount_order(self, runner, config, make_pipeline, tmp_path):
        make_pipeline(config, runner).run(_accept)
        target = tmp_path / "mnt"
        assert [cmd[-1] for cmd in runner.commands_named("mount")] == [
            str(target), str(target / "boot"), str(target / "home")
        ]

    def test_everything_released_after_success(self, runner, config, make_pipeline, tmp_path):
        pipeline = make_pipeline(config, runner)
        pipeline.run(_accept)
        target = tmp_path / "mnt"
        assert runner.commands_named("swapoff") == [["swapoff", "/dev/sda3"]]
        assert [cmd[-1] for cmd in runner.commands_named("umount")] == [
            str(target / "home"), str(target / "boot"), str(target)
        ]
        assert not pipeline.tracker.active

    def test_destructive_stages_announced(self, runner, config, make_pipeline, caplog):
        with caplog.at_level(logging.WARNING, logger="archsetup"):
            make_pipeline(config, runner).run(_accept)
        erasing = [record for record in caplog.records if record.getMessage() == "Erasing data on /dev/sda"]
        assert len(erasing) == 2

    def test_keep_mounted(self, runner, config, make_pipeline):
        pipeline = make_pipeline(config, runner, keep_mounted=True)
        pipeline.run(_accept)
        assert runner.commands_named("umount") == []
        assert pipeline.tracker.active

    def test_no_swap_partition(self, runner, config_factory, make_pipeline):
        config = config_factory()
        make_pipeline(config, runner).run(_accept)
        assert runner.commands_named("mkswap") == []
        assert runner.commands_named("swapon") == []

    def test_completed_pipeline_cannot_run_again(self, runner, config, make_pipeline):
        pipeline = make_pipeline(config, runner)
        pipeline.run(_accept)
        with pytest.raises(ArchsetupError):
            pipeline.run(_accept)


# -----------------------------------------------------------------------
# Failures and interrupts
# -----------------------------------------------------------------------
class TestAbort:
    """Failures stop the run and go through cleanup."""

    def test_bootstrap_failure_releases_mounts(self, config, make_pipeline, failing_runner):
        runner = failing_runner({"pacstrap"})
        pipeline = make_pipeline(config, runner)
        with pytest.raises(StageFailure) as excinfo:
            pipeline.run(_accept)

        assert excinfo.value.stage == "install base system"
        assert pipeline.failed_stage == "install base system"
        assert excinfo.value.started is True
        assert pipeline.last_completed_stage == "mount filesystems"
        assert pipeline.state is PipelineState.ABORTED
        assert runner.commands_named("swapoff") == [["swapoff", "/dev/sda3"]]
        assert len(runner.commands_named("umount")) == 3
        assert runner.commands_named("arch-chroot") == []
        assert runner.commands_named("genfstab") == []

    def test_partitioning_failure_has_nothing_to_release(self, config, make_pipeline, failing_runner):
        runner = failing_runner({"parted"})
        pipeline = make_pipeline(config, runner)
        with pytest.raises(StageFailure) as excinfo:
            pipeline.run(_accept)
        assert excinfo.value.stage == "partition disk"
        assert runner.commands_named("umount") == []
        assert runner.commands_named("mkfs.fat") == []

    def test_bootloader_failure(self, config, make_pipeline, failing_runner):
        runner = failing_runner({"grub-install"})
        with pytest.raises(StageFailure) as excinfo:
            make_pipeline(config, runner).run(_accept)
        assert excinfo.value.stage == "install bootloader"
        assert len(runner.commands_named("umount")) == 3

    def test_cleanup_failure_falls_back_to_recursive_unmount(self, config, make_pipeline, failing_runner,
                                                             tmp_path):
        runner = failing_runner({"pacstrap", "umount"})
        with pytest.raises(StageFailure):
            make_pipeline(config, runner).run(_accept)
        assert runner.commands_named("umount")[-1] == ["umount", "-R", str(tmp_path / "mnt")]

    def test_interrupt_inside_a_stage(self, runner, config, make_pipeline, monkeypatch):
        def interrupted(*args):
            raise KeyboardInterrupt

        monkeypatch.setattr(pipeline_module, "bootstrap_base_system", interrupted)
        pipeline = make_pipeline(config, runner)
        with pytest.raises(StageFailure) as excinfo:
            pipeline.run(_accept)
        assert excinfo.value.stage == "install base system"
        assert "interrupted" in excinfo.value.detail
        assert len(runner.commands_named("umount")) == 3

    def test_interrupt_deferred_to_stage_boundary(self, runner, config, make_pipeline, monkeypatch, caplog):
        original = pipeline_module.mount_filesystems

        def mount_then_interrupt(*args):
            original(*args)
            signal.raise_signal(signal.SIGINT)

        monkeypatch.setattr(pipeline_module, "mount_filesystems", mount_then_interrupt)
        pipeline = make_pipeline(config, runner)
        with pytest.raises(StageFailure) as excinfo:
            pipeline.run(_accept)

        # The mount stage completed, the next one never started
        assert excinfo.value.stage == "install base system"
        assert excinfo.value.started is False
        assert str(excinfo.value).startswith("Interrupted before stage 'install base system'")
        assert pipeline.failed_stage is None
        assert pipeline.last_completed_stage == "mount filesystems"
        assert "Stage 'install base system' failed" not in caplog.text
        assert PipelineState.BOOTSTRAPPING_BASE not in pipeline.history
        assert runner.commands_named("pacstrap") == []
        assert len(runner.commands_named("umount")) == 3

    def test_sigint_handler_restored(self):
        previous = signal.getsignal(signal.SIGINT)
        with deferred_interrupts() as latch:
            assert latch.requested is False
        assert signal.getsignal(signal.SIGINT) is previous
