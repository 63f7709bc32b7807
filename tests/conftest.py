"""
Shared fixtures for the archsetup tests.

Every test runs against a simulated CommandRunner, so no disk, mount or
chroot command ever reaches the host.
"""
import os
import subprocess

import pytest

from archsetup.utils.command import CommandRunner, SimulationMode
from archsetup.utils.validation import SystemCatalog, ValidationRules
from archsetup.core.hardware import HardwareProbe
from archsetup.core.pipeline import InstallPipeline
from archsetup.core.settings import InstallConfig, select_disk

SIMULATED_DISK = "/dev/sda"
# 100 GiB exactly, 102400 MiB
SMALL_DISK_BYTES = 100 * 1024 ** 3


class RecordingRunner(CommandRunner):
    """Runs no command but writes the files of the target for real."""

    def __init__(self):
        super().__init__(SimulationMode.DISABLED, colored_output=False)

    def run(self, cmd, check=True, **kwargs):
        self.commands_run.append({"command": list(cmd), "simulated": True})
        return self._simulate_command(cmd, **kwargs)


class FailingRunner(CommandRunner):
    """Simulated runner whose chosen tools fail with exit code 1."""

    def __init__(self, fail_on=()):
        super().__init__(SimulationMode.SIMULATE, colored_output=False)
        self.fail_on = set(fail_on)

    def _tools(self, cmd):
        tools = {os.path.basename(cmd[0])}
        # Commands run in the new root are named by their own executable
        if tools == {"arch-chroot"} and len(cmd) > 2:
            tools.add(cmd[2])
        return tools

    def run(self, cmd, check=True, **kwargs):
        result = super().run(cmd, check=check, **kwargs)
        if self._tools(cmd) & self.fail_on:
            if check:
                raise subprocess.CalledProcessError(1, cmd, output="", stderr=f"{cmd[0]} failed")
            result.returncode = 1
            result.stderr = f"{cmd[0]} failed"
        return result


# -----------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------
@pytest.fixture
def runner():
    """Simulated runner without colors."""
    return CommandRunner(SimulationMode.SIMULATE, colored_output=False)


@pytest.fixture
def zoneinfo_dir(tmp_path):
    """Minimal zoneinfo tree with UTC and one Region/City zone."""
    root = tmp_path / "zoneinfo"
    (root / "Europe").mkdir(parents=True)
    (root / "UTC").write_text("TZif")
    (root / "Europe" / "London").write_text("TZif")
    (root / "posix" / "Europe").mkdir(parents=True)
    (root / "posix" / "Europe" / "Paris").write_text("TZif")
    return root


@pytest.fixture
def locale_gen(tmp_path):
    """locale.gen with two commented locales."""
    path = tmp_path / "locale.gen"
    path.write_text(
        "# Configuration file for locale-gen\n"
        "#\n"
        "#de_DE.UTF-8 UTF-8\n"
        "#en_US.UTF-8 UTF-8\n"
        "#en_US ISO-8859-1\n"
    )
    return path


@pytest.fixture
def cpuinfo(tmp_path):
    """cpuinfo dump of an Intel machine."""
    path = tmp_path / "cpuinfo"
    path.write_text("processor\t: 0\nvendor_id\t: GenuineIntel\nmodel name\t: Intel(R) Core(TM)\n")
    return path


def make_rules(cmd_runner, zoneinfo_dir, locale_gen):
    return ValidationRules(cmd_runner, SystemCatalog(cmd_runner, str(zoneinfo_dir), str(locale_gen)))


@pytest.fixture
def rules(runner, zoneinfo_dir, locale_gen):
    return make_rules(runner, zoneinfo_dir, locale_gen)


@pytest.fixture
def probe(runner, cpuinfo):
    return HardwareProbe(runner, str(cpuinfo))


def make_config(cmd_runner, rules, disk_bytes=SMALL_DISK_BYTES, **values):
    """Valid configuration with the simulated disk selected."""
    cmd_runner.set_simulation_params({"disk_size_bytes": disk_bytes})
    config = InstallConfig(root_password="rootpw", **values)
    select_disk(config, SIMULATED_DISK, rules, cmd_runner)
    return config


@pytest.fixture
def config(runner, rules):
    return make_config(runner, rules, swap_size_gib=2)


@pytest.fixture
def make_pipeline(rules, probe, tmp_path):
    """Factory for pipelines sharing the test's rules and probe."""
    def _make(config, cmd_runner, **kwargs):
        return InstallPipeline(config, rules, probe, cmd_runner, str(tmp_path / "mnt"), **kwargs)
    return _make


@pytest.fixture
def failing_runner():
    """Factory for simulated runners failing on the given tools."""
    return FailingRunner


@pytest.fixture
def config_factory(runner, rules):
    """Factory for valid configurations on a simulated disk of the given size."""
    def _make(disk_bytes=SMALL_DISK_BYTES, **values):
        return make_config(runner, rules, disk_bytes, **values)
    return _make


@pytest.fixture
def recording_runner():
    return RecordingRunner()
