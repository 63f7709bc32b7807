"""
Installation pipeline.

This module runs an installation as an explicit state machine:

    IDLE -> VALIDATING -> CONFIRMED -> PARTITIONING -> FORMATTING -> MOUNTING
         -> BOOTSTRAPPING_BASE -> CONFIGURING_SYSTEM -> INSTALLING_BOOTLOADER -> DONE

with ABORTED reachable from every non-terminal state. Stages run strictly in
order and are never retried. Once the operator has confirmed, any failure or
interrupt goes through one cleanup path that unmounts the target and turns
swap off before the failure is reported.
"""
import logging
import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional

from archsetup.config.fstab import generate_fstab
from archsetup.config.system import configure_system
from archsetup.utils.command import CommandRunner
from archsetup.utils.format import TermColors, colorize, mib_to_human_readable
from archsetup.utils.types import PartitionTable
from archsetup.utils.validation import ValidationRules, check_prerequisites
from archsetup.core.bootloader import install_bootloader
from archsetup.core.bootstrap import bootstrap_base_system, build_package_list
from archsetup.core.exceptions import ArchsetupError, CapacityError, PreconditionError, StageFailure, ValidationError
from archsetup.core.filesystem import create_filesystems
from archsetup.core.hardware import HardwareProbe
from archsetup.core.mount import MountTracker, mount_filesystems, release_mounts
from archsetup.core.partition import PartitionExtent, create_partitions, map_partitions
from archsetup.core.settings import InstallConfig, collect_validation_errors, plan_for

logger = logging.getLogger('archsetup')

DEFAULT_TARGET = "/mnt"


class PipelineState(Enum):
    """States of one installation run"""
    IDLE = "idle"
    VALIDATING = "validating"
    CONFIRMED = "confirmed"
    PARTITIONING = "partitioning"
    FORMATTING = "formatting"
    MOUNTING = "mounting"
    BOOTSTRAPPING_BASE = "bootstrapping base"
    CONFIGURING_SYSTEM = "configuring system"
    INSTALLING_BOOTLOADER = "installing bootloader"
    DONE = "done"
    ABORTED = "aborted"


TERMINAL_STATES = (PipelineState.DONE, PipelineState.ABORTED)


@dataclass(frozen=True)
class Stage:
    """One ordered, side-effecting step of the installation"""
    name: str
    state: PipelineState
    action: Callable[[], None]
    destructive: bool = False


@dataclass(frozen=True)
class InstallPlan:
    """Everything an installation run will do, computed before confirmation"""
    extents: List[PartitionExtent]
    partitions: PartitionTable
    packages: List[str]
    microcode_package: Optional[str]
    gpu_package: Optional[str]


class _InterruptLatch:
    requested = False


@contextmanager
def deferred_interrupts() -> Iterator[_InterruptLatch]:
    """
    Turn SIGINT into a flag checked between stages.

    Signal handlers can only be installed from the main thread; elsewhere the
    latch is returned unarmed.
    """
    latch = _InterruptLatch()
    if threading.current_thread() is not threading.main_thread():
        yield latch
        return

    def _handler(signum, frame):
        latch.requested = True
        logger.warning("Interrupt received, stopping after the current stage")

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield latch
    finally:
        signal.signal(signal.SIGINT, previous)


def describe_plan(config: InstallConfig, plan: InstallPlan, target: str) -> str:
    """Full summary of an installation, shown for the destructive confirmation."""
    lines = [
        f"Target disk:  {config.disk} ({mib_to_human_readable(config.disk_capacity_mib or 0)})",
        f"Mounted at:   {target}",
        "",
        "Partitions:",
    ]
    for extent in plan.extents:
        lines.append(
            f"  {plan.partitions[extent.role]:<16} {extent.role:<5} {extent.filesystem:<6} "
            f"{extent.start_mib:>8} - {extent.end_mib:<8} MiB  ({mib_to_human_readable(extent.size_mib)})"
        )
    lines += [
        "",
        f"Packages:     {' '.join(plan.packages)}",
        f"Bootloader:   {config.bootloader}",
        f"Hostname:     {config.hostname}",
        f"User:         {config.username or '(none)'}"
        + (" with sudo" if config.username and config.sudo_enabled else ""),
        f"Timezone:     {config.timezone}",
        f"Locale:       {config.locale}",
        f"Keymap:       {config.keymap}",
        "",
        f"ALL DATA ON {config.disk} WILL BE ERASED.",
    ]
    return "\n".join(lines)


class InstallPipeline:
    """
    Drives one installation of a validated configuration onto its disk.

    A pipeline that reached DONE or ABORTED cannot be run again; build a new
    one for the next attempt.
    """

    def __init__(
        self,
        config: InstallConfig,
        rules: ValidationRules,
        probe: HardwareProbe,
        cmd_runner: CommandRunner,
        target: str = DEFAULT_TARGET,
        keep_mounted: bool = False
    ):
        self.config = config
        self.rules = rules
        self.probe = probe
        self.cmd_runner = cmd_runner
        self.target = target
        self.keep_mounted = keep_mounted
        self.tracker = MountTracker()
        self.state = PipelineState.IDLE
        self.history: List[PipelineState] = [PipelineState.IDLE]
        self.failed_stage: Optional[str] = None
        self.last_completed_stage: Optional[str] = None

    def _transition(self, state: PipelineState) -> None:
        if self.state in TERMINAL_STATES:
            raise ArchsetupError(f"Pipeline is {self.state.value}, no further transitions allowed")
        logger.debug(f"Pipeline state: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def prepare(self) -> InstallPlan:
        """
        Re-validate the configuration and compute the plan.

        Raises:
            ValidationError: With every failing field in `reasons`
            CapacityError: If the partition sizes no longer fit the disk
            PreconditionError: If the live system can no longer run the installation
        """
        if self.state is not PipelineState.IDLE:
            raise ArchsetupError(f"Cannot start an installation from state {self.state.value}")
        self._transition(PipelineState.VALIDATING)

        reasons = collect_validation_errors(self.config, self.rules)
        if reasons:
            self._transition(PipelineState.ABORTED)
            raise ValidationError("Configuration is incomplete or invalid", reasons=reasons)

        try:
            extents = plan_for(self.config)
        except CapacityError:
            self._transition(PipelineState.ABORTED)
            raise

        try:
            check_prerequisites(self.cmd_runner, self.config.filesystem)
        except PreconditionError:
            self._transition(PipelineState.ABORTED)
            raise

        microcode_package = self.probe.resolve_microcode(self.config.microcode)
        gpu_package = self.probe.resolve_gpu_driver(self.config.gpu_driver)
        return InstallPlan(
            extents=extents,
            partitions=map_partitions(self.config.disk, extents),
            packages=build_package_list(self.config.filesystem, microcode_package, gpu_package),
            microcode_package=microcode_package,
            gpu_package=gpu_package,
        )

    def build_stages(self, plan: InstallPlan) -> List[Stage]:
        config = self.config
        runner = self.cmd_runner
        target = self.target

        return [
            Stage("partition disk", PipelineState.PARTITIONING,
                  lambda: create_partitions(config.disk, plan.extents, config.disk_capacity_mib, runner),
                  destructive=True),
            Stage("create filesystems", PipelineState.FORMATTING,
                  lambda: create_filesystems(plan.partitions, plan.extents, runner),
                  destructive=True),
            Stage("mount filesystems", PipelineState.MOUNTING,
                  lambda: mount_filesystems(plan.partitions, target, runner, self.tracker)),
            Stage("install base system", PipelineState.BOOTSTRAPPING_BASE,
                  lambda: bootstrap_base_system(target, plan.packages, runner)),
            Stage("write mount table", PipelineState.CONFIGURING_SYSTEM,
                  lambda: generate_fstab(target, runner)),
            Stage("configure system", PipelineState.CONFIGURING_SYSTEM,
                  lambda: configure_system(config, target, runner)),
            Stage("install bootloader", PipelineState.INSTALLING_BOOTLOADER,
                  lambda: install_bootloader(config.bootloader, target, plan.partitions["ROOT"],
                                             plan.microcode_package, runner)),
        ]

    def run(self, confirm: Callable[[str], bool]) -> bool:
        """
        Validate, ask for confirmation, then run every stage.

        Args:
            confirm: Receives the plan summary, returns True to proceed

        Returns:
            True when the installation completed, False when the operator declined

        Raises:
            ValidationError: If the configuration is invalid (nothing was touched)
            CapacityError: If the partitions do not fit (nothing was touched)
            PreconditionError: If the live system cannot install (nothing was touched)
            StageFailure: If a stage failed or the run was interrupted; cleanup already ran
        """
        plan = self.prepare()

        if not confirm(describe_plan(self.config, plan, self.target)):
            logger.info("Installation declined, nothing was changed")
            self._transition(PipelineState.IDLE)
            return False

        self._transition(PipelineState.CONFIRMED)
        stages = self.build_stages(plan)

        with deferred_interrupts() as interrupt:
            for number, stage in enumerate(stages, 1):
                if interrupt.requested:
                    self._abort(stage.name, "interrupted by operator", started=False)
                self._transition(stage.state)
                logger.info(colorize(f"[{number}/{len(stages)}] {stage.name}",
                                     TermColors.WARNING, self.cmd_runner.colored_output))
                if stage.destructive:
                    logger.warning(f"Erasing data on {self.config.disk}")
                try:
                    stage.action()
                except KeyboardInterrupt as e:
                    self._abort(stage.name, "interrupted by operator", e)
                except Exception as e:
                    self._abort(stage.name, str(e), e)
                self.last_completed_stage = stage.name

        self._transition(PipelineState.DONE)
        logger.info(colorize("Installation completed successfully",
                             TermColors.SUCCESS, self.cmd_runner.colored_output))

        if self.keep_mounted:
            logger.info(f"The new system is still mounted at {self.target}")
        else:
            release_mounts(self.target, self.cmd_runner, self.tracker)
        return True

    def _abort(self, stage: str, detail: str, cause: Optional[BaseException] = None, started: bool = True) -> None:
        failure = StageFailure(stage, detail, started)
        if started:
            self.failed_stage = stage
        self._transition(PipelineState.ABORTED)
        logger.error(colorize(str(failure), TermColors.ERROR, self.cmd_runner.colored_output))
        self.cleanup()
        raise failure from cause

    def cleanup(self) -> List[str]:
        """
        Release every mount and swap device activated by this run.

        Returns:
            Descriptions of the cleanup operations that failed
        """
        if not self.tracker.active:
            return []
        logger.info("Cleaning up: deactivating swap and unmounting the target")
        return release_mounts(self.target, self.cmd_runner, self.tracker)
