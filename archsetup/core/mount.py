"""
Filesystem mounting module.

This module mounts the new filesystems under the target root in dependency
order, activates swap, and releases everything again. Every mount and swap
activation is recorded so a failed installation can be unwound.
"""
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from archsetup.config import create_directory
from archsetup.utils.command import CommandRunner
from archsetup.utils.format import TermColors, colorize
from archsetup.utils.types import PartitionTable
from archsetup.core.exceptions import MountError

logger = logging.getLogger('archsetup')

# Mount options written to the mount table through the active mounts
MOUNT_OPTIONS = {
    "/": "defaults,noatime",
    "/boot": "defaults,umask=0077",
    "/home": "defaults,noatime,nodev,nosuid",
}


@dataclass
class MountTracker:
    """Mounts and swap devices activated during one installation run"""
    mounted: List[Path] = field(default_factory=list)
    swaps: List[str] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return bool(self.mounted or self.swaps)


def _mount_filesystem(
    device: str,
    mount_point: Path,
    options: str,
    cmd_runner: CommandRunner,
    tracker: MountTracker
) -> None:
    """
    Mount a filesystem and record it.

    Raises:
        MountError: If mount command fails
    """
    try:
        cmd_runner.run(["mount", "-o", options, device, str(mount_point)])
    except subprocess.CalledProcessError as e:
        raise MountError(f"Failed to mount {device} to {mount_point}: {e.stderr or e}") from e
    tracker.mounted.append(mount_point)
    logger.info(colorize(f"Mounted {device} to {mount_point} with options: {options}",
                         TermColors.SUCCESS, cmd_runner.colored_output))


def activate_swap(device: str, cmd_runner: CommandRunner, tracker: MountTracker) -> None:
    """
    Activate a swap partition whose signature has already been written.

    Raises:
        MountError: If swapon fails
    """
    try:
        cmd_runner.run(["swapon", device])
    except subprocess.CalledProcessError as e:
        raise MountError(f"Failed to activate swap on {device}: {e.stderr or e}") from e
    tracker.swaps.append(device)
    logger.info(f"Activated swap on {device}")


def mount_filesystems(
    partitions: PartitionTable,
    target: str,
    cmd_runner: CommandRunner,
    tracker: MountTracker
) -> None:
    """
    Mount filesystems to the target directory.

    The root filesystem goes first, then the ESP on /boot and home beneath
    it, then swap is activated.

    Args:
        partitions: Dict mapping partition roles to device paths
        target: Target root directory
        cmd_runner: CommandRunner instance for executing commands
        tracker: Records what has been mounted for later release

    Raises:
        MountError: If there's an error in mounting
    """
    target_path = Path(target)
    create_directory(target_path, cmd_runner, "target")

    _mount_filesystem(partitions["ROOT"], target_path, MOUNT_OPTIONS["/"], cmd_runner, tracker)

    for role, mountpoint in (("EFI", "/boot"), ("HOME", "/home")):
        path = target_path / mountpoint.lstrip("/")
        try:
            create_directory(path, cmd_runner, mountpoint)
        except OSError as e:
            raise MountError(f"Cannot create mount point {path}: {e}") from e
        _mount_filesystem(partitions[role], path, MOUNT_OPTIONS[mountpoint], cmd_runner, tracker)

    if "SWAP" in partitions:
        activate_swap(partitions["SWAP"], cmd_runner, tracker)

    logger.info(colorize("All filesystems mounted successfully", TermColors.SUCCESS, cmd_runner.colored_output))


def release_mounts(target: str, cmd_runner: CommandRunner, tracker: MountTracker) -> List[str]:
    """
    Deactivate swap and unmount everything recorded under the target.

    Never raises; each failure is logged and returned.

    Args:
        target: Target root directory
        cmd_runner: CommandRunner instance for executing commands
        tracker: Mounts and swaps to release

    Returns:
        Human readable descriptions of the operations that failed
    """
    failures = []

    for device in reversed(tracker.swaps):
        result = cmd_runner.run(["swapoff", device], check=False)
        if result.returncode != 0:
            failures.append(f"swapoff {device}: {result.stderr.strip()}")
    tracker.swaps.clear()

    # Children before parents
    for mount_point in reversed(tracker.mounted):
        result = cmd_runner.run(["umount", str(mount_point)], check=False)
        if result.returncode != 0:
            failures.append(f"umount {mount_point}: {result.stderr.strip()}")

    if tracker.mounted and failures:
        # Anything still busy under the target, bind mounts from arch-chroot included
        result = cmd_runner.run(["umount", "-R", target], check=False)
        if result.returncode == 0:
            failures = [f for f in failures if not f.startswith("umount ")]
    tracker.mounted.clear()

    for failure in failures:
        logger.error(colorize(f"Cleanup failed: {failure}", TermColors.ERROR, cmd_runner.colored_output))

    return failures
