"""
Disk information and validation module.

This module provides functions for querying disk information and validating
that a disk can be used as an installation target.
"""
import os
import stat
import logging
import subprocess
from typing import List

from archsetup.utils.command import CommandRunner
from archsetup.utils.types import DiskInfo
from archsetup.utils.format import TermColors, colorize, MIB
from archsetup.core.exceptions import DiskNotFoundError

logger = logging.getLogger('archsetup')

# Device types never offered as installation targets
EXCLUDED_DEVICE_TYPES = ("rom", "loop")


def is_block_device(path: str) -> bool:
    """Return True if path exists and is a block device node."""
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def is_disk_available(disk: str, cmd_runner: CommandRunner) -> bool:
    """
    Check if the disk exists and is a whole-disk block device.

    Args:
        disk: Path to the disk device
        cmd_runner: CommandRunner instance for executing commands

    Returns:
        True if disk exists and is a block device, False otherwise
    """
    # In simulation mode, assume disk is available
    if cmd_runner.simulating:
        return True

    if not is_block_device(disk):
        return False

    try:
        result = cmd_runner.run(["lsblk", "-d", "-n", "-o", "TYPE", disk], check=False)
        return result.stdout.strip().lower() == "disk"
    except subprocess.CalledProcessError as e:
        logger.warning(colorize(f"Error checking if disk is available: {e}",
                                TermColors.WARNING, cmd_runner.colored_output))
        return False


def get_mountpoints(disk: str, cmd_runner: CommandRunner) -> List[str]:
    """
    List the active mount points (swap included) of a disk and its partitions.

    Args:
        disk: Path to the disk device
        cmd_runner: CommandRunner instance for executing commands

    Returns:
        Mount points currently in use, empty if the disk is free
    """
    result = cmd_runner.run(["lsblk", "-n", "-o", "MOUNTPOINTS", disk], check=False)
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def is_disk_mounted(disk: str, cmd_runner: CommandRunner) -> bool:
    return bool(get_mountpoints(disk, cmd_runner))


def get_disk_info(disk: str, cmd_runner: CommandRunner) -> DiskInfo:
    """
    Get information about the disk.

    Args:
        disk: Path to the disk device
        cmd_runner: CommandRunner instance for executing commands

    Returns:
        DiskInfo object containing disk information

    Raises:
        DiskNotFoundError: If disk is not found or its size cannot be read
    """
    if not is_disk_available(disk, cmd_runner):
        raise DiskNotFoundError(f"Disk {disk} not found or is not a block device", field="disk")

    try:
        result = cmd_runner.run(["blockdev", "--getsize64", disk])
        size_bytes = int(result.stdout.strip())
    except (subprocess.CalledProcessError, ValueError) as e:
        raise DiskNotFoundError(f"Cannot read the size of {disk}: {e}", field="disk") from e

    model_result = cmd_runner.run(["lsblk", "-d", "-n", "-o", "MODEL", disk], check=False)
    disk_info = DiskInfo(
        size_bytes=size_bytes,
        size_mib=size_bytes // MIB,
        model=model_result.stdout.strip() or "Unknown",
    )
    logger.info(f"Disk {disk}: {disk_info['size_mib']} MiB, model {disk_info['model']}")
    return disk_info


def list_disks(cmd_runner: CommandRunner) -> List[str]:
    """
    List candidate installation disks as display lines (NAME SIZE TYPE).

    Args:
        cmd_runner: CommandRunner instance for executing commands

    Returns:
        One line per disk, read-only and loop devices excluded
    """
    result = cmd_runner.run(["lsblk", "-d", "-n", "-l", "-o", "NAME,SIZE,TYPE"], check=False)
    disks = []
    for line in result.stdout.splitlines():
        fields = line.split()
        if len(fields) < 3 or fields[2] in EXCLUDED_DEVICE_TYPES:
            continue
        disks.append(f"/dev/{fields[0]}  {fields[1]}")
    return disks
