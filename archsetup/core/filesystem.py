"""
Filesystem creation module.

This module writes the filesystems and the swap signature of the planned
partitions, one device at a time.
"""
import logging
import subprocess
from typing import List

from archsetup.utils.command import CommandRunner
from archsetup.utils.types import PartitionTable
from archsetup.core.exceptions import FilesystemError
from archsetup.core.partition import PartitionExtent

logger = logging.getLogger('archsetup')

FILESYSTEM_LABELS = {
    "EFI": "EFI",
    "ROOT": "root",
    "SWAP": "swap",
    "HOME": "home",
}


def mkfs_command(filesystem_type: str, device: str, label: str) -> List[str]:
    """
    Build the command creating a filesystem on a partition.

    Args:
        filesystem_type: Type of filesystem to create (vfat, swap, ext4, btrfs, xfs)
        device: Device path to create filesystem on
        label: Label for the filesystem

    Returns:
        Command as list of strings

    Raises:
        FilesystemError: If the filesystem type is not supported
    """
    if filesystem_type == "vfat":
        return ["mkfs.fat", "-F32", "-n", label, device]
    if filesystem_type == "swap":
        return ["mkswap", "-L", label, device]
    if filesystem_type == "ext4":
        return ["mkfs.ext4", "-F", "-L", label, device]
    if filesystem_type == "btrfs":
        return ["mkfs.btrfs", "-f", "-L", label, device]
    if filesystem_type == "xfs":
        return ["mkfs.xfs", "-f", "-L", label, device]
    raise FilesystemError(f"Unsupported filesystem type: {filesystem_type}")


def create_filesystems(
    partitions: PartitionTable,
    extents: List[PartitionExtent],
    cmd_runner: CommandRunner
) -> None:
    """
    Create the filesystem of every planned partition.

    Args:
        partitions: Dict mapping partition roles to device paths
        extents: Planned extents, giving the filesystem of each role
        cmd_runner: CommandRunner instance for executing commands

    Raises:
        FilesystemError: On the first filesystem that cannot be created
    """
    logger.info("Creating filesystems")

    for extent in extents:
        device = partitions[extent.role]
        cmd = mkfs_command(extent.filesystem, device, FILESYSTEM_LABELS[extent.role])
        try:
            cmd_runner.run(cmd)
        except subprocess.CalledProcessError as e:
            raise FilesystemError(
                f"Failed to create {extent.filesystem} filesystem on {device}: {e.stderr or e}"
            ) from e
        logger.info(f"Created {extent.filesystem} filesystem on {device}")

    logger.info("All filesystems created successfully")
