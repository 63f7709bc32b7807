"""
Disk partitioning module.

This module computes the partition layout of the target disk and applies it
with parted. Layout arithmetic is done in MiB and is free of side effects so
the same plan can be checked on every edit and again before installing.
"""
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from archsetup.utils.command import CommandRunner
from archsetup.utils.format import TermColors, colorize, mib_to_human_readable
from archsetup.utils.types import PartitionRole, PartitionTable
from archsetup.core.exceptions import CapacityError, PartitioningError

logger = logging.getLogger('archsetup')

# Constants
ALIGNMENT_MIB = 1          # Gap left before the first partition
MIB_PER_GIB = 1024
DEFAULT_EFI_SIZE_MIB = 1024

# Filesystem hints given to parted for each role
PARTED_FS_TYPES = {
    "EFI": "fat32",
    "SWAP": "linux-swap",
}


@dataclass(frozen=True)
class PartitionExtent:
    """One planned partition, [start_mib, end_mib) on the disk"""
    role: PartitionRole
    start_mib: int
    end_mib: int
    filesystem: str

    @property
    def size_mib(self) -> int:
        return self.end_mib - self.start_mib


def _extent(role: PartitionRole, start: int, length: int, filesystem: str, capacity: int) -> PartitionExtent:
    end = start + length
    if length <= 0:
        raise CapacityError(f"{role} partition would have no space (requested {length} MiB)")
    if end > capacity:
        raise CapacityError(
            f"{role} partition would end at {end} MiB, beyond the disk capacity of {capacity} MiB "
            f"({mib_to_human_readable(capacity)})"
        )
    return PartitionExtent(role, start, end, filesystem)


def plan_partitions(
    disk_capacity_mib: int,
    efi_size_mib: int,
    root_size_gib: int,
    swap_size_gib: int,
    home_size_gib: Optional[int] = None,
    filesystem: str = "ext4"
) -> List[PartitionExtent]:
    """
    Compute the partition layout for the target disk.

    Layout is EFI, ROOT, optional SWAP, then HOME. HOME takes the rest of the
    disk unless an explicit home size smaller than the remainder is given.

    Args:
        disk_capacity_mib: Usable disk size in MiB
        efi_size_mib: EFI system partition size in MiB
        root_size_gib: Root partition size in GiB
        swap_size_gib: Swap partition size in GiB, 0 disables swap
        home_size_gib: Home partition size in GiB, None or 0 for the remaining space
        filesystem: Filesystem for the root and home partitions

    Returns:
        Extents in disk order

    Raises:
        CapacityError: If the partitions do not fit the disk
    """
    if swap_size_gib < 0 or (home_size_gib is not None and home_size_gib < 0):
        raise CapacityError("Partition sizes cannot be negative")

    extents = [_extent("EFI", ALIGNMENT_MIB, efi_size_mib, "vfat", disk_capacity_mib)]
    extents.append(_extent("ROOT", extents[-1].end_mib, root_size_gib * MIB_PER_GIB, filesystem, disk_capacity_mib))

    if swap_size_gib > 0:
        extents.append(_extent("SWAP", extents[-1].end_mib, swap_size_gib * MIB_PER_GIB, "swap", disk_capacity_mib))

    home_start = extents[-1].end_mib
    remaining = disk_capacity_mib - home_start
    if home_size_gib:
        home_length = home_size_gib * MIB_PER_GIB
        if home_length > remaining:
            raise CapacityError(
                f"Home partition of {home_size_gib} GiB does not fit, only "
                f"{mib_to_human_readable(max(remaining, 0))} left after EFI, root and swap"
            )
    else:
        home_length = remaining

    extents.append(_extent("HOME", home_start, home_length, filesystem, disk_capacity_mib))
    return extents


def get_partition_device_name(disk: str, partition_number: int) -> str:
    """
    Generate the appropriate partition device name based on disk type.

    Args:
        disk: Path to the disk device
        partition_number: Partition number

    Returns:
        Partition device path
    """
    # nvme, mmcblk and loop devices end with a digit and use a "p" separator
    if any(kind in disk.lower() for kind in ("nvme", "mmcblk", "loop")):
        return f"{disk}p{partition_number}"
    return f"{disk}{partition_number}"


def map_partitions(disk: str, extents: List[PartitionExtent]) -> PartitionTable:
    """Map each extent role to the device node it gets on disk."""
    return {
        extent.role: get_partition_device_name(disk, number)
        for number, extent in enumerate(extents, 1)
    }


def _mkpart_command(disk: str, extent: PartitionExtent, disk_capacity_mib: int) -> List[str]:
    fs_type = PARTED_FS_TYPES.get(extent.role, extent.filesystem)
    # The backup GPT lives at the end of the disk, let parted place the last boundary
    end = "100%" if extent.end_mib >= disk_capacity_mib else f"{extent.end_mib}MiB"
    return ["parted", "-s", disk, "mkpart", extent.role, fs_type, f"{extent.start_mib}MiB", end]


def create_partitions(
    disk: str,
    extents: List[PartitionExtent],
    disk_capacity_mib: int,
    cmd_runner: CommandRunner
) -> PartitionTable:
    """
    Write a new GPT label and one partition per extent.

    Args:
        disk: Path to the disk device
        extents: Planned extents in disk order
        disk_capacity_mib: Disk size in MiB used to plan the extents
        cmd_runner: CommandRunner instance for executing commands

    Returns:
        Dict mapping partition roles to device paths

    Raises:
        PartitioningError: On the first partitioning command that fails
    """
    logger.info(colorize(f"Partitioning disk {disk}", TermColors.INFO, cmd_runner.colored_output))

    try:
        cmd_runner.run(["parted", "-s", disk, "mklabel", "gpt"])
    except subprocess.CalledProcessError as e:
        raise PartitioningError(f"Failed to create GPT label on {disk}: {e.stderr or e}") from e

    for number, extent in enumerate(extents, 1):
        logger.info(f"  {number}: {extent.role:<4} {extent.start_mib}MiB - {extent.end_mib}MiB "
                    f"({mib_to_human_readable(extent.size_mib)})")
        try:
            cmd_runner.run(_mkpart_command(disk, extent, disk_capacity_mib))
            if extent.role == "EFI":
                cmd_runner.run(["parted", "-s", disk, "set", str(number), "esp", "on"])
        except subprocess.CalledProcessError as e:
            raise PartitioningError(f"Failed to create {extent.role} partition {number}: {e.stderr or e}") from e

    # Allow kernel to process the new partition table
    try:
        cmd_runner.run(["udevadm", "settle"])
    except subprocess.CalledProcessError as e:
        logger.warning(colorize(f"udevadm settle failed, but continuing: {e}",
                                TermColors.WARNING, cmd_runner.colored_output))

    partitions = map_partitions(disk, extents)
    logger.info(colorize("Partitioning completed successfully",
                         TermColors.SUCCESS, cmd_runner.colored_output))
    return partitions
