"""
Type definitions for archsetup.

This module provides TypedDict definitions and other type aliases
for better type checking throughout the codebase.
"""
from typing import Dict, Literal, TypedDict


class DiskInfo(TypedDict):
    """Information about a disk device"""
    size_bytes: int
    size_mib: int
    model: str


class HardwareInfo(TypedDict):
    """Hardware vendors detected on the live system"""
    cpu_vendor: str
    gpu_descriptor: str
    microcode: str
    gpu: str


# Mapping of partition roles to device paths
PartitionTable = Dict[str, str]

# Roles a planned partition can have
PartitionRole = Literal["EFI", "ROOT", "SWAP", "HOME"]

FilesystemType = Literal["ext4", "btrfs", "xfs"]
MicrocodeChoice = Literal["auto", "intel", "amd", "none"]
GpuDriverChoice = Literal["auto", "nvidia", "amdgpu", "i915", "none"]
BootloaderChoice = Literal["grub", "systemd-boot"]
