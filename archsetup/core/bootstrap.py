"""
Base system bootstrap module.

This module builds the package list of the new system and installs it into
the target root with pacstrap.
"""
import logging
import subprocess
from typing import List, Optional

from archsetup.utils.command import CommandRunner
from archsetup.utils.format import TermColors, colorize
from archsetup.core.exceptions import BootstrapError

logger = logging.getLogger('archsetup')

BASE_PACKAGES = ["base", "base-devel", "linux", "linux-firmware", "networkmanager", "sudo"]

# Userspace tools needed to maintain each filesystem
FILESYSTEM_PACKAGES = {
    "btrfs": "btrfs-progs",
    "xfs": "xfsprogs",
}


def build_package_list(
    filesystem: str,
    microcode_package: Optional[str],
    gpu_package: Optional[str]
) -> List[str]:
    """
    Packages to bootstrap into the new root.

    Args:
        filesystem: Filesystem of the root and home partitions
        microcode_package: Resolved microcode package, None when disabled
        gpu_package: Resolved GPU driver package, None when disabled

    Returns:
        Package names, base set first
    """
    packages = list(BASE_PACKAGES)
    for extra in (FILESYSTEM_PACKAGES.get(filesystem), microcode_package, gpu_package):
        if extra and extra not in packages:
            packages.append(extra)
    return packages


def bootstrap_base_system(target: str, packages: List[str], cmd_runner: CommandRunner) -> None:
    """
    Install the package list into the target root.

    Args:
        target: Target root directory with all filesystems mounted
        packages: Packages to install
        cmd_runner: CommandRunner instance for executing commands

    Raises:
        BootstrapError: If pacstrap fails
    """
    logger.info(colorize(f"Installing base system: {' '.join(packages)}",
                         TermColors.INFO, cmd_runner.colored_output))
    try:
        cmd_runner.run(["pacstrap", "-K", target, *packages])
    except subprocess.CalledProcessError as e:
        raise BootstrapError(f"pacstrap failed with code {e.returncode}: {(e.stderr or '').strip()}") from e
    logger.info(colorize("Base system installed", TermColors.SUCCESS, cmd_runner.colored_output))
