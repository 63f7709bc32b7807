"""
Mount table generation for the target system.
"""
import logging
import subprocess
from pathlib import Path

from archsetup.config import write_target_file
from archsetup.utils.command import CommandRunner
from archsetup.core.exceptions import FstabError

logger = logging.getLogger('archsetup')


def generate_fstab(target: str, cmd_runner: CommandRunner) -> Path:
    """
    Append UUID-based entries for everything mounted under the target to its fstab.

    Args:
        target: Target root directory with all filesystems mounted
        cmd_runner: CommandRunner instance for executing commands

    Returns:
        Path of the mount table file

    Raises:
        FstabError: If the entries cannot be generated or written
    """
    fstab_path = Path(target) / "etc" / "fstab"

    try:
        result = cmd_runner.run(["genfstab", "-U", target])
    except subprocess.CalledProcessError as e:
        raise FstabError(f"Failed to generate mount table: {e.stderr or e}") from e

    if not result.stdout.strip():
        raise FstabError(f"genfstab found nothing mounted under {target}")

    try:
        write_target_file(fstab_path, result.stdout, cmd_runner, append=True)
    except OSError as e:
        raise FstabError(f"Failed to write {fstab_path}: {e}") from e

    logger.info(f"Mount table written to {fstab_path}")
    return fstab_path
