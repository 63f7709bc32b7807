"""
Files and directories of the target system.

Writes under the target root go through these helpers so that simulation
mode only logs them.
"""
import logging
import os
from pathlib import Path
from typing import Optional

from archsetup.utils.command import CommandRunner

logger = logging.getLogger('archsetup')


def create_directory(path: Path, cmd_runner: CommandRunner, description: Optional[str] = None) -> None:
    """
    Create a directory and its parents, or log it in simulation mode.

    Args:
        path: Directory to create
        cmd_runner: CommandRunner instance for executing commands
        description: Optional name of the directory for logging

    Raises:
        OSError: If the directory cannot be created
    """
    label = f"{description} directory" if description else "directory"
    if cmd_runner.simulating:
        logger.info(f"Would create {label}: {path}")
        return
    path.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Created {label}: {path}")


def write_target_file(
    path: Path,
    content: str,
    cmd_runner: CommandRunner,
    append: bool = False,
    mode: Optional[int] = None
) -> None:
    """
    Write (or append to) a file of the target system, or log it in simulation mode.

    Args:
        path: File path, already prefixed with the target root
        content: Text to write
        cmd_runner: CommandRunner instance for executing commands
        append: Append instead of replacing the file
        mode: Optional permission bits applied after writing

    Raises:
        OSError: If the file cannot be written
    """
    action = "append to" if append else "write"

    if cmd_runner.simulating:
        logger.info(f"Would {action} {path}")
        logger.debug(content)
        return

    create_directory(path.parent, cmd_runner)
    with open(path, "a" if append else "w", encoding="utf-8") as f:
        f.write(content)
    if mode is not None:
        os.chmod(path, mode)
    logger.debug(f"Did {action} {path}")
