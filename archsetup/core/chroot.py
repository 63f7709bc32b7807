"""
Helpers to run commands inside the new root.
"""
import subprocess
from typing import Optional, Sequence

from archsetup.utils.command import CommandRunner


def chroot_cmd(
    target: str,
    argv: Sequence[str],
    cmd_runner: CommandRunner,
    input_text: Optional[str] = None
) -> subprocess.CompletedProcess:
    """
    Run a command inside the target root with arch-chroot.

    Raises:
        subprocess.CalledProcessError: If the command fails
    """
    cmd = ["arch-chroot", target, *argv]
    if input_text is None:
        return cmd_runner.run(cmd)
    return cmd_runner.run(cmd, input=input_text)
