"""
System settings applied inside the new root.

Timezone, locale, keymap, hostname, user accounts and network service are
applied in that order once the base system is installed.
"""
import logging
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from archsetup.config import write_target_file
from archsetup.utils.command import CommandRunner
from archsetup.core.chroot import chroot_cmd
from archsetup.core.exceptions import SystemConfigError
from archsetup.core.settings import InstallConfig

logger = logging.getLogger('archsetup')

SUDOERS_DROPIN = "etc/sudoers.d/10-wheel"
NETWORK_SERVICE = "NetworkManager"


def render_hosts(hostname: str) -> str:
    return (
        "127.0.0.1\tlocalhost\n"
        "::1\t\tlocalhost\n"
        f"127.0.1.1\t{hostname}.localdomain\t{hostname}\n"
    )


def locale_gen_expression(locale: str) -> str:
    """sed expression enabling one locale in /etc/locale.gen."""
    pattern = locale.replace(".", r"\.")
    return f"s/^#\\s*{pattern} /{locale} /"


def useradd_command(username: str, sudo_enabled: bool) -> List[str]:
    cmd = ["useradd", "-m", "-s", "/bin/bash"]
    if sudo_enabled:
        cmd += ["-G", "wheel"]
    return cmd + [username]


def password_input(config: InstallConfig) -> Optional[str]:
    """chpasswd input for the passwords that are set, None when there are none."""
    lines = []
    if config.root_password:
        lines.append(f"root:{config.root_password}")
    if config.username and config.user_password:
        lines.append(f"{config.username}:{config.user_password}")
    return "\n".join(lines) + "\n" if lines else None


def configure_system(config: InstallConfig, target: str, cmd_runner: CommandRunner) -> None:
    """
    Apply the configured settings to the installed system.

    Args:
        config: Validated installation configuration
        target: Target root directory
        cmd_runner: CommandRunner instance for executing commands

    Raises:
        SystemConfigError: On the first setting that cannot be applied
    """
    target_path = Path(target)

    def in_root(*argv: str) -> Callable[[], None]:
        return lambda: chroot_cmd(target, argv, cmd_runner)

    def write(relative: str, content: str, mode: Optional[int] = None) -> Callable[[], None]:
        return lambda: write_target_file(target_path / relative, content, cmd_runner, mode=mode)

    steps: List[Tuple[str, Callable[[], None]]] = [
        ("timezone", in_root("ln", "-sf", f"/usr/share/zoneinfo/{config.timezone}", "/etc/localtime")),
        ("hardware clock", in_root("hwclock", "--systohc")),
        ("locale selection", in_root("sed", "-i", locale_gen_expression(config.locale), "/etc/locale.gen")),
        ("locale generation", in_root("locale-gen")),
        ("locale.conf", write("etc/locale.conf", f"LANG={config.locale}\n")),
        ("keymap", write("etc/vconsole.conf", f"KEYMAP={config.keymap}\n")),
        ("hostname", write("etc/hostname", f"{config.hostname}\n")),
        ("hosts", write("etc/hosts", render_hosts(config.hostname))),
    ]

    if config.username:
        steps.append((f"user {config.username}", in_root(*useradd_command(config.username, config.sudo_enabled))))
        if config.sudo_enabled:
            steps.append(("sudo access", write(SUDOERS_DROPIN, "%wheel ALL=(ALL:ALL) ALL\n", mode=0o440)))

    passwords = password_input(config)
    if passwords:
        steps.append(("passwords", lambda: chroot_cmd(target, ["chpasswd"], cmd_runner, input_text=passwords)))
    else:
        logger.warning("No passwords configured, set them with passwd before the first reboot")

    steps.append(("network service", in_root("systemctl", "enable", NETWORK_SERVICE)))

    for description, apply in steps:
        logger.info(f"Configuring {description}")
        try:
            apply()
        except subprocess.CalledProcessError as e:
            raise SystemConfigError(f"Failed to configure {description}: {(e.stderr or '').strip() or e}") from e
        except OSError as e:
            raise SystemConfigError(f"Failed to configure {description}: {e}") from e

    logger.info("System configuration applied")
