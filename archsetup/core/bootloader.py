"""
Bootloader installation module.

Installs GRUB or systemd-boot into the new root. The ESP is mounted on /boot
of the target, so kernels, initramfs and microcode images live on it.
"""
import logging
import subprocess
from pathlib import Path
from typing import Optional

from archsetup.config import write_target_file
from archsetup.utils.command import CommandRunner
from archsetup.utils.format import TermColors, colorize
from archsetup.core.chroot import chroot_cmd
from archsetup.core.exceptions import BootloaderError

logger = logging.getLogger('archsetup')

KERNEL_IMAGE = "/vmlinuz-linux"
INITRAMFS_IMAGE = "/initramfs-linux.img"
GRUB_BOOTLOADER_ID = "GRUB"
ENTRY_NAME = "arch"


def render_loader_conf(timeout: int = 3) -> str:
    return f"default {ENTRY_NAME}.conf\ntimeout {timeout}\n"


def render_boot_entry(root_partuuid: str, microcode_package: Optional[str]) -> str:
    """
    systemd-boot entry for the installed kernel.

    The microcode image, when installed, is loaded before the initramfs.

    Args:
        root_partuuid: PARTUUID of the root partition
        microcode_package: Installed microcode package, e.g. "intel-ucode"

    Returns:
        Entry file content
    """
    lines = ["title   Arch Linux", f"linux   {KERNEL_IMAGE}"]
    if microcode_package:
        lines.append(f"initrd  /{microcode_package}.img")
    lines.append(f"initrd  {INITRAMFS_IMAGE}")
    lines.append(f"options root=PARTUUID={root_partuuid} rw")
    return "\n".join(lines) + "\n"


def get_partuuid(device: str, cmd_runner: CommandRunner) -> str:
    """
    Read the PARTUUID of a partition.

    Raises:
        BootloaderError: If blkid cannot report it
    """
    try:
        result = cmd_runner.run(["blkid", "-s", "PARTUUID", "-o", "value", device])
    except subprocess.CalledProcessError as e:
        raise BootloaderError(f"Cannot read PARTUUID of {device}: {e.stderr or e}") from e
    partuuid = result.stdout.strip()
    if not partuuid:
        raise BootloaderError(f"{device} has no PARTUUID")
    return partuuid


def install_grub(target: str, cmd_runner: CommandRunner) -> None:
    """Install GRUB for x86_64 EFI targets."""
    for argv in (
        ["pacman", "-S", "--noconfirm", "--needed", "grub", "efibootmgr"],
        ["grub-install", "--target=x86_64-efi", "--efi-directory=/boot",
         f"--bootloader-id={GRUB_BOOTLOADER_ID}"],
        ["grub-mkconfig", "-o", "/boot/grub/grub.cfg"],
    ):
        chroot_cmd(target, argv, cmd_runner)


def install_systemd_boot(
    target: str,
    root_device: str,
    microcode_package: Optional[str],
    cmd_runner: CommandRunner
) -> None:
    """Install systemd-boot and write its loader configuration and entry."""
    chroot_cmd(target, ["bootctl", "install", "--esp-path=/boot"], cmd_runner)

    entry = render_boot_entry(get_partuuid(root_device, cmd_runner), microcode_package)
    loader_dir = Path(target) / "boot" / "loader"
    write_target_file(loader_dir / "loader.conf", render_loader_conf(), cmd_runner)
    write_target_file(loader_dir / "entries" / f"{ENTRY_NAME}.conf", entry, cmd_runner)


def install_bootloader(
    bootloader: str,
    target: str,
    root_device: str,
    microcode_package: Optional[str],
    cmd_runner: CommandRunner
) -> None:
    """
    Install the chosen bootloader.

    Args:
        bootloader: "grub" or "systemd-boot"
        target: Target root directory
        root_device: Root partition device
        microcode_package: Installed microcode package, None if none was installed
        cmd_runner: CommandRunner instance for executing commands

    Raises:
        BootloaderError: If installation fails
    """
    logger.info(colorize(f"Installing bootloader {bootloader}", TermColors.INFO, cmd_runner.colored_output))
    try:
        if bootloader == "grub":
            install_grub(target, cmd_runner)
        elif bootloader == "systemd-boot":
            install_systemd_boot(target, root_device, microcode_package, cmd_runner)
        else:
            raise BootloaderError(f"Unsupported bootloader: {bootloader}")
    except subprocess.CalledProcessError as e:
        raise BootloaderError(f"{bootloader} installation failed: {(e.stderr or '').strip() or e}") from e
    except OSError as e:
        raise BootloaderError(f"Cannot write {bootloader} configuration: {e}") from e
    logger.info(colorize("Bootloader installed", TermColors.SUCCESS, cmd_runner.colored_output))
