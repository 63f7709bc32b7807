"""
Validation utilities.

This module provides the per-field validation rules for the installation
configuration, the read-only catalogs they consult, and the prerequisite
checks run before an installation can start.
"""
import os
import re
import shutil
import logging
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from archsetup.utils.command import CommandRunner
from archsetup.core.disk import is_disk_available, is_disk_mounted
from archsetup.core.exceptions import PreconditionError

logger = logging.getLogger('archsetup')

HOSTNAME_PATTERN = re.compile(r"^[a-zA-Z0-9-]{1,63}$")
USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*$")

FILESYSTEMS = ("ext4", "btrfs", "xfs")
MICROCODE_CHOICES = ("auto", "intel", "amd", "none")
GPU_DRIVER_CHOICES = ("auto", "nvidia", "amdgpu", "i915", "none")
BOOTLOADERS = ("grub", "systemd-boot")

DEFAULT_MIN_ROOT_SIZE_GIB = 20

ZONEINFO_DIR = "/usr/share/zoneinfo"
LOCALE_GEN_PATH = "/etc/locale.gen"
EFIVARS_DIR = "/sys/firmware/efi/efivars"
NETWORK_CHECK_HOST = "archlinux.org"

REQUIRED_TOOLS = [
    "parted", "udevadm", "mkfs.fat", "mkfs.ext4", "mkswap", "swapon", "swapoff",
    "mount", "umount", "lsblk", "blockdev", "blkid", "pacstrap", "genfstab", "arch-chroot",
]

# Only needed when the matching filesystem is chosen
FILESYSTEM_TOOLS = {
    "ext4": "mkfs.ext4",
    "btrfs": "mkfs.btrfs",
    "xfs": "mkfs.xfs",
}


class SystemCatalog:
    """
    Read-only view of the timezones, locales and keymaps known to the live system.

    Each list is loaded on first use and cached; nothing here is ever written.
    """

    def __init__(
        self,
        cmd_runner: CommandRunner,
        zoneinfo_dir: str = ZONEINFO_DIR,
        locale_gen_path: str = LOCALE_GEN_PATH
    ):
        self.cmd_runner = cmd_runner
        self.zoneinfo_dir = Path(zoneinfo_dir)
        self.locale_gen_path = Path(locale_gen_path)
        self._locales: Optional[List[str]] = None
        self._keymaps: Optional[List[str]] = None
        self._timezones: Optional[List[str]] = None

    def has_timezone(self, name: str) -> bool:
        if not name or name.startswith("/") or ".." in name.split("/"):
            return False
        return (self.zoneinfo_dir / name).is_file()

    def timezones(self) -> List[str]:
        if self._timezones is None:
            zones = []
            if self.zoneinfo_dir.is_dir():
                for path in self.zoneinfo_dir.rglob("*"):
                    relative = path.relative_to(self.zoneinfo_dir).as_posix()
                    # Region/City identifiers only, skip the posix/right copies
                    if path.is_file() and "/" in relative and relative.split("/")[0] not in ("posix", "right"):
                        zones.append(relative)
            self._timezones = sorted(zones)
        return self._timezones

    def locales(self) -> List[str]:
        if self._locales is None:
            locales = []
            try:
                lines = self.locale_gen_path.read_text(encoding="utf-8").splitlines()
            except OSError as e:
                logger.warning(f"Cannot read {self.locale_gen_path}: {e}")
                lines = []
            for line in lines:
                match = re.match(r"^#?([A-Za-z][\w.@-]*)\s+\S+", line)
                if match:
                    locales.append(match.group(1))
            self._locales = locales
        return self._locales

    def has_locale(self, name: str) -> bool:
        return bool(name) and name in self.locales()

    def keymaps(self) -> List[str]:
        if self._keymaps is None:
            try:
                result = self.cmd_runner.run(["localectl", "list-keymaps", "--no-pager"], check=False)
                self._keymaps = [line.strip() for line in result.stdout.splitlines() if line.strip()]
            except subprocess.CalledProcessError as e:
                logger.warning(f"Cannot list keymaps: {e}")
                self._keymaps = []
        return self._keymaps

    def has_keymap(self, name: str) -> bool:
        return bool(name) and name in self.keymaps()


class ValidationRules:
    """
    Pure predicates over candidate configuration values, one per field.

    A predicate never raises for bad input, it only answers pass or fail.
    """

    def __init__(
        self,
        cmd_runner: CommandRunner,
        catalog: SystemCatalog,
        min_root_size_gib: int = DEFAULT_MIN_ROOT_SIZE_GIB
    ):
        self.cmd_runner = cmd_runner
        self.catalog = catalog
        self.min_root_size_gib = min_root_size_gib
        self._checks: Dict[str, Callable[[Any], bool]] = {
            "disk": self.disk,
            "root_size_gib": self.root_size,
            "home_size_gib": self.optional_size,
            "swap_size_gib": self.size,
            "filesystem": self.filesystem,
            "hostname": self.hostname,
            "username": self.username,
            "timezone": self.timezone,
            "locale": self.locale,
            "keymap": self.keymap,
            "sudo_enabled": self.flag,
            "microcode": self.microcode,
            "gpu_driver": self.gpu_driver,
            "bootloader": self.bootloader,
            "root_password": self.password,
            "user_password": self.password,
        }

    @property
    def fields(self) -> List[str]:
        return list(self._checks)

    def check(self, field: str, value: Any) -> bool:
        """
        Validate a value for the named field.

        Raises:
            KeyError: If the field has no validator
        """
        return self._checks[field](value)

    def disk(self, value: Any) -> bool:
        if not isinstance(value, str) or not value:
            return False
        if not is_disk_available(value, self.cmd_runner):
            return False
        return not is_disk_mounted(value, self.cmd_runner)

    @staticmethod
    def size(value: Any) -> bool:
        return isinstance(value, int) and not isinstance(value, bool) and value >= 0

    def optional_size(self, value: Any) -> bool:
        return value is None or self.size(value)

    def root_size(self, value: Any) -> bool:
        return self.size(value) and value >= self.min_root_size_gib

    @staticmethod
    def hostname(value: Any) -> bool:
        return isinstance(value, str) and HOSTNAME_PATTERN.fullmatch(value) is not None

    @staticmethod
    def username(value: Any) -> bool:
        # Empty means no secondary user
        if value == "":
            return True
        return isinstance(value, str) and USERNAME_PATTERN.fullmatch(value) is not None and value != "root"

    def timezone(self, value: Any) -> bool:
        return isinstance(value, str) and self.catalog.has_timezone(value)

    def locale(self, value: Any) -> bool:
        return isinstance(value, str) and self.catalog.has_locale(value)

    def keymap(self, value: Any) -> bool:
        return isinstance(value, str) and self.catalog.has_keymap(value)

    @staticmethod
    def flag(value: Any) -> bool:
        return isinstance(value, bool)

    @staticmethod
    def filesystem(value: Any) -> bool:
        return value in FILESYSTEMS

    @staticmethod
    def microcode(value: Any) -> bool:
        return value in MICROCODE_CHOICES

    @staticmethod
    def gpu_driver(value: Any) -> bool:
        return value in GPU_DRIVER_CHOICES

    @staticmethod
    def bootloader(value: Any) -> bool:
        return value in BOOTLOADERS

    @staticmethod
    def password(value: Any) -> bool:
        return value is None or (isinstance(value, str) and value != "" and "\n" not in value and ":" not in value)


def required_tools(filesystem: str) -> List[str]:
    """Tools an installation with the given root filesystem cannot run without."""
    tools = list(REQUIRED_TOOLS)
    fs_tool = FILESYSTEM_TOOLS.get(filesystem)
    if fs_tool and fs_tool not in tools:
        tools.append(fs_tool)
    return tools


def check_prerequisites(
    cmd_runner: CommandRunner,
    filesystem: str = "ext4",
    efivars_dir: str = EFIVARS_DIR
) -> None:
    """
    Check for root privileges, UEFI firmware, network reachability and required tools.

    Args:
        cmd_runner: CommandRunner instance for executing commands
        filesystem: Filesystem chosen for the root and home partitions
        efivars_dir: Directory exposed by UEFI firmware

    Raises:
        PreconditionError: If prerequisites are not met
    """
    tools = required_tools(filesystem)

    if cmd_runner.simulating:
        logger.info("Checking prerequisites (simulated)")
        for tool in tools:
            logger.info(f"Tool '{tool}' would be checked")
        return

    if os.geteuid() != 0:
        raise PreconditionError("This installer must be run as root")

    if not os.path.isdir(efivars_dir):
        raise PreconditionError(
            f"No UEFI firmware interface found ({efivars_dir} is missing).\n"
            "Boot the installation medium in UEFI mode and try again"
        )

    missing_tools: Set[str] = {tool for tool in tools if not shutil.which(tool)}
    if missing_tools:
        raise PreconditionError(
            f"Missing required tools: {', '.join(sorted(missing_tools))}\n"
            "Please install the necessary packages and try again"
        )

    result = cmd_runner.run(["ping", "-c", "1", "-W", "5", NETWORK_CHECK_HOST], check=False)
    if result.returncode != 0:
        raise PreconditionError(
            f"Network check failed: {NETWORK_CHECK_HOST} is not reachable.\n"
            "Connect to the network and try again"
        )

    logger.info("All prerequisites are met")
