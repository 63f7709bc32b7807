"""
Installation configuration module.

This module holds the configuration record edited by the operator and the
functions that change it. Every edit goes through the field's validator and,
for partition sizes, through the partition planner, so the record only ever
holds accepted values.
"""
import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from archsetup.utils.command import CommandRunner
from archsetup.utils.types import BootloaderChoice, FilesystemType, GpuDriverChoice, MicrocodeChoice
from archsetup.utils.validation import ValidationRules
from archsetup.core.disk import get_disk_info
from archsetup.core.exceptions import CapacityError, ValidationError
from archsetup.core.partition import DEFAULT_EFI_SIZE_MIB, PartitionExtent, plan_partitions

logger = logging.getLogger('archsetup')

SIZE_FIELDS = ("root_size_gib", "home_size_gib", "swap_size_gib")
BOOL_FIELDS = ("sudo_enabled",)
SECRET_FIELDS = ("root_password", "user_password")

# Fields the pipeline reads; every one must pass its validator before a run
REQUIRED_FIELDS = (
    "disk", "root_size_gib", "home_size_gib", "swap_size_gib", "filesystem",
    "hostname", "username", "timezone", "locale", "keymap", "sudo_enabled",
    "microcode", "gpu_driver", "bootloader", "root_password", "user_password",
)

# Fields that cannot be set from the menu or a preset
READ_ONLY_FIELDS = ("disk_capacity_mib", "efi_size_mib")

FIELD_LABELS = {
    "disk": "Disk",
    "root_size_gib": "Root size (GiB)",
    "home_size_gib": "Home size (GiB)",
    "swap_size_gib": "Swap size (GiB)",
    "filesystem": "Filesystem",
    "hostname": "Hostname",
    "username": "Username",
    "timezone": "Timezone",
    "locale": "Locale",
    "keymap": "Keymap",
    "sudo_enabled": "Sudo access",
    "microcode": "Microcode",
    "gpu_driver": "GPU driver",
    "bootloader": "Bootloader",
    "root_password": "Root password",
    "user_password": "User password",
}

TRUE_WORDS = ("yes", "y", "true", "1", "on")
FALSE_WORDS = ("no", "n", "false", "0", "off")


@dataclass
class InstallConfig:
    """Settings of one installation; None means unset"""
    disk: Optional[str] = None
    disk_capacity_mib: Optional[int] = None
    root_size_gib: Optional[int] = 20
    home_size_gib: Optional[int] = None
    swap_size_gib: int = 0
    efi_size_mib: int = DEFAULT_EFI_SIZE_MIB
    filesystem: FilesystemType = "ext4"
    hostname: str = "archlinux"
    username: str = ""
    timezone: str = "UTC"
    locale: str = "en_US.UTF-8"
    keymap: str = "us"
    sudo_enabled: bool = True
    microcode: MicrocodeChoice = "auto"
    gpu_driver: GpuDriverChoice = "auto"
    bootloader: BootloaderChoice = "grub"
    root_password: Optional[str] = None
    user_password: Optional[str] = None


def parse_value(field_name: str, raw: Any) -> Any:
    """
    Convert operator input to the field's type.

    Args:
        field_name: Name of an InstallConfig field
        raw: Text typed by the operator, or an already typed value from a preset

    Returns:
        Typed value

    Raises:
        ValidationError: If the input cannot be converted
    """
    if not isinstance(raw, str):
        return raw

    text = raw.strip()
    if field_name in SIZE_FIELDS:
        if field_name == "home_size_gib" and text.lower() in ("", "rest", "remaining"):
            return None
        try:
            return int(text)
        except ValueError:
            raise ValidationError(f"{FIELD_LABELS[field_name]} must be a whole number of GiB, got '{raw}'",
                                  field=field_name)
    if field_name in BOOL_FIELDS:
        if text.lower() in TRUE_WORDS:
            return True
        if text.lower() in FALSE_WORDS:
            return False
        raise ValidationError(f"{FIELD_LABELS[field_name]} must be yes or no, got '{raw}'", field=field_name)
    if field_name in SECRET_FIELDS:
        # Secrets keep their spaces
        return raw or None
    return text


def plan_for(config: InstallConfig) -> List[PartitionExtent]:
    """
    Compute the partition layout of a configuration.

    Raises:
        CapacityError: If no disk is selected or the sizes do not fit it
    """
    if config.disk_capacity_mib is None:
        raise CapacityError("No disk selected, the partition layout cannot be computed")
    return plan_partitions(
        config.disk_capacity_mib,
        config.efi_size_mib,
        config.root_size_gib or 0,
        config.swap_size_gib,
        config.home_size_gib,
        config.filesystem,
    )


def set_field(config: InstallConfig, field_name: str, raw: Any, rules: ValidationRules) -> None:
    """
    Validate and store one configuration value.

    Size edits are checked against the selected disk at once; on any error the
    previous value is kept.

    Args:
        config: Configuration to edit
        field_name: Name of the field
        raw: New value, as text or typed
        rules: Validation rules

    Raises:
        ValidationError: If the value fails its validator
        CapacityError: If a size edit no longer fits the disk
    """
    if field_name == "disk":
        raise ValidationError("The disk is changed with select_disk()", field=field_name)
    if field_name in READ_ONLY_FIELDS or field_name not in FIELD_LABELS:
        raise ValidationError(f"{field_name} cannot be changed", field=field_name)

    value = parse_value(field_name, raw)
    if not rules.check(field_name, value):
        raise ValidationError(_invalid_message(field_name, value, rules), field=field_name)

    if field_name in SIZE_FIELDS and config.disk_capacity_mib is not None:
        plan_for(replace(config, **{field_name: value}))

    setattr(config, field_name, value)
    if field_name not in SECRET_FIELDS:
        logger.debug(f"Set {field_name} = {value!r}")


def select_disk(config: InstallConfig, disk: str, rules: ValidationRules, cmd_runner: CommandRunner) -> None:
    """
    Select the target disk and record its capacity.

    Args:
        config: Configuration to edit
        disk: Path to the disk device
        rules: Validation rules
        cmd_runner: CommandRunner instance for executing commands

    Raises:
        ValidationError: If the disk is not an unmounted block device
    """
    disk = disk.strip()
    if not rules.disk(disk):
        raise ValidationError(f"{disk or 'empty path'} is not an unmounted block device", field="disk")
    disk_info = get_disk_info(disk, cmd_runner)
    config.disk = disk
    config.disk_capacity_mib = disk_info["size_mib"]
    logger.info(f"Selected disk {disk} ({disk_info['size_mib']} MiB)")
    try:
        plan_for(config)
    except CapacityError as e:
        logger.warning(f"Current partition sizes do not fit {disk}: {e}")


def _invalid_message(field_name: str, value: Any, rules: ValidationRules) -> str:
    label = FIELD_LABELS.get(field_name, field_name)
    if field_name in SECRET_FIELDS:
        return f"{label} cannot be empty or contain ':' or line breaks"
    if field_name == "root_size_gib":
        return f"{label} must be at least {rules.min_root_size_gib}, got {value!r}"
    if value in (None, ""):
        return f"{label} is not set"
    return f"{label}: invalid value {value!r}"


def collect_validation_errors(config: InstallConfig, rules: ValidationRules) -> List[str]:
    """
    Re-validate every field the installation reads.

    Returns:
        One human readable reason per failing field, empty when all pass
    """
    reasons = []
    for field_name in REQUIRED_FIELDS:
        value = getattr(config, field_name)
        if not rules.check(field_name, value):
            reasons.append(_invalid_message(field_name, value, rules))
    if config.disk and config.disk_capacity_mib is None:
        reasons.append("Disk capacity is unknown, select the disk again")
    if config.user_password is not None and not config.username:
        reasons.append("User password is set but no username is configured")
    return reasons


def field_status(config: InstallConfig, rules: ValidationRules) -> List[Tuple[str, str, bool]]:
    """
    Rows for display: (label, value text, valid).

    Secrets are masked.
    """
    rows = []
    for field_name, label in FIELD_LABELS.items():
        value = getattr(config, field_name)
        valid = rules.check(field_name, value)
        if field_name in SECRET_FIELDS:
            text = "********" if value else "[NOT SET]"
        elif field_name == "disk" and value:
            text = f"{value} ({config.disk_capacity_mib} MiB)"
        elif field_name == "home_size_gib" and value in (None, 0):
            text = "remaining space"
        elif field_name == "swap_size_gib" and value == 0:
            text = "0 (disabled)"
        elif isinstance(value, bool):
            text = "yes" if value else "no"
        else:
            text = "[NOT SET]" if value in (None, "") else str(value)
        rows.append((label, text, valid))
    return rows


def load_preset(path: str) -> Dict[str, Any]:
    """
    Read a JSON preset of configuration values.

    Raises:
        ValidationError: If the file is unreadable or not a JSON object
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ValidationError(f"Cannot read preset {path}: {e}")
    if not isinstance(data, dict):
        raise ValidationError(f"Preset {path} must contain a JSON object")
    known = {f.name for f in fields(InstallConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValidationError(f"Preset {path} has unknown fields: {', '.join(unknown)}")
    return data


def apply_preset(
    config: InstallConfig,
    values: Dict[str, Any],
    rules: ValidationRules,
    cmd_runner: CommandRunner
) -> List[str]:
    """
    Apply preset values through the same checks as menu edits.

    The disk is applied first so size edits are checked against it.

    Returns:
        Error messages of the values that were rejected
    """
    errors = []
    ordered = sorted(values.items(), key=lambda item: item[0] != "disk")
    for field_name, value in ordered:
        try:
            if field_name == "disk":
                select_disk(config, str(value), rules, cmd_runner)
            else:
                set_field(config, field_name, value, rules)
        except (ValidationError, CapacityError) as e:
            errors.append(str(e))
    return errors
