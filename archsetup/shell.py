"""
Interactive configuration menu.

The shell only edits the configuration through the functions of
archsetup.core.settings and starts the pipeline; it holds no installation
logic of its own.
"""
import getpass
import logging
from typing import Callable, List, Optional, Sequence, Tuple

from archsetup.utils.command import CommandRunner
from archsetup.utils.format import TermColors, colorize
from archsetup.utils.validation import (
    BOOTLOADERS, FILESYSTEMS, GPU_DRIVER_CHOICES, MICROCODE_CHOICES, ValidationRules
)
from archsetup.core.disk import list_disks
from archsetup.core.exceptions import CapacityError, PreconditionError, StageFailure, ValidationError
from archsetup.core.hardware import HardwareProbe
from archsetup.core.pipeline import InstallPipeline
from archsetup.core.settings import (
    FIELD_LABELS, InstallConfig, field_status, plan_for, select_disk, set_field
)

logger = logging.getLogger('archsetup')

CATALOG_PREVIEW = 20
CONFIRMATION_WORD = "YES"

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1

MENU_SECTIONS: List[Tuple[str, Sequence[str]]] = [
    ("Disk", ("disk",)),
    ("Partitioning", ("root_size_gib", "home_size_gib", "swap_size_gib", "filesystem")),
    ("System settings", ("hostname", "timezone", "locale", "keymap", "username",
                         "sudo_enabled", "root_password", "user_password")),
    ("Hardware", ("microcode", "gpu_driver", "bootloader")),
]

ENUM_CHOICES = {
    "filesystem": FILESYSTEMS,
    "microcode": MICROCODE_CHOICES,
    "gpu_driver": GPU_DRIVER_CHOICES,
    "bootloader": BOOTLOADERS,
}

PROMPTS = {
    "root_size_gib": "Root partition size in GiB",
    "home_size_gib": "Home partition size in GiB ('rest' for the remaining space)",
    "swap_size_gib": "Swap size in GiB (0 disables swap)",
    "hostname": "Hostname",
    "timezone": "Timezone (e.g. Europe/London)",
    "locale": "Locale (e.g. en_US.UTF-8)",
    "keymap": "Keymap (e.g. us)",
    "username": "Username ('-' for no user)",
}


class InteractiveShell:
    """Menu loop editing one configuration and starting its installation"""

    def __init__(
        self,
        config: InstallConfig,
        rules: ValidationRules,
        probe: HardwareProbe,
        cmd_runner: CommandRunner,
        pipeline_factory: Callable[[], InstallPipeline],
        input_func: Optional[Callable[[str], str]] = None,
        output: Callable[[str], None] = print,
        secret_input: Optional[Callable[[str], str]] = None
    ):
        self.config = config
        self.rules = rules
        self.probe = probe
        self.cmd_runner = cmd_runner
        self.pipeline_factory = pipeline_factory
        self.input = input_func or input
        self.output = output
        self.secret_input = secret_input or getpass.getpass
        self.color = cmd_runner.colored_output

    # Output helpers

    def _error(self, message: str) -> None:
        self.output(colorize(message, TermColors.ERROR, self.color))

    def _value(self, text: str, valid: bool) -> str:
        return colorize(text, TermColors.SUCCESS if valid else TermColors.ERROR, self.color)

    def _ask(self, prompt: str) -> str:
        return self.input(colorize(f"{prompt}: ", TermColors.SIM, self.color)).strip()

    # Menus

    def run(self) -> int:
        """
        Run the menu until the operator exits or an installation ends.

        Returns:
            Process exit code
        """
        while True:
            self._show_main_menu()
            choice = self._ask("Enter selection").lower()

            if choice in ("q", "00", "exit"):
                return EXIT_OK
            if choice == "0":
                code = self.start_installation()
                if code is not None:
                    return code
            elif choice == str(len(MENU_SECTIONS) + 1):
                self.review()
            elif choice.isdigit() and 1 <= int(choice) <= len(MENU_SECTIONS):
                self._section_menu(*MENU_SECTIONS[int(choice) - 1])
            else:
                self._error("Invalid selection!")

    def _show_main_menu(self) -> None:
        status = {label: (text, valid) for label, text, valid in field_status(self.config, self.rules)}
        self.output("")
        self.output(colorize("Arch Linux Installer", TermColors.HEADER + TermColors.BOLD, self.color))
        self.output("=" * 20)
        for number, (title, section_fields) in enumerate(MENU_SECTIONS, 1):
            valid = all(status[FIELD_LABELS[f]][1] for f in section_fields)
            summary = ", ".join(status[FIELD_LABELS[f]][0] for f in section_fields[:3])
            self.output(f"{number:2d}) {title:<16}: {self._value(summary, valid)}")
        self.output(f"{len(MENU_SECTIONS) + 1:2d}) Review")
        self.output("")
        self.output(" 0) Start installation")
        self.output(" q) Exit")

    def _section_menu(self, title: str, section_fields: Sequence[str]) -> None:
        while True:
            status = {label: (text, valid) for label, text, valid in field_status(self.config, self.rules)}
            self.output("")
            self.output(colorize(title, TermColors.HEADER, self.color))
            for number, field_name in enumerate(section_fields, 1):
                label = FIELD_LABELS[field_name]
                text, valid = status[label]
                if field_name in ("microcode", "gpu_driver") and getattr(self.config, field_name) == "auto":
                    detected = self.probe.detect()["microcode" if field_name == "microcode" else "gpu"]
                    text = f"auto (detected: {detected})"
                self.output(f"{number:2d}) {label:<16}: {self._value(text, valid)}")
            self.output(" b) Back")

            choice = self._ask("Enter selection").lower()
            if choice in ("b", ""):
                return
            if choice.isdigit() and 1 <= int(choice) <= len(section_fields):
                self.edit_field(section_fields[int(choice) - 1])
            else:
                self._error("Invalid selection!")

    # Field editors

    def edit_field(self, field_name: str) -> None:
        if field_name == "disk":
            self.choose_disk()
        elif field_name == "sudo_enabled":
            set_field(self.config, field_name, not self.config.sudo_enabled, self.rules)
        elif field_name in ENUM_CHOICES:
            self._choose_enum(field_name)
        elif field_name in ("root_password", "user_password"):
            self._set_password(field_name)
        else:
            self._prompt_field(field_name)

    def choose_disk(self) -> None:
        self.output("\nAvailable disks:")
        for line in list_disks(self.cmd_runner):
            self.output(f"  {colorize(line, TermColors.SIM, self.color)}")
        while True:
            disk = self._ask("Enter disk (e.g. /dev/sda), empty to cancel")
            if not disk:
                return
            try:
                select_disk(self.config, disk, self.rules, self.cmd_runner)
            except ValidationError as e:
                self._error(f"Invalid disk! {e}")
                continue
            try:
                plan_for(self.config)
            except CapacityError as e:
                self._error(f"Warning: {e}. Adjust the partition sizes.")
            return

    def _show_catalog(self, field_name: str) -> None:
        catalog = self.rules.catalog
        entries = {
            "timezone": catalog.timezones,
            "locale": catalog.locales,
            "keymap": catalog.keymaps,
        }.get(field_name)
        if entries is None:
            return
        preview = entries()[:CATALOG_PREVIEW]
        if preview:
            self.output(f"\nAvailable {field_name}s (first {len(preview)}):")
            self.output("  " + "  ".join(preview))

    def _prompt_field(self, field_name: str) -> None:
        """Prompt until the value is accepted; empty input keeps the current value."""
        self._show_catalog(field_name)
        while True:
            raw = self._ask(f"{PROMPTS.get(field_name, FIELD_LABELS[field_name])} (Enter keeps current)")
            if raw == "":
                return
            if field_name == "username" and raw == "-":
                raw = ""
            try:
                set_field(self.config, field_name, raw, self.rules)
                return
            except ValidationError as e:
                self._error(f"Invalid value! {e}")
            except CapacityError as e:
                self._error(f"Total size exceeds disk capacity! {e}")

    def _choose_enum(self, field_name: str) -> None:
        choices = ENUM_CHOICES[field_name]
        self.output("")
        for number, choice in enumerate(choices, 1):
            self.output(f"{number}. {choice}")
        while True:
            raw = self._ask(f"Select {FIELD_LABELS[field_name].lower()}")
            if raw == "":
                return
            value = choices[int(raw) - 1] if raw.isdigit() and 1 <= int(raw) <= len(choices) else raw
            try:
                set_field(self.config, field_name, value, self.rules)
                return
            except ValidationError:
                self._error("Invalid selection!")

    def _set_password(self, field_name: str) -> None:
        first = self.secret_input(f"{FIELD_LABELS[field_name]} (empty clears): ")
        if first and self.secret_input("Repeat password: ") != first:
            self._error("Passwords do not match!")
            return
        try:
            set_field(self.config, field_name, first, self.rules)
        except ValidationError as e:
            self._error(str(e))

    # Review and installation

    def review(self) -> None:
        self.output("")
        self.output(colorize("Current configuration", TermColors.HEADER, self.color))
        for label, text, valid in field_status(self.config, self.rules):
            self.output(f"  {label:<16}: {self._value(text, valid)}")
        try:
            extents = plan_for(self.config)
        except CapacityError as e:
            self._error(f"  Partition layout: {e}")
            return
        self.output("  Partition layout:")
        for extent in extents:
            self.output(f"    {extent.role:<5} {extent.start_mib:>8} - {extent.end_mib:<8} MiB  {extent.filesystem}")

    def confirm(self, summary: str) -> bool:
        self.output("")
        self.output(colorize("Installation plan", TermColors.HEADER + TermColors.BOLD, self.color))
        self.output(summary)
        answer = self.input(colorize(
            f"Type {CONFIRMATION_WORD} to erase {self.config.disk} and install: ",
            TermColors.WARNING, self.color
        ))
        return answer.strip() == CONFIRMATION_WORD

    def start_installation(self) -> Optional[int]:
        """
        Run the pipeline.

        Returns:
            Exit code when the session should end, None to go back to the menu
        """
        pipeline = self.pipeline_factory()
        try:
            completed = pipeline.run(self.confirm)
        except ValidationError as e:
            self._error(f"Cannot start the installation: {e}")
            for reason in e.reasons:
                self._error(f"  - {reason}")
            return None
        except CapacityError as e:
            self._error(f"Cannot start the installation: {e}")
            return None
        except PreconditionError as e:
            self._error(f"Cannot start the installation: {e}")
            return EXIT_FAILURE
        except StageFailure as e:
            if e.started:
                self._error(f"Installation failed during '{e.stage}': {e.detail}")
            else:
                self._error(f"Installation stopped before '{e.stage}': {e.detail}")
            self._error("Mounted filesystems and swap were released. Fix the cause above and run the installer again.")
            return EXIT_FAILURE

        if not completed:
            self.output("Installation cancelled, nothing was changed.")
            return None

        self.output(colorize("Installation completed successfully! You can reboot now.",
                             TermColors.SUCCESS, self.color))
        return EXIT_OK
