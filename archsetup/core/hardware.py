"""
Hardware detection module.

This module classifies the CPU and GPU vendors of the live system into
microcode and GPU driver suggestions. Detection is read-only and its result
is cached for the session; choosing what to install from it happens only
when an installation is planned.
"""
import logging
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from archsetup.utils.command import CommandRunner
from archsetup.utils.types import HardwareInfo

logger = logging.getLogger('archsetup')

UNKNOWN = "unknown"
CPUINFO_PATH = "/proc/cpuinfo"

Rule = Tuple[Callable[[str], bool], str]


def _contains(*needles: str) -> Callable[[str], bool]:
    return lambda text: any(needle in text for needle in needles)


# First match wins
CPU_RULES: List[Rule] = [
    (_contains("Intel"), "intel"),
    (_contains("AMD"), "amd"),
]

GPU_RULES: List[Rule] = [
    (_contains("NVIDIA"), "nvidia"),
    (_contains("AMD", "ATI"), "amdgpu"),
    (_contains("Intel"), "i915"),
]

MICROCODE_PACKAGES = {
    "intel": "intel-ucode",
    "amd": "amd-ucode",
}

GPU_PACKAGES = {
    "nvidia": "nvidia",
    "amdgpu": "xf86-video-amdgpu",
    "i915": "xf86-video-intel",
}

GPU_CLASS_MARKERS = ("vga", "3d", "display")


def classify(text: str, rules: Sequence[Rule]) -> str:
    """
    Return the suggestion of the first rule matching text, or "unknown".

    Args:
        text: Vendor string or device descriptor
        rules: Ordered (predicate, suggestion) pairs

    Returns:
        Suggested value
    """
    for predicate, suggestion in rules:
        if predicate(text):
            return suggestion
    return UNKNOWN


def parse_cpu_vendor(cpuinfo: str) -> str:
    """Return the first vendor_id value of a /proc/cpuinfo dump."""
    for line in cpuinfo.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() == "vendor_id":
            return value.strip()
    return ""


def parse_gpu_descriptor(lspci_output: str) -> str:
    """Keep only the display controller lines of lspci output."""
    lines = [
        line for line in lspci_output.splitlines()
        if any(marker in line.lower() for marker in GPU_CLASS_MARKERS)
    ]
    return "\n".join(lines)


class HardwareProbe:
    """
    Detects CPU and GPU vendors once per session.

    The probe never touches the installation configuration; callers resolve
    "auto" choices against `detect()` when they need a package name.
    """

    def __init__(self, cmd_runner: CommandRunner, cpuinfo_path: str = CPUINFO_PATH):
        self.cmd_runner = cmd_runner
        self.cpuinfo_path = Path(cpuinfo_path)
        self._cached: Optional[HardwareInfo] = None

    def detect(self) -> HardwareInfo:
        if self._cached is None:
            cpu_vendor = self._read_cpu_vendor()
            gpu_descriptor = self._read_gpu_descriptor()
            self._cached = HardwareInfo(
                cpu_vendor=cpu_vendor,
                gpu_descriptor=gpu_descriptor,
                microcode=classify(cpu_vendor, CPU_RULES),
                gpu=classify(gpu_descriptor, GPU_RULES),
            )
            logger.info(
                f"Detected hardware: microcode={self._cached['microcode']}, gpu={self._cached['gpu']}"
            )
        return self._cached

    def _read_cpu_vendor(self) -> str:
        if self.cmd_runner.simulating and "cpu_vendor" in self.cmd_runner.simulation_params:
            return self.cmd_runner.simulation_params["cpu_vendor"]
        try:
            return parse_cpu_vendor(self.cpuinfo_path.read_text(encoding="utf-8", errors="replace"))
        except OSError as e:
            logger.warning(f"Could not read {self.cpuinfo_path}: {e}")
            return ""

    def _read_gpu_descriptor(self) -> str:
        try:
            result = self.cmd_runner.run(["lspci", "-nn"], check=False)
        except subprocess.CalledProcessError as e:
            logger.warning(f"Could not list PCI devices: {e}")
            return ""
        return parse_gpu_descriptor(result.stdout)

    def resolve_microcode(self, choice: str) -> Optional[str]:
        """
        Resolve a microcode choice to a package name.

        Returns:
            Package name, or None when no microcode is installed
        """
        vendor = self.detect()["microcode"] if choice == "auto" else choice
        return MICROCODE_PACKAGES.get(vendor)

    def resolve_gpu_driver(self, choice: str) -> Optional[str]:
        """
        Resolve a GPU driver choice to a package name.

        Returns:
            Package name, or None when no driver is installed
        """
        vendor = self.detect()["gpu"] if choice == "auto" else choice
        return GPU_PACKAGES.get(vendor)
