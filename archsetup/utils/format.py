"""
Formatting utilities.

This module provides functions for formatting sizes, parsing size specifications,
and consistent terminal output formatting.
"""
import re

MIB = 1024 ** 2
GIB = 1024 ** 3


# ANSI Terminal Colors
class TermColors:
    """ANSI color codes for terminal output"""
    INFO = '\033[94m'     # Blue for informational messages
    SUCCESS = '\033[92m'  # Green for valid values and success messages
    WARNING = '\033[93m'  # Yellow for warnings and stage banners
    ERROR = '\033[91m'    # Red for invalid values and errors
    SIM = '\033[96m'      # Cyan for prompts and simulation messages
    HEADER = '\033[95m'   # Purple for headers
    BOLD = '\033[1m'      # Bold text
    ENDC = '\033[0m'      # End color


def colorize(message: str, color: str, enabled: bool = True) -> str:
    """
    Add color to a message if color output is enabled.

    Args:
        message: The message to colorize
        color: The color to use (from TermColors)
        enabled: Whether colorization is enabled

    Returns:
        Colorized message or original message if colors disabled
    """
    if not enabled:
        return message
    return f"{color}{message}{TermColors.ENDC}"


def bytes_to_human_readable(size_bytes: int) -> str:
    """
    Convert bytes to human readable format using binary units (KiB, MiB, GiB, TiB).

    Args:
        size_bytes: Size in bytes

    Returns:
        Human readable size string with proper binary unit
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    size = float(size_bytes)
    for unit in ['KiB', 'MiB', 'GiB', 'TiB', 'PiB']:
        size /= 1024
        if size < 1024:
            return f"{size:.2f} {unit}"

    return f"{size:.2f} PiB"


def mib_to_human_readable(size_mib: int) -> str:
    """Human readable form of a size given in MiB."""
    return bytes_to_human_readable(size_mib * MIB)


_UNIT_FACTORS = {
    "": 1, "B": 1,
    "K": 1024, "KIB": 1024,
    "M": MIB, "MIB": MIB,
    "G": GIB, "GIB": GIB,
    "T": 1024 ** 4, "TIB": 1024 ** 4,
    "KB": 1000, "MB": 1000 ** 2, "GB": 1000 ** 3, "TB": 1000 ** 4,
}


def parse_size_spec(spec: str) -> int:
    """
    Parse an absolute size specification.

    Args:
        spec: Size specification (e.g., "100G", "100GB", "100GiB", "512M")

    Returns:
        Size in bytes

    Raises:
        ValueError: If the specification cannot be parsed
    """
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([KMGT]i?B?|B)?$", spec.strip(), re.IGNORECASE)
    if not match:
        raise ValueError(f"Invalid size specification: {spec}")

    value, unit = match.groups()
    factor = _UNIT_FACTORS.get((unit or "").upper())
    if factor is None:
        raise ValueError(f"Unknown unit: {unit}")

    return int(float(value) * factor)
