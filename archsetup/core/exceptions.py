"""
Base exceptions for archsetup.

This module defines the hierarchy of exceptions used by archsetup.
"""
from typing import List, Optional


class ArchsetupError(Exception):
    """Base exception for archsetup errors"""
    pass


class ValidationError(ArchsetupError):
    """Exception raised when a configuration value fails its validator"""

    def __init__(self, message: str, field: Optional[str] = None, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.field = field
        self.reasons = reasons or []


class CapacityError(ArchsetupError):
    """Exception raised when the requested partition sizes do not fit the disk"""
    pass


class PreconditionError(ArchsetupError):
    """Exception raised when the live environment cannot run an installation"""
    pass


class DiskNotFoundError(ValidationError):
    """Exception raised when specified disk is not found"""
    pass


class StageFailure(ArchsetupError):
    """Exception raised when a pipeline stage fails and the run is aborted"""

    def __init__(self, stage: str, detail: str, started: bool = True):
        if started:
            message = f"Stage '{stage}' failed: {detail}"
        else:
            message = f"Interrupted before stage '{stage}': {detail}"
        super().__init__(message)
        self.stage = stage
        self.detail = detail
        self.started = started


class StageError(ArchsetupError):
    """Base exception for errors raised inside a pipeline stage"""
    pass


class PartitioningError(StageError):
    """Exception raised when there's an error in partitioning"""
    pass


class FilesystemError(StageError):
    """Exception raised when there's an error in filesystem creation"""
    pass


class MountError(StageError):
    """Exception raised when there's an error in mounting"""
    pass


class FstabError(StageError):
    """Exception raised when there's an error in fstab generation"""
    pass


class BootstrapError(StageError):
    """Exception raised when the base system cannot be installed"""
    pass


class SystemConfigError(StageError):
    """Exception raised when configuring the new system inside the chroot fails"""
    pass


class BootloaderError(StageError):
    """Exception raised when the bootloader cannot be installed"""
    pass
