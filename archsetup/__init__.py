"""
archsetup - Interactive installer for a fresh Arch Linux system

This package plans the partition layout of one disk from a validated
configuration and runs the installation as an ordered, fail-fast pipeline.
"""

__version__ = "0.1.0"
