"""Host package management for Cascade.

This module installs the system packages and Rust targets needed to build
the native and cross-compiled Windows binaries.
"""

from .prerequisites import (
    INSTALL_STRATEGIES,
    DistributionDetector,
    InstallReport,
    PrerequisiteInstaller,
    parse_os_release,
)

__all__ = [
    "INSTALL_STRATEGIES",
    "DistributionDetector",
    "InstallReport",
    "PrerequisiteInstaller",
    "parse_os_release",
]
