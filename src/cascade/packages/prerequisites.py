"""Build Prerequisite Installation.

This module detects the host Linux distribution and installs what the
pipeline needs to cross-compile: a C toolchain, mingw-w64, and the Rust
Windows target.

Supported Distributions:
    - Debian family: ubuntu, debian
    - Red Hat family: fedora, rhel, centos
    - Others: arch, alpine

Install commands are data: each distribution maps to an ordered list of
candidate commands, tried in sequence until one succeeds.
"""

import logging
import platform
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import PrerequisiteError

OS_RELEASE = Path("/etc/os-release")

RUST_WINDOWS_TARGET: Tuple[str, ...] = ("rustup", "target", "add", "x86_64-pc-windows-gnu")

INSTALL_STRATEGIES: Dict[str, List[Tuple[str, ...]]] = {
    "ubuntu": [
        ("sudo", "apt-get", "install", "-y", "build-essential", "mingw-w64", "pkg-config", "libssl-dev"),
        ("apt-get", "install", "-y", "build-essential", "mingw-w64", "pkg-config", "libssl-dev"),
    ],
    "debian": [
        ("sudo", "apt-get", "install", "-y", "build-essential", "mingw-w64", "pkg-config", "libssl-dev"),
        ("apt-get", "install", "-y", "build-essential", "mingw-w64", "pkg-config", "libssl-dev"),
    ],
    "fedora": [
        ("sudo", "dnf", "install", "-y", "gcc", "mingw64-gcc", "pkgconf-pkg-config", "openssl-devel"),
        ("dnf", "install", "-y", "gcc", "mingw64-gcc", "pkgconf-pkg-config", "openssl-devel"),
    ],
    "rhel": [
        ("sudo", "dnf", "install", "-y", "gcc", "mingw64-gcc", "openssl-devel"),
        ("sudo", "yum", "install", "-y", "gcc", "mingw64-gcc", "openssl-devel"),
    ],
    "centos": [
        ("sudo", "dnf", "install", "-y", "gcc", "mingw64-gcc", "openssl-devel"),
        ("sudo", "yum", "install", "-y", "gcc", "mingw64-gcc", "openssl-devel"),
    ],
    "arch": [
        ("sudo", "pacman", "-S", "--noconfirm", "--needed", "base-devel", "mingw-w64-gcc", "openssl"),
        ("pacman", "-S", "--noconfirm", "--needed", "base-devel", "mingw-w64-gcc", "openssl"),
    ],
    "alpine": [
        ("sudo", "apk", "add", "build-base", "mingw-w64-gcc", "openssl-dev"),
        ("apk", "add", "build-base", "mingw-w64-gcc", "openssl-dev"),
    ],
    # Last resort: try each package manager in turn
    "unknown": [
        ("sudo", "apt-get", "install", "-y", "build-essential", "mingw-w64"),
        ("sudo", "dnf", "install", "-y", "gcc", "mingw64-gcc"),
        ("sudo", "pacman", "-S", "--noconfirm", "--needed", "base-devel", "mingw-w64-gcc"),
        ("sudo", "apk", "add", "build-base", "mingw-w64-gcc"),
    ],
}

CommandRunner = Callable[[Sequence[str]], int]


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse /etc/os-release KEY=value lines (values may be quoted)."""
    values: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


class DistributionDetector:
    """Detects the host distribution id used to pick an install strategy."""

    @staticmethod
    def detect(os_release: Optional[Path] = None) -> str:
        """Detect the distribution id.

        Tries ID, then each ID_LIKE entry, against the strategy table.

        Returns:
            A key of INSTALL_STRATEGIES ('unknown' if nothing matches)
        """
        if platform.system().lower() != "linux" and os_release is None:
            return "unknown"
        path = os_release or OS_RELEASE
        try:
            values = parse_os_release(path.read_text(encoding="utf-8"))
        except OSError:
            return "unknown"

        candidates = [values.get("ID", "")] + values.get("ID_LIKE", "").split()
        for candidate in candidates:
            candidate = candidate.lower()
            if candidate in INSTALL_STRATEGIES:
                return candidate
        return "unknown"


def run_command(cmd: Sequence[str]) -> int:
    """Default runner: execute a command and return its exit code."""
    try:
        return subprocess.run(list(cmd), check=False).returncode
    except FileNotFoundError:
        return 127


@dataclass
class InstallReport:
    """Which commands were attempted and which one succeeded."""

    distribution: str
    attempted: List[Tuple[str, ...]] = field(default_factory=list)
    succeeded: Optional[Tuple[str, ...]] = None
    rust_target_added: bool = False


class PrerequisiteInstaller:
    """Installs cross-compilation prerequisites from the strategy table.

    Example usage:
        installer = PrerequisiteInstaller()
        report = installer.install()
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        strategies: Optional[Dict[str, List[Tuple[str, ...]]]] = None,
        dry_run: bool = False,
    ):
        self.runner = runner or run_command
        self.strategies = strategies or INSTALL_STRATEGIES
        self.dry_run = dry_run

    def candidates(self, distribution: str) -> List[Tuple[str, ...]]:
        return list(self.strategies.get(distribution) or self.strategies["unknown"])

    def install(self, distribution: Optional[str] = None) -> InstallReport:
        """Try each candidate command until one succeeds, then add the Rust target.

        Raises:
            PrerequisiteError: If every candidate command fails
        """
        distribution = distribution or DistributionDetector.detect()
        report = InstallReport(distribution=distribution)

        for cmd in self.candidates(distribution):
            report.attempted.append(cmd)
            if self.dry_run:
                print(f"[dry-run] {' '.join(cmd)}")
                report.succeeded = cmd
                break
            logging.info(f"Trying: {' '.join(cmd)}")
            returncode = self.runner(cmd)
            if returncode == 0:
                report.succeeded = cmd
                break
            logging.warning(f"'{' '.join(cmd)}' exited with {returncode}")

        if report.succeeded is None:
            raise PrerequisiteError(
                f"Could not install build prerequisites on {distribution}; tried "
                f"{len(report.attempted)} command(s)"
            )

        if self.dry_run:
            print(f"[dry-run] {' '.join(RUST_WINDOWS_TARGET)}")
            report.rust_target_added = True
        else:
            report.rust_target_added = self.runner(RUST_WINDOWS_TARGET) == 0
            if not report.rust_target_added:
                raise PrerequisiteError(
                    "Failed to add Rust target x86_64-pc-windows-gnu; is rustup installed?"
                )
        return report
