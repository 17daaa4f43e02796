"""Target platform definitions.

Supported Platforms:
    - native: x86_64 Linux, built with the host toolchain into target/release
    - windows: x86_64 Windows, cross-compiled with mingw-w64 into
      target/x86_64-pc-windows-gnu/release
"""

from enum import Enum
from pathlib import Path
from typing import List, Optional

from ..errors import ConfigurationError


class Platform(Enum):
    """Build target platform."""

    NATIVE = "native"
    WINDOWS = "windows"

    @classmethod
    def from_string(cls, value: str) -> "Platform":
        """Convert string to Platform.

        Accepts 'native', 'linux', 'windows', 'win64'.

        Raises:
            ConfigurationError: If the platform is unsupported
        """
        normalized = value.strip().lower()
        if normalized in ("native", "linux", "linux-x86_64"):
            return cls.NATIVE
        if normalized in ("windows", "win64", "windows-x86_64"):
            return cls.WINDOWS
        raise ConfigurationError(
            f"Unsupported platform: {value!r}. Expected native or windows"
        )

    @classmethod
    def parse_many(cls, value: str) -> List["Platform"]:
        """Parse 'all' or a comma-separated list of platforms."""
        if value.strip().lower() == "all":
            return list(cls)
        return [cls.from_string(part) for part in value.split(",") if part.strip()]

    @property
    def target_triple(self) -> Optional[str]:
        """Cross-compilation triple, or None for the host toolchain."""
        if self is Platform.WINDOWS:
            return "x86_64-pc-windows-gnu"
        return None

    @property
    def release_name(self) -> str:
        """Platform label used in archive and checksum file names."""
        if self is Platform.WINDOWS:
            return "windows-x86_64"
        return "linux-x86_64"

    @property
    def binary_suffix(self) -> str:
        return ".exe" if self is Platform.WINDOWS else ""

    @property
    def archive_extension(self) -> str:
        return ".zip" if self is Platform.WINDOWS else ".tar.gz"

    @property
    def dir_suffix(self) -> str:
        return "-windows" if self is Platform.WINDOWS else ""

    def release_dir(self, repo_dir: Path) -> Path:
        """Directory cargo writes release binaries to for this platform."""
        if self.target_triple:
            return repo_dir / "target" / self.target_triple / "release"
        return repo_dir / "target" / "release"

    def binary_name(self, name: str) -> str:
        return f"{name}{self.binary_suffix}"
