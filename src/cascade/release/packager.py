"""Release Packager.

Groups collected artifacts by (variant, platform), archives each group and
writes a SHA256SUMS manifest per group.

Release Layout:
    artifacts/
    ├── bllvm-<version>-linux-x86_64.tar.gz
    ├── bllvm-experimental-<version>-windows-x86_64.zip
    ├── SHA256SUMS-linux-x86_64
    └── SHA256SUMS-experimental-windows-x86_64

Archives are reproducible: members are sorted, timestamps and ownership are
zeroed, so identical binaries always produce identical archive checksums.
"""

import gzip
import io
import re
import tarfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ..build.collector import Artifact, sha256_file
from ..config import Platform, Variant
from ..errors import ArtifactIntegrityError, ConfigurationError

SUMS_PREFIX = "SHA256SUMS"
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)

GroupKey = Tuple[Variant, Platform]


def format_checksums(entries: Dict[str, str]) -> str:
    """Render name -> sha256 entries in sha256sum format, sorted by name."""
    return "".join(f"{entries[name]}  {name}\n" for name in sorted(entries))


def parse_checksums(text: str) -> Dict[str, str]:
    """Parse sha256sum-format text into name -> sha256.

    Raises:
        ArtifactIntegrityError: On a malformed line
    """
    entries: Dict[str, str] = {}
    for line_no, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        match = re.match(r"^([0-9a-fA-F]{64})\s+\*?(.+)$", line)
        if not match:
            raise ArtifactIntegrityError(f"Malformed checksum line {line_no}: {line!r}")
        entries[match.group(2)] = match.group(1).lower()
    return entries


def sums_file_name(variant: Variant, platform: Platform) -> str:
    return f"{SUMS_PREFIX}{variant.suffix}-{platform.release_name}"


def archive_name(product: str, version: str, variant: Variant, platform: Platform) -> str:
    return f"{product}{variant.suffix}-{version}-{platform.release_name}{platform.archive_extension}"


def parse_group_name(name: str, product: str) -> Optional[GroupKey]:
    """Recover (variant, platform) from an archive or sums file name."""
    for variant in Variant:
        for platform in Platform:
            if name == sums_file_name(variant, platform):
                return variant, platform
            prefix = f"{product}{variant.suffix}-"
            suffix = f"-{platform.release_name}{platform.archive_extension}"
            if name.startswith(prefix) and name.endswith(suffix):
                version = name[len(prefix):-len(suffix)]
                # 'bllvm-experimental-v1-...' also starts with 'bllvm-'
                if version and not (
                    variant is Variant.BASE and version.startswith("experimental-")
                ):
                    return variant, platform
    return None


@dataclass(frozen=True)
class ReleaseManifest:
    """Archives, checksum files and artifacts for one version tag.

    Immutable: if an upload fails, regenerate the manifest with
    ReleasePackager.package() rather than editing files in place.
    """

    version_tag: str
    artifacts: Tuple[Artifact, ...]
    archives: Tuple[Path, ...]
    checksums_files: Tuple[Path, ...]

    @property
    def assets(self) -> List[Path]:
        """Every file to upload: archives first, then checksum files."""
        return list(self.archives) + list(self.checksums_files)

    def checksums(self) -> Dict[str, Dict[str, str]]:
        """Parsed checksum entries keyed by checksum file name."""
        result = {}
        for sums_path in self.checksums_files:
            result[sums_path.name] = parse_checksums(sums_path.read_text(encoding="utf-8"))
        return result

    def verify(self) -> None:
        """Re-hash every archive and compare with its checksum file.

        Raises:
            ArtifactIntegrityError: If an archive is missing or changed
        """
        recorded: Dict[str, str] = {}
        for entries in self.checksums().values():
            recorded.update(entries)
        for archive in self.archives:
            if not archive.is_file():
                raise ArtifactIntegrityError(f"Archive missing: {archive}")
            expected = recorded.get(archive.name)
            if expected is None:
                raise ArtifactIntegrityError(f"No checksum recorded for {archive.name}")
            actual = sha256_file(archive)
            if actual != expected:
                raise ArtifactIntegrityError(
                    f"Archive {archive.name} changed after packaging; regenerate the manifest\n"
                    f"Expected: {expected}\n"
                    f"Got: {actual}"
                )

    def release_notes(self, header: str = "") -> str:
        """Markdown body listing every artifact with its size and checksum."""
        lines = []
        if header:
            lines.extend([header.rstrip(), ""])
        lines.extend([
            f"## Artifacts ({self.version_tag})",
            "",
            "| Artifact | Variant | Platform | Size | SHA256 |",
            "|----------|---------|----------|------|--------|",
        ])
        for artifact in sorted(
            self.artifacts, key=lambda a: (a.variant.value, a.platform.value, a.name)
        ):
            lines.append(
                f"| `{artifact.name}` | {artifact.variant.value} | {artifact.platform.release_name} "
                f"| {artifact.size:,} | `{artifact.sha256}` |"
            )
        lines.append("")
        lines.append("Verify downloads with `sha256sum -c` against the matching SHA256SUMS file.")
        return "\n".join(lines) + "\n"


class ReleasePackager:
    """Builds deterministic release archives and checksum manifests.

    Example usage:
        packager = ReleasePackager(Path("artifacts"))
        manifest = packager.package(artifacts, "nightly-20261019-abc1234")
    """

    def __init__(self, output_root: Path, product: str = "bllvm", show_progress: bool = True):
        self.output_root = Path(output_root)
        self.product = product
        self.show_progress = show_progress

    def package(self, artifacts: Iterable[Artifact], version_tag: str) -> ReleaseManifest:
        """Archive artifacts per (variant, platform) and write checksum files.

        Raises:
            ConfigurationError: If the version tag is empty or there is nothing to package
            ArtifactIntegrityError: If an artifact changed since it was collected
        """
        if not version_tag or "/" in version_tag:
            raise ConfigurationError(f"Invalid version tag: {version_tag!r}")

        groups: Dict[GroupKey, List[Artifact]] = {}
        for artifact in artifacts:
            groups.setdefault((artifact.variant, artifact.platform), []).append(artifact)
        if not groups:
            raise ConfigurationError("No artifacts to package")

        self.output_root.mkdir(parents=True, exist_ok=True)
        archives: List[Path] = []
        sums_files: List[Path] = []
        all_artifacts: List[Artifact] = []

        for (variant, platform) in sorted(groups, key=lambda k: (k[0].value, k[1].value)):
            members = sorted(groups[(variant, platform)], key=lambda a: a.name)
            for artifact in members:
                if sha256_file(artifact.path) != artifact.sha256:
                    raise ArtifactIntegrityError(
                        f"{artifact.name} changed since collection; recollect before packaging"
                    )

            archive = self.output_root / archive_name(self.product, version_tag, variant, platform)
            if platform.archive_extension == ".zip":
                self._write_zip(archive, members)
            else:
                self._write_tar_gz(archive, members)

            entries = {artifact.name: artifact.sha256 for artifact in members}
            entries[archive.name] = sha256_file(archive)
            sums_path = self.output_root / sums_file_name(variant, platform)
            sums_path.write_text(format_checksums(entries), encoding="utf-8")

            if self.show_progress:
                print(f"Packaged {archive.name} ({len(members)} binaries)")

            archives.append(archive)
            sums_files.append(sums_path)
            all_artifacts.extend(members)

        return ReleaseManifest(
            version_tag=version_tag,
            artifacts=tuple(all_artifacts),
            archives=tuple(archives),
            checksums_files=tuple(sums_files),
        )

    def _write_tar_gz(self, archive: Path, members: List[Artifact]) -> None:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w", format=tarfile.GNU_FORMAT) as tar:
            for artifact in members:
                info = tarfile.TarInfo(name=artifact.name)
                info.size = artifact.path.stat().st_size
                info.mode = 0o755
                info.mtime = 0
                info.uid = info.gid = 0
                info.uname = info.gname = ""
                with open(artifact.path, "rb") as f:
                    tar.addfile(info, f)
        with open(archive, "wb") as raw:
            with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
                gz.write(buffer.getvalue())

    def _write_zip(self, archive: Path, members: List[Artifact]) -> None:
        with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for artifact in members:
                info = zipfile.ZipInfo(artifact.name, date_time=ZIP_EPOCH)
                info.external_attr = 0o755 << 16
                info.compress_type = zipfile.ZIP_DEFLATED
                zf.writestr(info, artifact.path.read_bytes())
