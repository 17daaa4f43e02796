"""Artifact Collector and Verifier.

Copies compiled binaries into variant-and-platform scoped output directories
and checksums them.

Output Structure:
    artifacts/
    ├── binaries/                          # base, native
    ├── binaries-experimental/             # experimental, native
    ├── binaries-windows/                  # base, windows (*.exe)
    └── binaries-experimental-windows/     # experimental, windows (*.exe)

Each directory holds a .index.json recording what was collected, when, and
until when it may be reused by runs that do not rebuild that repository.
"""

import hashlib
import json
import logging
import shutil
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..config import Platform, Variant
from ..errors import ArtifactIntegrityError, StaleArtifactError
from .executor import BuildResult

INDEX_FILE = ".index.json"
CHUNK_SIZE = 8192


def sha256_file(path: Path, chunk_size: int = CHUNK_SIZE) -> str:
    """SHA256 hex digest of a file, read in chunks."""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def output_dir_name(variant: Variant, platform: Platform) -> str:
    """Directory name for a (variant, platform) pair, e.g. 'binaries-experimental-windows'."""
    return f"binaries{variant.suffix}{platform.dir_suffix}"


@dataclass(frozen=True)
class Artifact:
    """A checksummed build output.

    Never mutated after the checksum is computed; a content change means a
    new Artifact.
    """

    name: str
    repo: str
    platform: Platform
    variant: Variant
    sha256: str
    size: int
    path: Path
    collected_at: datetime
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["platform"] = self.platform.value
        data["variant"] = self.variant.value
        data["path"] = str(self.path)
        data["collected_at"] = self.collected_at.isoformat()
        data["expires_at"] = self.expires_at.isoformat() if self.expires_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Artifact":
        expires_at = data.get("expires_at")
        return cls(
            name=data["name"],
            repo=data["repo"],
            platform=Platform(data["platform"]),
            variant=Variant(data["variant"]),
            sha256=data["sha256"],
            size=int(data["size"]),
            path=Path(data["path"]),
            collected_at=datetime.fromisoformat(data["collected_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )


class ArtifactCollector:
    """Collects and verifies binaries from successful BuildResults.

    This class handles:
    - Locating binaries per platform (target/release vs cross target dir)
    - Copying them into the scoped output directory
    - Computing SHA256, then re-hashing the copy to catch truncation
    - Reusing unexpired artifacts for repositories outside the build scope

    Example usage:
        collector = ArtifactCollector(Path("artifacts"), ttl=timedelta(days=90))
        artifacts = collector.collect(results, Variant.BASE, Platform.NATIVE)
    """

    def __init__(
        self,
        output_root: Path,
        ttl: Optional[timedelta] = None,
        show_progress: bool = True,
    ):
        """Initialize collector.

        Args:
            output_root: Root 'artifacts' directory
            ttl: Reuse window for collected artifacts (None = never expires)
            show_progress: Whether to print collected artifacts
        """
        self.output_root = Path(output_root)
        self.ttl = ttl
        self.show_progress = show_progress

    def output_dir(self, variant: Variant, platform: Platform) -> Path:
        return self.output_root / output_dir_name(variant, platform)

    def load_index(self, variant: Variant, platform: Platform) -> List[Artifact]:
        index_path = self.output_dir(variant, platform) / INDEX_FILE
        if not index_path.exists():
            return []
        try:
            with open(index_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return [Artifact.from_dict(entry) for entry in data.get("artifacts", [])]
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logging.warning(f"Ignoring corrupted artifact index {index_path}: {e}")
            return []

    def _write_index(self, variant: Variant, platform: Platform, artifacts: List[Artifact]) -> None:
        out_dir = self.output_dir(variant, platform)
        out_dir.mkdir(parents=True, exist_ok=True)
        index_path = out_dir / INDEX_FILE
        temp_path = index_path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump({"artifacts": [a.to_dict() for a in artifacts]}, f, indent=2)
        temp_path.replace(index_path)

    def collect(
        self,
        results: Iterable[BuildResult],
        variant: Variant,
        platform: Platform,
        reuse: Iterable[str] = (),
        now: Optional[datetime] = None,
    ) -> List[Artifact]:
        """Collect and verify artifacts for one (variant, platform).

        Args:
            results: Build results; only successful ones for this variant and
                platform are collected
            variant: Variant being collected
            platform: Platform being collected
            reuse: Repositories not rebuilt this run whose previously collected
                artifacts should be carried forward
            now: Current time (injectable for tests)

        Returns:
            Artifacts sorted by name

        Raises:
            ArtifactIntegrityError: If a binary is missing or its copy is corrupt
            StaleArtifactError: If a reused artifact has expired
        """
        now = now or datetime.now(timezone.utc)
        out_dir = self.output_dir(variant, platform)
        out_dir.mkdir(parents=True, exist_ok=True)

        collected: Dict[str, Artifact] = {}
        skipped_repos = set()
        for result in results:
            job = result.job
            if job.variant is not variant or job.platform is not platform:
                continue
            if result.skipped:
                skipped_repos.add(job.repo.name)
            if not result.success:
                continue
            for source in result.binary_paths:
                artifact = self._copy_and_hash(source, job.repo.name, variant, platform, now)
                collected[artifact.name] = artifact

        built_repos = {a.repo for a in collected.values()}
        reuse_repos = set(reuse) - built_repos
        if reuse_repos:
            for artifact in self._reuse(variant, platform, reuse_repos, now):
                collected.setdefault(artifact.name, artifact)

        artifacts = sorted(collected.values(), key=lambda a: a.name)
        for artifact in artifacts:
            self.verify(artifact)

        retained = self._retained(variant, platform, skipped_repos - {a.repo for a in artifacts})
        self._write_index(variant, platform, artifacts + retained)
        if self.show_progress:
            for artifact in artifacts:
                print(f"  {artifact.name}: {artifact.size:,} bytes sha256={artifact.sha256[:16]}")
        return artifacts

    def _copy_and_hash(
        self,
        source: Path,
        repo: str,
        variant: Variant,
        platform: Platform,
        now: datetime,
    ) -> Artifact:
        if not source.is_file():
            raise ArtifactIntegrityError(
                f"Expected binary missing after successful build of {repo} "
                f"[{variant.value}/{platform.value}]: {source}"
            )
        dest = self.output_dir(variant, platform) / source.name
        shutil.copy2(source, dest)

        source_hash = sha256_file(source)
        expires_at = now + self.ttl if self.ttl is not None else None
        return Artifact(
            name=dest.name,
            repo=repo,
            platform=platform,
            variant=variant,
            sha256=source_hash,
            size=source.stat().st_size,
            path=dest,
            collected_at=now,
            expires_at=expires_at,
        )

    def _reuse(
        self,
        variant: Variant,
        platform: Platform,
        repos: Iterable[str],
        now: datetime,
    ) -> List[Artifact]:
        wanted = set(repos)
        previous = [a for a in self.load_index(variant, platform) if a.repo in wanted]
        expired = {a.repo for a in previous if a.is_expired(now)}
        if expired:
            raise StaleArtifactError(expired)
        for artifact in previous:
            logging.info(f"Reusing {artifact.name} from {artifact.collected_at.isoformat()}")
        return previous

    def _retained(self, variant: Variant, platform: Platform, repos: Iterable[str]) -> List[Artifact]:
        """Previous index entries for skipped repositories.

        They stay in the index so later runs that do not rebuild the
        repository can still reuse them, but are not part of this release.
        """
        wanted = set(repos)
        if not wanted:
            return []
        return [a for a in self.load_index(variant, platform) if a.repo in wanted]

    def verify(self, artifact: Artifact) -> None:
        """Re-hash an artifact's file and compare with its recorded checksum.

        Raises:
            ArtifactIntegrityError: If the file is missing, truncated or altered
        """
        if not artifact.path.is_file():
            raise ArtifactIntegrityError(f"Artifact file missing: {artifact.path}")
        actual_size = artifact.path.stat().st_size
        actual = sha256_file(artifact.path)
        if actual != artifact.sha256 or actual_size != artifact.size:
            raise ArtifactIntegrityError(
                f"Checksum mismatch for {artifact.name} "
                f"[{artifact.variant.value}/{artifact.platform.value}]\n"
                f"Expected: {artifact.sha256} ({artifact.size} bytes)\n"
                f"Got: {actual} ({actual_size} bytes)"
            )
