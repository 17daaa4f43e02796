"""Release Publisher.

Uploads a ReleaseManifest to a tagged GitHub release and fetches it back.

Publishing is idempotent: re-running for an existing tag reuses the release,
replaces assets with the same names and rewrites the body, so a retried
pipeline never leaves duplicate or half-published assets.
"""

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from ..build.collector import Artifact, output_dir_name, sha256_file
from ..errors import ArtifactIntegrityError, DownloadError, GitHubAPIError, PublishError
from .downloader import ArtifactDownloader
from .github import GitHubClient
from .packager import SUMS_PREFIX, ReleaseManifest, parse_checksums, parse_group_name

T = TypeVar("T")

# Client errors that will not succeed on retry
NON_RETRYABLE_STATUS = {400, 401, 403, 404, 410, 422}


class ReleasePublisher:
    """Publishes and fetches release manifests.

    Example usage:
        publisher = ReleasePublisher(GitHubClient())
        release_id = publisher.publish(manifest, manifest.release_notes())
    """

    def __init__(
        self,
        client: GitHubClient,
        attempts: int = 3,
        backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        downloader: Optional[ArtifactDownloader] = None,
        product: str = "bllvm",
        show_progress: bool = True,
    ):
        """Initialize publisher.

        Args:
            client: GitHub client bound to the release repository
            attempts: Maximum attempts per network step
            backoff: Base delay in seconds, doubled after each failure
            sleep: Sleep function (injectable for tests)
            downloader: Asset downloader used by fetch()
            product: Archive name prefix
            show_progress: Whether to print upload progress
        """
        self.client = client
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self.sleep = sleep
        self.downloader = downloader or ArtifactDownloader(
            attempts=attempts, backoff=backoff, sleep=sleep
        )
        self.product = product
        self.show_progress = show_progress

    def _retry(self, description: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a network step with bounded exponential backoff.

        Raises:
            PublishError: After the last failed attempt, or immediately for
                non-retryable client errors
        """
        last_error: Optional[GitHubAPIError] = None
        for attempt in range(self.attempts):
            try:
                return fn(*args, **kwargs)
            except GitHubAPIError as e:
                last_error = e
                if e.status_code in NON_RETRYABLE_STATUS:
                    break
                if attempt < self.attempts - 1:
                    delay = self.backoff * (2 ** attempt)
                    logging.warning(
                        f"{description} failed (attempt {attempt + 1}/{self.attempts}): {e}; "
                        f"retrying in {delay:.1f}s"
                    )
                    self.sleep(delay)
        raise PublishError(f"{description} failed: {last_error}") from last_error

    def publish(
        self,
        manifest: ReleaseManifest,
        release_notes: str = "",
        prerelease: bool = True,
        target_commitish: Optional[str] = None,
    ) -> int:
        """Create or update the release for manifest.version_tag and upload assets.

        Args:
            manifest: Packaged release
            release_notes: Markdown placed above the generated artifact table
            prerelease: Whether to mark a newly created release as prerelease
            target_commitish: Commit the tag should point at when created

        Returns:
            GitHub release id

        Raises:
            ArtifactIntegrityError: If the manifest's archives changed since packaging
            PublishError: If a network step keeps failing
        """
        manifest.verify()
        tag = manifest.version_tag
        body = manifest.release_notes(header=release_notes)

        release = self._retry(f"Looking up release {tag}", self.client.get_release_by_tag, tag)
        if release is None:
            logging.info(f"Creating release {tag} in {self.client.slug}")
            release = self._retry(
                f"Creating release {tag}",
                self.client.create_release,
                tag,
                name=tag,
                body=body,
                prerelease=prerelease,
                target_commitish=target_commitish,
            )
        else:
            logging.info(f"Updating existing release {tag} (id={release['id']})")
        release_id = int(release["id"])

        existing = {
            asset["name"]: asset["id"]
            for asset in self._retry(f"Listing assets of {tag}", self.client.list_assets, release_id)
        }
        for path in manifest.assets:
            if path.name in existing:
                self._retry(f"Deleting stale asset {path.name}", self.client.delete_asset, existing[path.name])
            if self.show_progress:
                print(f"Uploading {path.name}...")
            self._retry(f"Uploading {path.name}", self.client.upload_asset, release_id, path)

        self._retry(f"Updating release notes for {tag}", self.client.update_release, release_id, body=body)
        logging.info(f"Published {len(manifest.assets)} assets to {self.client.slug}@{tag}")
        return release_id

    def fetch(self, tag: str, dest: Path) -> ReleaseManifest:
        """Download a published release and verify it against its checksum files.

        Args:
            tag: Release tag
            dest: Directory to download and extract into

        Returns:
            Manifest describing the downloaded archives and extracted binaries

        Raises:
            DownloadError: If the release or an asset cannot be downloaded
            ArtifactIntegrityError: If any checksum does not match
        """
        dest = Path(dest)
        try:
            release = self._retry(f"Looking up release {tag}", self.client.get_release_by_tag, tag)
        except PublishError as e:
            raise DownloadError(str(e)) from e
        if release is None:
            raise DownloadError(f"Release {tag} not found in {self.client.slug}")

        assets: Dict[str, Dict[str, Any]] = {a["name"]: a for a in release.get("assets", [])}
        sums_names = sorted(n for n in assets if n.startswith(SUMS_PREFIX))
        if not sums_names:
            raise DownloadError(f"Release {tag} has no {SUMS_PREFIX} files")

        fetched_at = datetime.now(timezone.utc)
        archives: List[Path] = []
        sums_files: List[Path] = []
        artifacts: List[Artifact] = []

        for sums_name in sums_names:
            group = parse_group_name(sums_name, self.product)
            if group is None:
                logging.warning(f"Skipping unrecognized checksum file {sums_name}")
                continue
            variant, platform = group
            sums_path = self._download_asset(assets[sums_name], dest / sums_name)
            sums_files.append(sums_path)
            entries = parse_checksums(sums_path.read_text(encoding="utf-8"))

            archive_names = [
                name for name in entries
                if name in assets and parse_group_name(name, self.product) == group
            ]
            if not archive_names:
                raise ArtifactIntegrityError(f"{sums_name} lists no archive present in {tag}")

            for name in archive_names:
                archive = self._download_asset(assets[name], dest / name, checksum=entries[name])
                archives.append(archive)
                extract_dir = dest / output_dir_name(variant, platform)
                for binary in self.downloader.extract_archive(archive, extract_dir):
                    expected = entries.get(binary.name)
                    if expected is None:
                        raise ArtifactIntegrityError(
                            f"{binary.name} in {name} is not listed in {sums_name}"
                        )
                    actual = sha256_file(binary)
                    if actual != expected:
                        raise ArtifactIntegrityError(
                            f"Checksum mismatch for {binary.name} from {name}\n"
                            f"Expected: {expected}\n"
                            f"Got: {actual}"
                        )
                    artifacts.append(
                        Artifact(
                            name=binary.name,
                            repo="",
                            platform=platform,
                            variant=variant,
                            sha256=actual,
                            size=binary.stat().st_size,
                            path=binary,
                            collected_at=fetched_at,
                        )
                    )

        return ReleaseManifest(
            version_tag=tag,
            artifacts=tuple(artifacts),
            archives=tuple(archives),
            checksums_files=tuple(sums_files),
        )

    def _download_asset(
        self,
        asset: Dict[str, Any],
        dest: Path,
        checksum: Optional[str] = None,
    ) -> Path:
        url, headers = self.client.asset_download_request(asset)
        return self.downloader.download(
            url, dest, checksum=checksum, headers=headers, show_progress=self.show_progress
        )
