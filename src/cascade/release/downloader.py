"""Release asset downloader with progress tracking and checksum verification.

This module handles downloading artifacts published by a prior run,
extracting release archives, and verifying integrity with SHA256.
Downloads are network-facing and retried with exponential backoff.
"""

import hashlib
import logging
import tarfile
import time
import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Optional

import requests
from tqdm import tqdm

from ..errors import ArtifactIntegrityError, DownloadError


class ArtifactDownloader:
    """Downloads and extracts release assets with progress tracking."""

    def __init__(
        self,
        chunk_size: int = 8192,
        attempts: int = 3,
        backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize downloader.

        Args:
            chunk_size: Size of chunks for downloading and hashing
            attempts: Maximum download attempts per file
            backoff: Base delay in seconds, doubled after each failed attempt
            sleep: Sleep function (injectable for tests)
        """
        self.chunk_size = chunk_size
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self.sleep = sleep

    def download(
        self,
        url: str,
        dest_path: Path,
        checksum: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        show_progress: bool = True,
    ) -> Path:
        """Download a file, retrying transient failures.

        Args:
            url: URL to download from
            dest_path: Destination file path
            checksum: Optional SHA256 checksum for verification
            headers: Extra request headers (auth, Accept)
            show_progress: Whether to show progress bar

        Returns:
            Path to the downloaded file

        Raises:
            DownloadError: If every attempt fails
            ArtifactIntegrityError: If checksum verification fails (not retried)
        """
        last_error: Optional[Exception] = None
        for attempt in range(self.attempts):
            try:
                return self._download_once(url, Path(dest_path), checksum, headers, show_progress)
            except requests.RequestException as e:
                last_error = e
                if attempt < self.attempts - 1:
                    delay = self.backoff * (2 ** attempt)
                    logging.warning(
                        f"Download of {url} failed (attempt {attempt + 1}/{self.attempts}): {e}; "
                        f"retrying in {delay:.1f}s"
                    )
                    self.sleep(delay)
        raise DownloadError(
            f"Failed to download {url} after {self.attempts} attempts: {last_error}"
        )

    def _download_once(
        self,
        url: str,
        dest_path: Path,
        checksum: Optional[str],
        headers: Optional[Dict[str, str]],
        show_progress: bool,
    ) -> Path:
        dest_path.parent.mkdir(parents=True, exist_ok=True)

        # Use temporary file during download
        temp_file = dest_path.with_suffix(dest_path.suffix + ".tmp")

        try:
            response = requests.get(url, headers=headers, stream=True, timeout=30)
            response.raise_for_status()

            total_size = int(response.headers.get("content-length", 0))

            progress_bar = None
            if show_progress and total_size > 0:
                progress_bar = tqdm(
                    total=total_size,
                    unit="B",
                    unit_scale=True,
                    unit_divisor=1024,
                    desc=f"Downloading {dest_path.name}",
                )

            sha256 = hashlib.sha256()
            with open(temp_file, "wb") as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if chunk:
                        f.write(chunk)
                        sha256.update(chunk)
                        if progress_bar:
                            progress_bar.update(len(chunk))

            if progress_bar:
                progress_bar.close()

            if checksum:
                actual_checksum = sha256.hexdigest()
                if actual_checksum.lower() != checksum.lower():
                    temp_file.unlink()
                    raise ArtifactIntegrityError(
                        f"Checksum mismatch for {url}\n"
                        + f"Expected: {checksum}\n"
                        + f"Got: {actual_checksum}"
                    )

            temp_file.replace(dest_path)
            return dest_path

        except Exception:
            if temp_file.exists():
                temp_file.unlink()
            raise

    def extract_archive(self, archive_path: Path, dest_dir: Path) -> List[Path]:
        """Extract a flat release archive (.tar.gz or .zip).

        Returns:
            Paths of the extracted files

        Raises:
            DownloadError: If the archive is unsupported, corrupt, or has
                members outside the destination directory
        """
        archive_path = Path(archive_path)
        dest_dir = Path(dest_dir)
        if not archive_path.exists():
            raise DownloadError(f"Archive not found: {archive_path}")
        dest_dir.mkdir(parents=True, exist_ok=True)

        try:
            if archive_path.name.endswith(".zip"):
                with zipfile.ZipFile(archive_path, "r") as zip_file:
                    names = zip_file.namelist()
                    self._check_members(names, archive_path)
                    zip_file.extractall(dest_dir)
            elif archive_path.name.endswith(".tar.gz"):
                with tarfile.open(archive_path, "r:gz") as tar:
                    names = tar.getnames()
                    self._check_members(names, archive_path)
                    tar.extractall(dest_dir)
            else:
                raise DownloadError(f"Unsupported archive format: {archive_path.name}")
        except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
            raise DownloadError(f"Failed to extract {archive_path}: {e}") from e

        return [dest_dir / name for name in sorted(names)]

    @staticmethod
    def _check_members(names: List[str], archive_path: Path) -> None:
        for name in names:
            if name.startswith("/") or ".." in Path(name).parts:
                raise DownloadError(f"Unsafe path {name!r} in {archive_path.name}")
