"""Release packaging and publishing for Cascade.

This module archives collected artifacts, writes SHA256SUMS manifests and
publishes them to tagged GitHub releases.
"""

from .downloader import ArtifactDownloader
from .github import GitHubClient
from .packager import (
    ReleaseManifest,
    ReleasePackager,
    archive_name,
    format_checksums,
    parse_checksums,
    sums_file_name,
)
from .publisher import ReleasePublisher

__all__ = [
    "ArtifactDownloader",
    "GitHubClient",
    "ReleaseManifest",
    "ReleasePackager",
    "archive_name",
    "format_checksums",
    "parse_checksums",
    "sums_file_name",
    "ReleasePublisher",
]
