"""Cascade exception hierarchy.

All Cascade-specific exceptions inherit from CascadeError so the CLI can
map them to exit codes in one place.

Retry policy by type:
    - ConfigurationError, ArtifactIntegrityError: never retried
    - BuildFailure: only retried when the whole pipeline is re-invoked
    - PublishError, DownloadError: retried with backoff before surfacing
"""

from typing import Iterable, Optional


class CascadeError(Exception):
    """Base exception for all Cascade errors."""

    pass


class ConfigurationError(CascadeError):
    """Invalid variant, repository, or registry configuration."""

    pass


class CyclicDependencyError(ConfigurationError):
    """Raised when the repository graph describes a cycle."""

    def __init__(self, cycle: Iterable[str]):
        self.cycle = list(cycle)
        super().__init__(f"Cyclic dependency detected: {' -> '.join(self.cycle)}")


class BuildFailure(CascadeError):
    """Raised when the compiler exits nonzero for a required repository."""

    def __init__(
        self,
        repo: str,
        variant: str,
        platform: str,
        output: str = "",
        returncode: Optional[int] = None,
    ):
        self.repo = repo
        self.variant = variant
        self.platform = platform
        self.output = output
        self.returncode = returncode
        message = f"Build failed for {repo} (variant={variant}, platform={platform})"
        if returncode is not None:
            message += f" with exit code {returncode}"
        if output:
            message += f"\n{output}"
        super().__init__(message)

    @property
    def identity(self) -> str:
        """Short (repo, variant, platform) label for error banners."""
        return f"{self.repo} [{self.variant}/{self.platform}]"


class ArtifactIntegrityError(CascadeError):
    """Raised on a checksum mismatch or a binary missing after a reported success."""

    pass


class StaleArtifactError(ArtifactIntegrityError):
    """Raised when a reused artifact is past its expiration time."""

    def __init__(self, repos: Iterable[str]):
        self.repos = sorted(set(repos))
        super().__init__(
            f"Artifacts expired for {', '.join(self.repos)}; rebuild required"
        )


class PublishError(CascadeError):
    """Raised when a release upload fails after all retry attempts."""

    pass


class DownloadError(CascadeError):
    """Raised when a release asset download fails after all retry attempts."""

    pass


class GitHubAPIError(CascadeError):
    """Raised when the GitHub API returns an unexpected status code."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class DispatchError(CascadeError):
    """Raised on an illegal dispatcher state transition or a malformed event."""

    pass


class PrerequisiteError(CascadeError):
    """Raised when no install command for the build prerequisites succeeds."""

    pass
