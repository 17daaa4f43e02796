"""Build run configuration.

BuildConfig is the single place ambient settings enter the pipeline. The
Build Executor never reads the process environment for parallelism; it gets
an already-validated ``jobs`` value from here.

Environment variables:
    CASCADE_BUILD_JOBS / CARGO_BUILD_JOBS: parallel compile workers ('0' = unset)
    CASCADE_LOG: log level exported to the compiler as RUST_LOG
    CASCADE_WORKSPACE: directory holding the repository checkouts
    CASCADE_OUTPUT_DIR: artifact output root (default: <cwd>/artifacts)
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Union

import psutil

from ..errors import ConfigurationError

JOBS_ENV_VARS = ("CASCADE_BUILD_JOBS", "CARGO_BUILD_JOBS")
LOG_ENV_VAR = "CASCADE_LOG"
WORKSPACE_ENV_VAR = "CASCADE_WORKSPACE"
OUTPUT_ENV_VAR = "CASCADE_OUTPUT_DIR"

DEFAULT_ARTIFACT_TTL = timedelta(days=90)


class BuildMode(Enum):
    """Pipeline mode; only release mode tolerates optional-repository failures."""

    DEV = "dev"
    RELEASE = "release"

    @classmethod
    def from_string(cls, value: str) -> "BuildMode":
        try:
            return cls(value.strip().lower())
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid build mode: {value!r}. Expected dev or release"
            ) from e


def normalize_jobs(value: Union[None, int, str]) -> Optional[int]:
    """Validate a parallelism override.

    None, '' and 0 all mean "unset" (use every available core). Some CI
    environments export a literal 0, which cargo rejects.

    Raises:
        ConfigurationError: If the value is negative or not an integer
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            value = int(value)
        except ValueError as e:
            raise ConfigurationError(f"Build jobs must be an integer, got {value!r}") from e
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"Build jobs must be an integer, got {value!r}")
    if value < 0:
        raise ConfigurationError(f"Build jobs must be positive, got {value}")
    if value == 0:
        return None
    return value


def default_worker_count() -> int:
    """Number of concurrent build jobs the scheduler may run."""
    return max(1, psutil.cpu_count(logical=True) or 1)


@dataclass(frozen=True)
class BuildConfig:
    """Validated configuration for one pipeline run.

    Attributes:
        mode: dev or release
        jobs: Positive compile worker count, or None for all cores
        workspace: Directory containing one checkout per repository
        output_root: Artifact output root ('artifacts/')
        log_level: Value exported to the compiler as RUST_LOG
        artifact_ttl: How long collected artifacts may be reused
        max_workers: Concurrent build jobs in the scheduler
        publish_attempts: Bounded retry count for network-facing steps
        publish_backoff: Base delay in seconds for exponential backoff
        product: Archive name prefix
    """

    mode: BuildMode = BuildMode.DEV
    jobs: Optional[int] = None
    workspace: Path = field(default_factory=Path.cwd)
    output_root: Path = field(default_factory=lambda: Path.cwd() / "artifacts")
    log_level: Optional[str] = None
    artifact_ttl: Optional[timedelta] = DEFAULT_ARTIFACT_TTL
    max_workers: int = 1
    publish_attempts: int = 3
    publish_backoff: float = 2.0
    product: str = "bllvm"

    @classmethod
    def create(
        cls,
        mode: Union[BuildMode, str] = BuildMode.DEV,
        jobs: Union[None, int, str] = None,
        workspace: Optional[Path] = None,
        output_root: Optional[Path] = None,
        log_level: Optional[str] = None,
        artifact_ttl: Optional[timedelta] = DEFAULT_ARTIFACT_TTL,
        max_workers: Optional[int] = None,
        publish_attempts: int = 3,
        publish_backoff: float = 2.0,
    ) -> "BuildConfig":
        """Validate raw values and build a config.

        Raises:
            ConfigurationError: If any value is invalid
        """
        if not isinstance(mode, BuildMode):
            mode = BuildMode.from_string(mode)
        if publish_attempts < 1:
            raise ConfigurationError("publish_attempts must be at least 1")
        if max_workers is not None and max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")

        workspace = Path(workspace).resolve() if workspace else Path.cwd()
        output_root = Path(output_root).resolve() if output_root else workspace / "artifacts"

        return cls(
            mode=mode,
            jobs=normalize_jobs(jobs),
            workspace=workspace,
            output_root=output_root,
            log_level=log_level or None,
            artifact_ttl=artifact_ttl,
            max_workers=max_workers or default_worker_count(),
            publish_attempts=publish_attempts,
            publish_backoff=publish_backoff,
        )

    @classmethod
    def from_env(
        cls,
        mode: Union[BuildMode, str] = BuildMode.DEV,
        jobs: Union[None, int, str] = None,
        env: Optional[Mapping[str, str]] = None,
        **kwargs,
    ) -> "BuildConfig":
        """Build a config, filling unset values from environment variables.

        An explicit ``jobs`` argument wins over the environment.
        """
        env = os.environ if env is None else env

        if normalize_jobs(jobs) is None:
            for name in JOBS_ENV_VARS:
                candidate = normalize_jobs(env.get(name))
                if candidate is not None:
                    jobs = candidate
                    break

        if kwargs.get("workspace") is None and env.get(WORKSPACE_ENV_VAR):
            kwargs["workspace"] = Path(env[WORKSPACE_ENV_VAR])
        if kwargs.get("output_root") is None and env.get(OUTPUT_ENV_VAR):
            kwargs["output_root"] = Path(env[OUTPUT_ENV_VAR])
        if kwargs.get("log_level") is None:
            kwargs["log_level"] = env.get(LOG_ENV_VAR)

        return cls.create(mode=mode, jobs=jobs, **kwargs)

    @property
    def is_release(self) -> bool:
        return self.mode is BuildMode.RELEASE

    def repo_dir(self, repo: str) -> Path:
        return self.workspace / repo
