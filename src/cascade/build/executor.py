"""Build Executor.

This module runs cargo for one repository, one variant and one platform,
and applies the failure policy to the outcome.

Design:
    - Wraps subprocess.run for cargo invocations (synchronous, never retried)
    - Builds the command from the job's target triple and feature set
    - Only appends --features when the feature string is non-empty
    - Only appends --jobs for a positive override; 0 is treated as unset
    - Downgrades failures of optional repositories to warnings in release mode
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config import BuildConfig, FeatureSet, Platform, RepositoryDescriptor, Variant, VariantResolver
from ..errors import BuildFailure

CARGO = "cargo"


@dataclass(frozen=True)
class BuildJob:
    """One (repository, variant, platform) unit of compilation work."""

    repo: RepositoryDescriptor
    variant: Variant
    platform: Platform
    features: FeatureSet
    target_triple: Optional[str] = None

    @property
    def identity(self) -> str:
        return f"{self.repo.name} [{self.variant.value}/{self.platform.value}]"


@dataclass
class BuildResult:
    """Result of running one BuildJob.

    Attributes:
        job: The job that was run
        success: Whether cargo exited zero
        binary_paths: Expected binary locations for a successful build
        output: Captured compiler output (stderr, then stdout)
        returncode: Cargo exit code (None if cargo never started)
        skipped: Failure downgraded to a warning (optional repo, release mode)
        build_time: Wall-clock seconds spent in the compiler
    """

    job: BuildJob
    success: bool
    binary_paths: List[Path] = field(default_factory=list)
    output: str = ""
    returncode: Optional[int] = None
    skipped: bool = False
    build_time: float = 0.0


Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class BuildExecutor:
    """Runs cargo builds for BuildJobs.

    This class handles:
    - Creating jobs with resolved feature flags
    - Building the cargo command line and subprocess environment
    - Running the compiler and capturing its output
    - Applying the optional-in-release failure policy

    Example usage:
        executor = BuildExecutor(BuildConfig.create(mode="release"))
        job = executor.make_job(registry.get("blvm-node"), Variant.BASE, Platform.NATIVE)
        result = executor.check(executor.run(job))
    """

    def __init__(
        self,
        config: BuildConfig,
        resolver: Optional[VariantResolver] = None,
        runner: Optional[Runner] = None,
        timeout: Optional[float] = None,
        show_progress: bool = True,
    ):
        """Initialize build executor.

        Args:
            config: Validated run configuration
            resolver: Variant resolver (defaults to the built-in tables)
            runner: subprocess.run-compatible callable, injectable for tests
            timeout: Optional per-build timeout in seconds
            show_progress: Whether to print a line per build
        """
        self.config = config
        self.resolver = resolver or VariantResolver()
        self.runner = runner or subprocess.run
        self.timeout = timeout
        self.show_progress = show_progress

    def make_job(
        self,
        repo: RepositoryDescriptor,
        variant: Variant,
        platform: Platform,
    ) -> BuildJob:
        return BuildJob(
            repo=repo,
            variant=variant,
            platform=platform,
            features=self.resolver.features_for(repo.name, variant),
            target_triple=platform.target_triple,
        )

    def build_command(self, job: BuildJob) -> List[str]:
        """Cargo command line for a job."""
        cmd = [CARGO, "build", "--release"]
        if job.target_triple:
            cmd.extend(["--target", job.target_triple])
        cmd.extend(job.features.to_cargo_args())
        if self.config.jobs:
            cmd.extend(["--jobs", str(self.config.jobs)])
        return cmd

    def build_env(self, job: BuildJob) -> Dict[str, str]:
        """Subprocess environment for a job.

        CARGO_BUILD_JOBS is always stripped; parallelism is passed explicitly
        on the command line, and a stray '0' would make cargo abort.
        """
        env = dict(os.environ)
        env.pop("CARGO_BUILD_JOBS", None)
        if self.config.log_level:
            env["RUST_LOG"] = self.config.log_level
        return env

    def expected_binaries(self, job: BuildJob) -> List[Path]:
        release_dir = job.platform.release_dir(self.config.repo_dir(job.repo.name))
        return [release_dir / job.platform.binary_name(name) for name in job.repo.binaries]

    def run(self, job: BuildJob) -> BuildResult:
        """Run cargo for one job.

        Never raises for compiler failures; those are reported as an
        unsuccessful BuildResult so the caller can apply policy.
        """
        repo_dir = self.config.repo_dir(job.repo.name)
        if not repo_dir.is_dir():
            return BuildResult(
                job=job,
                success=False,
                output=f"Repository checkout not found: {repo_dir}",
            )

        cmd = self.build_command(job)
        if self.show_progress:
            print(f"Building {job.identity} ({str(job.features) or 'no features'})...")
        logging.info(f"Running {' '.join(cmd)} in {repo_dir}")

        start_time = time.time()
        try:
            completed = self.runner(
                cmd,
                cwd=str(repo_dir),
                env=self.build_env(job),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            return BuildResult(
                job=job,
                success=False,
                output=f"Compiler not found: {e}. Ensure the Rust toolchain is installed.",
                build_time=time.time() - start_time,
            )
        except subprocess.TimeoutExpired:
            return BuildResult(
                job=job,
                success=False,
                output=f"Build timeout for {job.identity} after {self.timeout}s",
                build_time=time.time() - start_time,
            )
        except KeyboardInterrupt as ke:
            from cascade.interrupt_utils import handle_keyboard_interrupt_properly

            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        build_time = time.time() - start_time

        if completed.returncode != 0:
            output = f"stderr: {completed.stderr}\nstdout: {completed.stdout}"
            logging.error(f"Build failed for {job.identity} with exit code {completed.returncode}")
            return BuildResult(
                job=job,
                success=False,
                output=output,
                returncode=completed.returncode,
                build_time=build_time,
            )

        logging.info(f"Built {job.identity} in {build_time:.1f}s")
        return BuildResult(
            job=job,
            success=True,
            binary_paths=self.expected_binaries(job),
            output=completed.stderr or "",
            returncode=completed.returncode,
            build_time=build_time,
        )

    def is_tolerated(self, job: BuildJob) -> bool:
        """Whether a failure of this job is only a warning."""
        return job.repo.optional_in_release and self.config.is_release

    def check(self, result: BuildResult) -> BuildResult:
        """Apply the failure policy to a result.

        Returns:
            The result, marked as skipped if the failure is tolerated

        Raises:
            BuildFailure: If the job failed and the repository is required
        """
        if result.success:
            return result

        job = result.job
        if self.is_tolerated(job):
            logging.warning(
                f"Optional repository {job.repo.name} failed to build "
                f"({job.variant.value}/{job.platform.value}); skipping it for this release"
            )
            result.skipped = True
            return result

        raise BuildFailure(
            repo=job.repo.name,
            variant=job.variant.value,
            platform=job.platform.value,
            output=result.output,
            returncode=result.returncode,
        )
