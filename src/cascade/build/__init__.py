"""
Build system components for Cascade.

This module provides the build side of the pipeline including:
- Build job execution (cargo build per repository/variant/platform)
- Dependency-aware scheduling on a worker pool
- Artifact collection and checksum verification
"""

from .collector import Artifact, ArtifactCollector, output_dir_name, sha256_file
from .executor import BuildExecutor, BuildJob, BuildResult
from .scheduler import BuildScheduler

__all__ = [
    "Artifact",
    "ArtifactCollector",
    "output_dir_name",
    "sha256_file",
    "BuildExecutor",
    "BuildJob",
    "BuildResult",
    "BuildScheduler",
]
