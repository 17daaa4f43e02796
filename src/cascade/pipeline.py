"""
Build pipeline for Cascade.

This module coordinates one build-collect-package pass:
1. Order the requested repositories (dependencies first)
2. Build every (repository, platform) pair on the scheduler's worker pool
3. Collect and verify binaries per (variant, platform)
4. Rebuild any reused repository whose artifacts have expired, then recollect
5. Package archives and checksum manifests for a version tag

Repositories outside the scope are not rebuilt; their previously collected
artifacts are carried into the release.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from .build import Artifact, ArtifactCollector, BuildExecutor, BuildResult, BuildScheduler
from .config import BuildConfig, Platform, RepositoryRegistry, Variant, VariantResolver
from .errors import CascadeError, StaleArtifactError
from .release import ReleaseManifest, ReleasePackager


@dataclass
class PipelineResult:
    """Outcome of one pipeline pass for a single variant."""

    variant: Variant
    platforms: List[Platform]
    scope: List[str]
    results: List[BuildResult] = field(default_factory=list)
    artifacts: List[Artifact] = field(default_factory=list)
    rebuilt: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> List[str]:
        """Optional repositories whose failure was downgraded to a warning."""
        return sorted({r.job.repo.name for r in self.results if r.skipped})


class Pipeline:
    """
    Runs builds, collects artifacts and packages releases.

    Example usage:
        pipeline = Pipeline(BuildConfig.from_env(mode="release"))
        result = pipeline.build(None, Variant.BASE, [Platform.NATIVE])
        manifest = pipeline.package(result.artifacts, "v0.2.0")
    """

    def __init__(
        self,
        config: BuildConfig,
        registry: Optional[RepositoryRegistry] = None,
        resolver: Optional[VariantResolver] = None,
        executor: Optional[BuildExecutor] = None,
        collector: Optional[ArtifactCollector] = None,
        packager: Optional[ReleasePackager] = None,
        show_progress: bool = True,
    ):
        self.config = config
        self.registry = registry or RepositoryRegistry.default()
        self.resolver = resolver or VariantResolver(repositories=self.registry.names)
        self.executor = executor or BuildExecutor(
            config, resolver=self.resolver, show_progress=show_progress
        )
        self.scheduler = BuildScheduler(self.executor, self.registry, config.max_workers)
        self.collector = collector or ArtifactCollector(
            config.output_root, ttl=config.artifact_ttl, show_progress=show_progress
        )
        self.packager = packager or ReleasePackager(
            config.output_root, product=config.product, show_progress=show_progress
        )

    def cancel(self) -> None:
        """Stop starting queued build jobs."""
        self.scheduler.cancel()

    def _run_builds(
        self,
        scope: Sequence[str],
        variant: Variant,
        platforms: Sequence[Platform],
    ) -> List[BuildResult]:
        results = self.scheduler.run(scope, variant, platforms)
        expected = len(scope) * len(platforms)
        if len(results) < expected:
            raise CascadeError(
                f"Build cancelled after {len(results)} of {expected} jobs; nothing was collected"
            )
        return results

    def build(
        self,
        scope: Optional[Iterable[str]],
        variant: Variant,
        platforms: Sequence[Platform],
    ) -> PipelineResult:
        """Build the scope for one variant and collect artifacts.

        Args:
            scope: Repository names to rebuild (None = all)
            variant: Variant to build
            platforms: Platforms to build for

        Returns:
            PipelineResult with build results and verified artifacts

        Raises:
            BuildFailure: If a required repository fails
            ArtifactIntegrityError: If a collected binary is missing or corrupt
        """
        order = self.registry.topo_order(scope)
        reuse = set(self.registry.names) - set(order)
        logging.info(
            f"Building {variant.value} for {', '.join(p.value for p in platforms)}: {', '.join(order)}"
        )

        pipeline_result = PipelineResult(variant=variant, platforms=list(platforms), scope=order)
        pipeline_result.results = self._run_builds(order, variant, platforms)

        for platform in platforms:
            try:
                artifacts = self.collector.collect(
                    pipeline_result.results, variant, platform, reuse=reuse
                )
            except StaleArtifactError as e:
                logging.warning(f"{e}; rebuilding {', '.join(e.repos)} for {platform.value}")
                extra = self._run_builds(self.registry.topo_order(e.repos), variant, [platform])
                pipeline_result.results.extend(extra)
                pipeline_result.rebuilt.extend(e.repos)
                artifacts = self.collector.collect(
                    pipeline_result.results, variant, platform, reuse=reuse - set(e.repos)
                )
            pipeline_result.artifacts.extend(artifacts)

        for name in pipeline_result.skipped:
            logging.warning(
                f"Skipped optional repository {name}; it is left out of this release "
                "and its previous artifacts stay indexed for reuse"
            )
        return pipeline_result

    def package(self, artifacts: Iterable[Artifact], version_tag: str) -> ReleaseManifest:
        """Archive artifacts and write checksum manifests for a version tag."""
        return self.packager.package(artifacts, version_tag)
