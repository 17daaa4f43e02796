"""Build Scheduler.

Runs BuildJobs on a worker pool while respecting the dependency graph.

Design:
    - One job per (repository, platform) for a single variant
    - A job is submitted only once every in-scope dependency has completed
      for the same platform; independent repositories and the native/Windows
      builds of one repository run concurrently
    - The completion map is the only shared mutable state and is guarded by
      a single lock
    - Cancellation is only honored between jobs: queued jobs never start
      once cancel() is called, running compiles finish
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..config import Platform, RepositoryRegistry, Variant
from ..errors import BuildFailure
from .executor import BuildExecutor, BuildJob, BuildResult

JobKey = Tuple[str, Platform]


class BuildScheduler:
    """Dependency-aware worker pool for BuildJobs.

    Example usage:
        scheduler = BuildScheduler(executor, registry, max_workers=4)
        results = scheduler.run(registry.topo_order(), Variant.BASE, [Platform.NATIVE])
    """

    def __init__(
        self,
        executor: BuildExecutor,
        registry: RepositoryRegistry,
        max_workers: int = 1,
    ):
        self.executor = executor
        self.registry = registry
        self.max_workers = max(1, max_workers)
        self._lock = threading.Lock()
        self._completed: Dict[JobKey, BuildResult] = {}
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop starting new jobs; jobs already compiling run to completion."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _record(self, key: JobKey, result: BuildResult) -> None:
        with self._lock:
            self._completed[key] = result

    def _is_ready(self, key: JobKey, deps: List[str]) -> bool:
        _, platform = key
        with self._lock:
            return all((dep, platform) in self._completed for dep in deps)

    def _execute(self, key: JobKey, job: BuildJob) -> BuildResult:
        result = self.executor.run(job)
        try:
            result = self.executor.check(result)
        finally:
            self._record(key, result)
        return result

    def run(
        self,
        repos: Iterable[str],
        variant: Variant,
        platforms: Iterable[Platform],
    ) -> List[BuildResult]:
        """Build every (repo, platform) pair in dependency order.

        Args:
            repos: Repositories in scope (any order)
            variant: Variant to build
            platforms: Platforms to build for

        Returns:
            Results in topological order, native before Windows

        Raises:
            BuildFailure: First required failure, after in-flight jobs drain
        """
        with self._lock:
            self._completed = {}
        self._cancelled.clear()
        scope = self.registry.topo_order(repos)
        platform_list = list(platforms)

        pending: List[JobKey] = [(repo, p) for repo in scope for p in platform_list]
        deps: Dict[str, List[str]] = {
            repo: self.registry.in_scope_dependencies(repo, scope) for repo in scope
        }
        running: Dict[Future, JobKey] = {}
        failure: Optional[BuildFailure] = None

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while pending or running:
                if failure is None and not self.cancelled:
                    for key in list(pending):
                        if len(running) >= self.max_workers:
                            break
                        if not self._is_ready(key, deps[key[0]]):
                            continue
                        pending.remove(key)
                        repo, platform = key
                        job = self.executor.make_job(self.registry.get(repo), variant, platform)
                        running[pool.submit(self._execute, key, job)] = key
                elif pending:
                    logging.info(f"Not starting {len(pending)} queued build(s)")
                    pending.clear()

                if not running:
                    if pending:
                        # Nothing runnable and nothing in flight: unreachable for a DAG
                        raise RuntimeError(f"Scheduler stalled with pending jobs: {pending}")
                    break

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    running.pop(future)
                    try:
                        future.result()
                    except BuildFailure as e:
                        if failure is None:
                            failure = e
                            self.cancel()

        if failure is not None:
            raise failure

        return self._ordered_results(scope, platform_list)

    def _ordered_results(self, scope: List[str], platforms: List[Platform]) -> List[BuildResult]:
        with self._lock:
            return [
                self._completed[(repo, p)]
                for repo in scope
                for p in platforms
                if (repo, p) in self._completed
            ]

    def completed_repos(self) -> Set[str]:
        with self._lock:
            return {repo for repo, _ in self._completed}
