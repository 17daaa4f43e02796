"""Repository registry and dependency graph.

The registry is the static description of the six build targets and the
order they must be built in:

    blvm-consensus -> blvm-protocol -> blvm-node -> blvm
    blvm-sdk -> blvm-commons <- blvm-protocol

blvm-commons (the governance app) is optional in release mode. Its failure
downgrades to a warning instead of aborting the run.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..errors import ConfigurationError, CyclicDependencyError

REPO_PREFIX = "blvm-"


def short_repo_name(name: str) -> str:
    """Name without the 'blvm-' prefix, as used in dispatch event types."""
    if name.startswith(REPO_PREFIX):
        return name[len(REPO_PREFIX):]
    return name


@dataclass(frozen=True)
class RepositoryDescriptor:
    """One build target.

    Attributes:
        name: Repository name (e.g. 'blvm-node')
        build_order_rank: Position in the global build order
        dependencies: Names of repositories this one builds against
        optional_in_release: Whether a release-mode failure is only a warning
        binaries: Executable names produced by a successful build
    """

    name: str
    build_order_rank: int
    dependencies: Tuple[str, ...] = ()
    optional_in_release: bool = False
    binaries: Tuple[str, ...] = ()

    @property
    def short_name(self) -> str:
        return short_repo_name(self.name)


DEFAULT_REPOSITORIES: Tuple[RepositoryDescriptor, ...] = (
    RepositoryDescriptor("blvm-consensus", 0),
    RepositoryDescriptor(
        "blvm-sdk",
        0,
        binaries=("blvm-keygen", "blvm-sign", "blvm-verify"),
    ),
    RepositoryDescriptor("blvm-protocol", 1, ("blvm-consensus",)),
    RepositoryDescriptor(
        "blvm-node",
        2,
        ("blvm-protocol", "blvm-consensus"),
        binaries=("blvm-node",),
    ),
    RepositoryDescriptor(
        "blvm-commons",
        2,
        ("blvm-sdk", "blvm-protocol"),
        optional_in_release=True,
        binaries=("blvm-commons",),
    ),
    RepositoryDescriptor("blvm", 3, ("blvm-node",), binaries=("blvm",)),
)


@dataclass
class RepositoryRegistry:
    """Immutable-after-construction view over the repository descriptors.

    Example usage:
        registry = RepositoryRegistry.default()
        registry.topo_order({"blvm-node", "blvm"})
        # ['blvm-node', 'blvm']
    """

    repositories: Tuple[RepositoryDescriptor, ...] = DEFAULT_REPOSITORIES
    _by_name: Dict[str, RepositoryDescriptor] = field(init=False, repr=False)

    def __post_init__(self):
        self._by_name = {}
        for repo in self.repositories:
            if repo.name in self._by_name:
                raise ConfigurationError(f"Duplicate repository: {repo.name}")
            self._by_name[repo.name] = repo
        self.validate()

    @classmethod
    def default(cls) -> "RepositoryRegistry":
        """Registry over the built-in six repositories."""
        return cls(DEFAULT_REPOSITORIES)

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, Any]]) -> "RepositoryRegistry":
        """Build a registry from a mapping of name -> descriptor fields.

        Args:
            data: e.g. {"a": {"rank": 0}, "b": {"rank": 1, "dependencies": ["a"]}}

        Raises:
            ConfigurationError: If the data is malformed or cyclic
        """
        repos = []
        for name, entry in data.items():
            try:
                repos.append(
                    RepositoryDescriptor(
                        name=name,
                        build_order_rank=int(entry["rank"]),
                        dependencies=tuple(entry.get("dependencies", ())),
                        optional_in_release=bool(entry.get("optional_in_release", False)),
                        binaries=tuple(entry.get("binaries", ())),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid descriptor for {name}: {e}") from e
        return cls(tuple(repos))

    @property
    def names(self) -> List[str]:
        return [repo.name for repo in self._sorted(self._by_name.values())]

    def get(self, name: str) -> RepositoryDescriptor:
        """Look up a repository by full name or short name.

        Raises:
            ConfigurationError: If the repository is unknown
        """
        if name in self._by_name:
            return self._by_name[name]
        for repo in self.repositories:
            if repo.short_name == name:
                return repo
        raise ConfigurationError(
            f"Unknown repository: {name}. Known: {', '.join(self.names)}"
        )

    def validate(self) -> None:
        """Check for unknown dependencies, cycles, and inconsistent ranks.

        Raises:
            ConfigurationError: On unknown dependencies or bad ranks
            CyclicDependencyError: If the graph contains a cycle
        """
        for repo in self.repositories:
            for dep in repo.dependencies:
                if dep not in self._by_name:
                    raise ConfigurationError(
                        f"{repo.name} depends on unknown repository {dep}"
                    )

        cycle = self._find_cycle()
        if cycle:
            raise CyclicDependencyError(cycle)

        for repo in self.repositories:
            for dep in repo.dependencies:
                if self._by_name[dep].build_order_rank >= repo.build_order_rank:
                    raise ConfigurationError(
                        f"build_order_rank of {repo.name} ({repo.build_order_rank}) "
                        f"must be greater than its dependency {dep} "
                        f"({self._by_name[dep].build_order_rank})"
                    )

    def _find_cycle(self) -> Optional[List[str]]:
        # Iterative DFS with white/grey/black colouring
        white, grey, black = 0, 1, 2
        color = {name: white for name in self._by_name}

        for start in sorted(self._by_name):
            if color[start] != white:
                continue
            stack: List[Tuple[str, int]] = [(start, 0)]
            path: List[str] = [start]
            color[start] = grey
            while stack:
                node, index = stack[-1]
                deps = sorted(self._by_name[node].dependencies)
                if index < len(deps):
                    stack[-1] = (node, index + 1)
                    dep = deps[index]
                    if color[dep] == grey:
                        return path[path.index(dep):] + [dep]
                    if color[dep] == white:
                        color[dep] = grey
                        stack.append((dep, 0))
                        path.append(dep)
                else:
                    color[node] = black
                    stack.pop()
                    path.pop()
        return None

    def _sorted(self, repos: Iterable[RepositoryDescriptor]) -> List[RepositoryDescriptor]:
        return sorted(repos, key=lambda r: (r.build_order_rank, r.name))

    def _resolve_scope(self, scope: Optional[Iterable[str]]) -> Set[str]:
        if scope is None:
            return set(self._by_name)
        return {self.get(name).name for name in scope}

    def topo_order(self, scope: Optional[Iterable[str]] = None) -> List[str]:
        """Order a subset of repositories so dependencies come first.

        Dependencies outside the scope are dropped from the build list; their
        last-known artifacts are assumed valid.

        Args:
            scope: Repository names (full or short); None means all

        Returns:
            Repository names in build order (rank, then name)
        """
        names = self._resolve_scope(scope)
        return [repo.name for repo in self._sorted(self._by_name[n] for n in names)]

    def parallel_groups(self, scope: Optional[Iterable[str]] = None) -> List[List[str]]:
        """Group in-scope repositories into waves that can build concurrently.

        A repository's wave is one past the deepest wave of its in-scope
        dependencies.
        """
        names = self._resolve_scope(scope)
        depth: Dict[str, int] = {}
        for name in self.topo_order(names):
            in_scope_deps = [d for d in self._by_name[name].dependencies if d in names]
            depth[name] = max((depth[d] + 1 for d in in_scope_deps), default=0)

        groups: List[List[str]] = []
        for name, level in depth.items():
            while len(groups) <= level:
                groups.append([])
            groups[level].append(name)
        return [sorted(group) for group in groups]

    def in_scope_dependencies(self, name: str, scope: Iterable[str]) -> List[str]:
        scope_set = self._resolve_scope(scope)
        return [d for d in self.get(name).dependencies if d in scope_set]

    def dependents_of(self, name: str) -> Set[str]:
        """All repositories that transitively depend on the given one."""
        target = self.get(name).name
        result: Set[str] = set()
        frontier = [target]
        while frontier:
            current = frontier.pop()
            for repo in self.repositories:
                if current in repo.dependencies and repo.name not in result:
                    result.add(repo.name)
                    frontier.append(repo.name)
        return result
