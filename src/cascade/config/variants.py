"""Variant resolution.

Maps a (repository, variant) pair to the cargo feature flags used to build it.

Policy:
    - base: 'production' for the node stack, an explicitly empty set for
      the SDK tier
    - experimental: 'production' plus a repository-specific superset; the
      SDK tier and any repository without an explicit entry build with
      all features
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import ConfigurationError


class Variant(Enum):
    """Feature-flag profile applied uniformly across a build run."""

    BASE = "base"
    EXPERIMENTAL = "experimental"

    @classmethod
    def from_string(cls, value: str) -> "Variant":
        """Convert string to Variant.

        Raises:
            ConfigurationError: If the value is not a known variant
        """
        try:
            return cls(value.strip().lower())
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid variant: {value!r}. Expected one of: base, experimental"
            ) from e

    @property
    def suffix(self) -> str:
        """Name suffix used in artifact directories and archive names."""
        return "-experimental" if self is Variant.EXPERIMENTAL else ""


@dataclass(frozen=True)
class FeatureSet:
    """Deterministically ordered set of cargo feature tokens.

    Tokens keep first-seen order with duplicates removed, so the same input
    always produces the same build command.
    """

    tokens: Tuple[str, ...] = ()
    all_features: bool = False

    @classmethod
    def of(cls, *tokens: str) -> "FeatureSet":
        seen: List[str] = []
        for token in tokens:
            token = token.strip()
            if token and token not in seen:
                seen.append(token)
        return cls(tuple(seen))

    @classmethod
    def parse(cls, value: str) -> "FeatureSet":
        """Parse a comma-separated feature string."""
        return cls.of(*value.split(","))

    @classmethod
    def everything(cls) -> "FeatureSet":
        return cls((), all_features=True)

    def __str__(self) -> str:
        if self.all_features:
            return "all-features"
        return ",".join(self.tokens)

    def __contains__(self, token: object) -> bool:
        return self.all_features or token in self.tokens

    @property
    def is_empty(self) -> bool:
        return not self.all_features and not self.tokens

    def union(self, other: "FeatureSet") -> "FeatureSet":
        if self.all_features or other.all_features:
            return FeatureSet.everything()
        return FeatureSet.of(*self.tokens, *other.tokens)

    def issuperset(self, other: "FeatureSet") -> bool:
        if self.all_features:
            return True
        if other.all_features:
            return False
        return set(self.tokens) >= set(other.tokens)

    def to_cargo_args(self) -> List[str]:
        """Cargo arguments for this set; empty sets produce no arguments."""
        if self.all_features:
            return ["--all-features"]
        if not self.tokens:
            return []
        return ["--features", ",".join(self.tokens)]


PRODUCTION = "production"

EXPERIMENTAL_NODE_FEATURES = (
    "utxo-commitments",
    "dandelion",
    "stratum-v2",
    "bip158",
    "sigop",
)

DEFAULT_BASE_FEATURES: Dict[str, FeatureSet] = {
    "blvm-consensus": FeatureSet.of(PRODUCTION),
    "blvm-protocol": FeatureSet.of(PRODUCTION),
    "blvm-node": FeatureSet.of(PRODUCTION),
    "blvm": FeatureSet.of(PRODUCTION),
    "blvm-sdk": FeatureSet(),
    "blvm-commons": FeatureSet(),
}

# Repositories absent from this table build experimental with all features
DEFAULT_EXPERIMENTAL_FEATURES: Dict[str, FeatureSet] = {
    "blvm-consensus": FeatureSet.of(PRODUCTION, "utxo-commitments"),
    "blvm-protocol": FeatureSet.of(PRODUCTION, "utxo-commitments", "bip158"),
    "blvm-node": FeatureSet.of(PRODUCTION, *EXPERIMENTAL_NODE_FEATURES),
    "blvm": FeatureSet.of(PRODUCTION, *EXPERIMENTAL_NODE_FEATURES),
}


class VariantResolver:
    """Resolves feature sets from static per-variant tables.

    Example usage:
        resolver = VariantResolver()
        str(resolver.features_for("blvm-node", Variant.BASE))
        # 'production'
    """

    def __init__(
        self,
        base: Optional[Dict[str, FeatureSet]] = None,
        experimental: Optional[Dict[str, FeatureSet]] = None,
        repositories: Optional[Iterable[str]] = None,
    ):
        """Initialize resolver.

        Args:
            base: Base feature table (defaults to DEFAULT_BASE_FEATURES)
            experimental: Experimental overrides (defaults to DEFAULT_EXPERIMENTAL_FEATURES)
            repositories: Repositories to validate the superset invariant for

        Raises:
            ConfigurationError: If an experimental set is not a superset of base
        """
        self.base = dict(DEFAULT_BASE_FEATURES if base is None else base)
        self.experimental = dict(
            DEFAULT_EXPERIMENTAL_FEATURES if experimental is None else experimental
        )
        names = list(repositories) if repositories is not None else list(self.base)
        for name in names:
            base_set = self._base_for(name)
            exp_set = self._experimental_for(name)
            if not exp_set.issuperset(base_set):
                raise ConfigurationError(
                    f"Experimental features for {name} ({exp_set}) "
                    f"must include base features ({base_set})"
                )

    def _base_for(self, repo: str) -> FeatureSet:
        return self.base.get(repo, FeatureSet())

    def _experimental_for(self, repo: str) -> FeatureSet:
        override = self.experimental.get(repo)
        if override is None or override.is_empty:
            return FeatureSet.everything()
        return self._base_for(repo).union(override)

    def features_for(self, repo: str, variant: Variant) -> FeatureSet:
        """Feature set for one repository under one variant."""
        if not isinstance(variant, Variant):
            variant = Variant.from_string(str(variant))
        if variant is Variant.BASE:
            return self._base_for(repo)
        return self._experimental_for(repo)
