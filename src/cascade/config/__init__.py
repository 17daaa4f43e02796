"""Static configuration for Cascade: repositories, variants, platforms, run settings."""

from .build_config import BuildConfig, BuildMode, normalize_jobs
from .platforms import Platform
from .registry import DEFAULT_REPOSITORIES, RepositoryDescriptor, RepositoryRegistry, short_repo_name
from .variants import FeatureSet, Variant, VariantResolver

__all__ = [
    "BuildConfig",
    "BuildMode",
    "normalize_jobs",
    "Platform",
    "DEFAULT_REPOSITORIES",
    "RepositoryDescriptor",
    "RepositoryRegistry",
    "short_repo_name",
    "FeatureSet",
    "Variant",
    "VariantResolver",
]
