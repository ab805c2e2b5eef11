"""Cache key computation for component and release builds.

This module handles:
- Canonical input snapshots for a component build
- Deterministic hash computation over normalized inputs
- The release key over every component key plus the invoking commit

Identical inputs always produce identical keys; inputs are serialized as
canonical JSON so no two different snapshots share a serialization.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from godwoken_imagegen.builds.recipes import BuildRecipe
from godwoken_imagegen.types import ResolvedComponent

# Schema version for cache key format; bump when cache key format changes
CACHE_KEY_SCHEMA_VERSION = "1"


@dataclass
class ComponentInputs:
    """Canonical representation of all inputs of one component build.

    Attributes:
        schema_version: Version of cache key schema.
        component: Component name.
        content_hash: Hash of the component's source tree.
        recipe: Canonical recipe (commands, outputs, env).
    """

    schema_version: str = CACHE_KEY_SCHEMA_VERSION
    component: str = ""
    content_hash: str = ""
    recipe: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass
class ReleaseInputs:
    """Canonical representation of the inputs of a release.

    Attributes:
        schema_version: Version of cache key schema.
        components: Component name -> component cache key.
        invoking_commit: Commit of the pipeline checkout.
    """

    schema_version: str = CACHE_KEY_SCHEMA_VERSION
    components: dict[str, str] = field(default_factory=dict)
    invoking_commit: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def compute_cache_key(inputs: ComponentInputs | ReleaseInputs) -> str:
    """Compute a cache key hash from canonical inputs.

    The cache key is a SHA-256 hash of the canonical JSON representation
    of the inputs.

    Args:
        inputs: ComponentInputs or ReleaseInputs instance.

    Returns:
        Cache key as hex string (sha256:...).
    """
    # Serialize to canonical JSON (sorted keys, no extra whitespace)
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )

    hash_bytes = hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()

    return f"sha256:{hash_bytes}"


def create_component_inputs(
    resolved: ResolvedComponent,
    recipe: BuildRecipe | None = None,
) -> ComponentInputs:
    """Create canonical inputs for a component build."""
    return ComponentInputs(
        schema_version=CACHE_KEY_SCHEMA_VERSION,
        component=resolved.name,
        content_hash=resolved.content_hash,
        recipe=recipe.to_dict() if recipe is not None else {},
    )


def compute_component_cache_key(
    resolved: ResolvedComponent,
    recipe: BuildRecipe | None = None,
) -> tuple[str, ComponentInputs]:
    """Convenience function to compute a component's cache key.

    Returns:
        Tuple of (cache_key, ComponentInputs).
    """
    inputs = create_component_inputs(resolved, recipe)
    return compute_cache_key(inputs), inputs


def compute_release_cache_key(
    component_keys: Mapping[str, str],
    invoking_commit: str,
) -> str:
    """Compute the release key from every component key and the invoking commit."""
    inputs = ReleaseInputs(
        schema_version=CACHE_KEY_SCHEMA_VERSION,
        components=dict(component_keys),
        invoking_commit=invoking_commit,
    )
    return compute_cache_key(inputs)


__all__ = [
    "CACHE_KEY_SCHEMA_VERSION",
    "ComponentInputs",
    "ReleaseInputs",
    "compute_cache_key",
    "compute_component_cache_key",
    "compute_release_cache_key",
    "create_component_inputs",
]
