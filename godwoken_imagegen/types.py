"""Shared type definitions for godwoken_imagegen.

This module contains enums and immutable result dataclasses shared across
subpackages to avoid circular imports. Every value that flows from one
pipeline step to the next is one of these types.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType


class ComponentKind(str, Enum):
    """Components bundled into the prebuilt image."""

    CKB_PRODUCTION_SCRIPTS = "ckb-production-scripts"
    GWOS = "gwos"
    GWOS_EVM = "gwos-evm"
    GODWOKEN = "godwoken"


# Dependency order: lock script, core binaries, EVM backend, node binary.
COMPONENT_ORDER: tuple[ComponentKind, ...] = (
    ComponentKind.CKB_PRODUCTION_SCRIPTS,
    ComponentKind.GWOS,
    ComponentKind.GWOS_EVM,
    ComponentKind.GODWOKEN,
)


class RefKind(str, Enum):
    """Kind of git ref that triggered a pipeline run."""

    TAG = "tag"
    BRANCH = "branch"


@dataclass(frozen=True)
class ResolvedComponent:
    """A component pinned to a concrete commit and source content hash."""

    name: str
    ref: str
    commit: str
    content_hash: str
    source_location: str
    source_dir: Path | None = None
    subdir: str | None = None


@dataclass(frozen=True)
class ArtifactInfo:
    """A single file produced for a component."""

    name: str
    path: Path
    sha256: str
    size_bytes: int


@dataclass(frozen=True)
class CacheEntry:
    """A cache key and the artifacts stored under it."""

    key: str
    artifacts: tuple[ArtifactInfo, ...]
    produced_at: datetime

    @property
    def checksums(self) -> dict[str, str]:
        """Mapping of artifact name to recorded sha256."""
        return {a.name: a.sha256 for a in self.artifacts}


@dataclass(frozen=True)
class BuildResult:
    """Outcome of building (or reusing) one component."""

    component_name: str
    cache_key: str
    artifacts: tuple[ArtifactInfo, ...]
    cache_hit: bool
    duration: float

    @property
    def artifact_paths(self) -> tuple[Path, ...]:
        """Paths of the component's artifacts."""
        return tuple(a.path for a in self.artifacts)


@dataclass(frozen=True)
class ReleaseDescriptor:
    """The assembled, tagged image and the metadata it was built from."""

    image_name: str
    image_tag: str
    labels: Mapping[str, str] = field(default_factory=dict)
    component_refs: Mapping[str, tuple[str, str]] = field(default_factory=dict)
    release_key: str = ""
    pushed: bool = False
    cache_hits: Mapping[str, bool] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Read-only copies of the caller's mappings
        for name in ("labels", "component_refs", "cache_hits"):
            object.__setattr__(
                self, name, MappingProxyType(dict(getattr(self, name)))
            )

    @property
    def image_reference(self) -> str:
        """Full ``name:tag`` reference."""
        return f"{self.image_name}:{self.image_tag}"


__all__ = [
    "COMPONENT_ORDER",
    "ArtifactInfo",
    "BuildResult",
    "CacheEntry",
    "ComponentKind",
    "RefKind",
    "ReleaseDescriptor",
    "ResolvedComponent",
]
