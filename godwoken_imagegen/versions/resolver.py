"""Version resolution for manifest components.

This module handles:
- Resolving each component's ref selector to a concrete commit
- Ordering "follows" selectors after the component they follow
- Verifying each local checkout is at its resolved commit
- Computing each component's content hash
- Rendering resolved versions as key=value outputs
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from graphlib import CycleError, TopologicalSorter
from pathlib import Path

from godwoken_imagegen.errors import ResolutionError
from godwoken_imagegen.manifest.schema import ComponentSpec
from godwoken_imagegen.types import ResolvedComponent
from godwoken_imagegen.versions.content_hash import (
    DEFAULT_IGNORED_DIRS,
    compute_tree_hash,
    hash_ref,
)
from godwoken_imagegen.versions.git import GitCLI, GitClient

logger = logging.getLogger(__name__)


def resolution_order(specs: Sequence[ComponentSpec]) -> list[str]:
    """Order component names so every followed component comes first.

    Raises:
        ResolutionError: On duplicate names, unknown follow targets or cycles.
    """
    by_name: dict[str, ComponentSpec] = {}
    for spec in specs:
        if spec.name in by_name:
            raise ResolutionError(f"Duplicate component '{spec.name}'", spec.name)
        by_name[spec.name] = spec

    sorter: TopologicalSorter[str] = TopologicalSorter()
    for spec in specs:
        if spec.follows is None:
            sorter.add(spec.name)
            continue
        if spec.follows not in by_name:
            raise ResolutionError(
                f"Component '{spec.name}' follows unknown component '{spec.follows}'",
                spec.name,
            )
        sorter.add(spec.name, spec.follows)

    try:
        return list(sorter.static_order())
    except CycleError as e:
        cycle = " -> ".join(e.args[1])
        raise ResolutionError(f"Cycle in follows selectors: {cycle}") from e


class VersionResolver:
    """Resolves ComponentSpecs to ResolvedComponents.

    Args:
        git: Ref lookup collaborator (defaults to the git CLI).
        workspace: Root that ``ComponentSpec.path`` is relative to.
        ignored_dirs: Directory names excluded from content hashes.
    """

    def __init__(
        self,
        git: GitClient | None = None,
        workspace: Path | None = None,
        ignored_dirs: frozenset[str] = DEFAULT_IGNORED_DIRS,
    ) -> None:
        self.git = git if git is not None else GitCLI()
        self.workspace = workspace if workspace is not None else Path.cwd()
        self.ignored_dirs = ignored_dirs

    def resolve(self, specs: Sequence[ComponentSpec]) -> list[ResolvedComponent]:
        """Resolve every spec; results keep the order given.

        Raises:
            ResolutionError: If any selector cannot be resolved. Nothing is
                returned for the other components in that case.
        """
        order = resolution_order(specs)
        by_name = {spec.name: spec for spec in specs}
        resolved: dict[str, ResolvedComponent] = {}

        for name in order:
            spec = by_name[name]
            resolved[name] = self._resolve_one(spec, resolved)
            logger.info(
                "Resolved %s: ref=%s commit=%s hash=%s",
                name,
                resolved[name].ref,
                resolved[name].commit[:12],
                resolved[name].content_hash[:16],
            )

        return [resolved[spec.name] for spec in specs]

    def _resolve_one(
        self,
        spec: ComponentSpec,
        resolved: Mapping[str, ResolvedComponent],
    ) -> ResolvedComponent:
        if spec.follows is not None:
            source = resolved[spec.follows]
            ref = source.ref
            commit = source.commit
            source_location = spec.source_location or source.source_location
        else:
            if spec.ref is None or spec.source_location is None:
                raise ResolutionError(
                    f"Component '{spec.name}' needs a ref and a source_location",
                    spec.name,
                )
            ref = spec.ref
            source_location = spec.source_location
            try:
                commit = self.git.resolve_ref(source_location, ref)
            except ResolutionError as e:
                e.component = spec.name
                raise

        source_dir: Path | None = None
        if spec.path is not None:
            source_dir = self.workspace / spec.path

        if source_dir is not None and source_dir.is_dir():
            try:
                self.git.check_checkout(source_dir, commit)
            except ResolutionError as e:
                e.component = spec.name
                raise
            try:
                content_hash = compute_tree_hash(
                    source_dir, spec.hash_paths, self.ignored_dirs
                )
            except FileNotFoundError as e:
                raise ResolutionError(str(e), spec.name) from e
        else:
            if source_dir is not None:
                logger.warning(
                    "No checkout for %s at %s; hashing the resolved commit",
                    spec.name,
                    source_dir,
                )
            content_hash = hash_ref(commit)

        return ResolvedComponent(
            name=spec.name,
            ref=ref,
            commit=commit,
            content_hash=content_hash,
            source_location=source_location,
            source_dir=source_dir,
            subdir=spec.subdir,
        )


def version_outputs(resolved: Sequence[ResolvedComponent]) -> dict[str, str]:
    """Render resolved versions as key=value pairs for downstream steps."""
    outputs: dict[str, str] = {}
    for component in resolved:
        outputs[f"{component.name}-ref"] = component.ref
        outputs[f"{component.name}-sha1"] = component.commit
        outputs[f"{component.name}-hash"] = component.content_hash
    return outputs


__all__ = [
    "VersionResolver",
    "resolution_order",
    "version_outputs",
]
