"""Build-or-reuse for a single component.

A ComponentBuilder pairs one component's recipe with the cache: a cache
hit returns the stored artifacts without touching the toolchain; a miss
runs the toolchain, verifies its outputs and registers them.
"""

from __future__ import annotations

import logging
import tempfile
import threading
import time
from pathlib import Path
from typing import Protocol

from godwoken_imagegen.builds.artifacts import ArtifactError, collect_outputs
from godwoken_imagegen.builds.cache_key import compute_component_cache_key
from godwoken_imagegen.builds.recipes import RECIPES, BuildRecipe
from godwoken_imagegen.builds.runner import (
    SubprocessToolchain,
    ToolchainExecutionError,
    ToolchainInvocation,
    ToolchainResult,
)
from godwoken_imagegen.cache.store import CacheStore
from godwoken_imagegen.errors import BuildCancelled, BuildFailure
from godwoken_imagegen.types import BuildResult, ComponentKind, ResolvedComponent

logger = logging.getLogger(__name__)


class Toolchain(Protocol):
    """Collaborator that executes a component's build commands."""

    def run(
        self,
        invocation: ToolchainInvocation,
        cancel: threading.Event | None = None,
    ) -> ToolchainResult: ...


def _default_logs_dir() -> Path:
    return Path(tempfile.gettempdir()) / "godwoken-imagegen" / "logs"


class ComponentBuilder:
    """Builds or reuses one kind of component.

    Args:
        recipe: Recipe of the component this builder handles.
        store: Cache store shared by all builders.
        toolchain: Toolchain collaborator (defaults to local subprocesses).
        logs_dir: Directory for toolchain logs.
    """

    def __init__(
        self,
        recipe: BuildRecipe,
        store: CacheStore,
        toolchain: Toolchain | None = None,
        logs_dir: Path | None = None,
    ) -> None:
        self.recipe = recipe
        self.store = store
        self.toolchain = toolchain if toolchain is not None else SubprocessToolchain()
        self.logs_dir = logs_dir if logs_dir is not None else _default_logs_dir()

    @property
    def kind(self) -> ComponentKind:
        return self.recipe.kind

    def cache_key(self, resolved: ResolvedComponent) -> str:
        """Cache key of a resolved component under this recipe."""
        key, _ = compute_component_cache_key(resolved, self.recipe)
        return key

    def build(
        self,
        resolved: ResolvedComponent,
        cancel: threading.Event | None = None,
    ) -> BuildResult:
        """Return the component's artifacts, building them only on a cache miss.

        Args:
            resolved: The resolved component.
            cancel: Event set by the pipeline to abort the build.

        Returns:
            BuildResult with cache_hit set accordingly.

        Raises:
            BuildFailure: If the toolchain fails or produces no artifact.
            BuildCancelled: If the build was aborted.
            CacheInconsistency: If the key already holds different content.
        """
        name = resolved.name
        if name != self.kind.value:
            raise ValueError(f"{self.kind.value} builder cannot build '{name}'")

        started = time.monotonic()
        key = self.cache_key(resolved)

        if self.store.has(key):
            entry = self.store.fetch(key)
            logger.info("Cache hit for %s (key %s)", name, key[:32])
            return BuildResult(
                component_name=name,
                cache_key=key,
                artifacts=entry.artifacts,
                cache_hit=True,
                duration=time.monotonic() - started,
            )

        logger.info("Cache miss for %s (key %s); building", name, key[:32])

        source_dir = resolved.source_dir
        if source_dir is None or not source_dir.is_dir():
            raise BuildFailure(
                name,
                None,
                f"No checkout for {name} at {source_dir}; cannot build",
            )
        workdir = source_dir / self.recipe.workdir
        log_path = self.logs_dir / f"{name}.log"

        invocation = ToolchainInvocation(
            component=name,
            workdir=workdir,
            commands=self.recipe.commands,
            log_path=log_path,
            env=self.recipe.env,
        )
        try:
            result = self.toolchain.run(invocation, cancel)
        except ToolchainExecutionError as e:
            raise BuildFailure(name, e.exit_code, str(e), str(log_path)) from e

        if not result.success:
            raise BuildFailure(
                name,
                result.exit_code,
                result.error_message,
                str(result.log_path),
            )

        try:
            paths = collect_outputs(workdir, self.recipe.outputs)
        except ArtifactError as e:
            raise BuildFailure(
                name,
                result.exit_code,
                f"Build of {name} produced no usable artifact: {e}",
                str(result.log_path),
            ) from e

        # An aborted run must not register anything
        if cancel is not None and cancel.is_set():
            raise BuildCancelled(name)

        self.store.put(key, paths, root=workdir, component=name)
        entry = self.store.fetch(key)
        duration = time.monotonic() - started
        logger.info(
            "Built %s in %.1fs (%d artifacts)", name, duration, len(entry.artifacts)
        )
        return BuildResult(
            component_name=name,
            cache_key=key,
            artifacts=entry.artifacts,
            cache_hit=False,
            duration=duration,
        )


def create_builders(
    store: CacheStore,
    toolchain: Toolchain | None = None,
    logs_dir: Path | None = None,
) -> dict[ComponentKind, ComponentBuilder]:
    """One builder per component kind, sharing a store and toolchain."""
    return {
        kind: ComponentBuilder(recipe, store, toolchain=toolchain, logs_dir=logs_dir)
        for kind, recipe in RECIPES.items()
    }


__all__ = ["ComponentBuilder", "Toolchain", "create_builders"]
