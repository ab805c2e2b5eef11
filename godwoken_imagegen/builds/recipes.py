"""Per-component build recipes.

The component set is closed: each ComponentKind maps to exactly one
recipe describing the toolchain commands to run inside the component
checkout and the artifacts they leave behind.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from godwoken_imagegen.types import ComponentKind


@dataclass(frozen=True)
class BuildRecipe:
    """How to build one component.

    Attributes:
        kind: Component the recipe builds.
        commands: Commands run in order inside ``workdir``.
        outputs: Glob patterns (relative to ``workdir``) of the artifacts.
        env: Extra environment variables for every command.
        workdir: Sub-directory of the checkout to run in.
    """

    kind: ComponentKind
    commands: tuple[tuple[str, ...], ...]
    outputs: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    workdir: str = "."

    def to_dict(self) -> dict[str, Any]:
        """Canonical form used in cache keys."""
        return {
            "commands": [list(cmd) for cmd in self.commands],
            "outputs": sorted(self.outputs),
            "env": dict(sorted(self.env.items())),
            "workdir": self.workdir,
        }


RECIPES: dict[ComponentKind, BuildRecipe] = {
    ComponentKind.CKB_PRODUCTION_SCRIPTS: BuildRecipe(
        kind=ComponentKind.CKB_PRODUCTION_SCRIPTS,
        commands=(("make", "all-via-docker"),),
        outputs=("build/omni_lock",),
    ),
    ComponentKind.GWOS: BuildRecipe(
        kind=ComponentKind.GWOS,
        commands=(
            ("make", "-C", "c"),
            ("capsule", "build", "--release", "--debug-output"),
        ),
        outputs=(
            "build/release/*",
            "c/build/*-generator",
            "c/build/*-validator",
            "c/build/account_locks/*",
        ),
    ),
    ComponentKind.GWOS_EVM: BuildRecipe(
        kind=ComponentKind.GWOS_EVM,
        commands=(
            ("git", "submodule", "update", "--init", "--recursive", "--depth=1"),
            ("make", "all-via-docker"),
        ),
        outputs=("build/*generator*", "build/*validator*"),
    ),
    ComponentKind.GODWOKEN: BuildRecipe(
        kind=ComponentKind.GODWOKEN,
        commands=(("cargo", "build", "--release"),),
        outputs=("target/release/godwoken", "target/release/gw-tools"),
        # SSE4.2, POPCNT etc. are available on all x86 CPUs still in use
        env={
            "RUSTFLAGS": "-C target-cpu=x86-64-v2",
            "CARGO_PROFILE_RELEASE_LTO": "true",
        },
    ),
}


def get_recipe(kind: ComponentKind | str) -> BuildRecipe:
    """Return the recipe for a component kind.

    Raises:
        ValueError: If the name is not a known component.
    """
    return RECIPES[ComponentKind(kind)]


__all__ = ["RECIPES", "BuildRecipe", "get_recipe"]
