"""Pydantic models for the component version manifest.

The manifest names, for each bundled component, where its source lives and
which upstream ref it tracks. A component may instead follow another
component's ref when both are co-versioned in one repository.
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from godwoken_imagegen.types import COMPONENT_ORDER, ComponentKind

COMPONENT_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_.\-]*$")


class ComponentSpec(BaseModel):
    """Static description of one component for a pipeline run.

    Attributes:
        name: Component name (one of ComponentKind values).
        source_location: Upstream repository URL or local git path.
        ref: Branch, tag or commit to track.
        follows: Name of another component whose resolved ref is reused.
        path: Local checkout, relative to the workspace.
        hash_paths: Sub-paths of the checkout that feed the content hash.
        subdir: Sub-directory of the source repository holding the component.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: Annotated[str, Field(min_length=1, max_length=100)]
    source_location: str | None = Field(
        default=None, description="Upstream repository URL or path"
    )
    ref: str | None = Field(default=None, description="Branch, tag or commit")
    follows: str | None = Field(
        default=None, description="Component whose ref this one follows"
    )
    path: str | None = Field(default=None, description="Local checkout path")
    hash_paths: tuple[str, ...] | None = Field(
        default=None, description="Sub-paths hashed for the cache key"
    )
    subdir: str | None = Field(
        default=None, description="Sub-directory inside the source repository"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name matches safe pattern."""
        if not COMPONENT_NAME_PATTERN.match(v):
            raise ValueError(
                f"name must match pattern {COMPONENT_NAME_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("ref", "follows")
    @classmethod
    def validate_selector(cls, v: str | None) -> str | None:
        """Validate selectors are non-blank."""
        if v is not None and not v.strip():
            raise ValueError("version selector must not be blank")
        return v

    @model_validator(mode="after")
    def validate_version_selector(self) -> "ComponentSpec":
        """Exactly one of ref/follows; a tracked ref needs a source."""
        if (self.ref is None) == (self.follows is None):
            raise ValueError("exactly one of 'ref' or 'follows' must be set")
        if self.follows == self.name:
            raise ValueError(f"component '{self.name}' cannot follow itself")
        if self.ref is not None and not self.source_location:
            raise ValueError("'source_location' is required when 'ref' is set")
        return self

    @property
    def version_selector(self) -> str:
        """Human-readable selector, e.g. ``ref:develop`` or ``follows:godwoken``."""
        if self.ref is not None:
            return f"ref:{self.ref}"
        return f"follows:{self.follows}"


def validate_component_set(names: list[str]) -> None:
    """Check that names are unique and cover exactly the bundled components.

    Raises:
        ValueError: If a name is duplicated, unknown or missing.
    """
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ValueError(f"duplicate component '{name}'")
        seen.add(name)

    known = {kind.value for kind in COMPONENT_ORDER}
    unknown = sorted(seen - known)
    if unknown:
        raise ValueError(f"unknown component(s): {', '.join(unknown)}")
    missing = [kind.value for kind in COMPONENT_ORDER if kind.value not in seen]
    if missing:
        raise ValueError(f"missing component(s): {', '.join(missing)}")


class ManifestSchema(BaseModel):
    """Complete version manifest."""

    model_config = ConfigDict(extra="forbid")

    components: list[ComponentSpec]

    @model_validator(mode="after")
    def validate_components(self) -> "ManifestSchema":
        """Validate the manifest names the full component set."""
        validate_component_set([c.name for c in self.components])
        return self

    def get(self, kind: ComponentKind) -> ComponentSpec:
        """Return the spec for a component kind."""
        for spec in self.components:
            if spec.name == kind.value:
                return spec
        raise KeyError(kind.value)


__all__ = [
    "COMPONENT_NAME_PATTERN",
    "ComponentSpec",
    "ManifestSchema",
    "validate_component_set",
]
