"""Tests for manifest/schema.py and manifest/io.py."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from godwoken_imagegen.errors import ResolutionError
from godwoken_imagegen.manifest.io import (
    DEFAULT_MANIFEST,
    default_manifest,
    load_manifest,
    manifest_to_yaml_string,
    parse_manifest_data,
)
from godwoken_imagegen.manifest.schema import (
    ComponentSpec,
    ManifestSchema,
    validate_component_set,
)
from godwoken_imagegen.types import ComponentKind


class TestComponentSpec:
    """Tests for ComponentSpec validation."""

    def test_ref_selector(self):
        """A tracked ref with a source is valid."""
        spec = ComponentSpec(
            name="godwoken",
            source_location="https://github.com/godwokenrises/godwoken",
            ref="develop",
        )
        assert spec.version_selector == "ref:develop"

    def test_follows_selector(self):
        """A follower needs no source of its own."""
        spec = ComponentSpec(name="gwos", follows="godwoken")
        assert spec.version_selector == "follows:godwoken"
        assert spec.source_location is None

    def test_both_selectors_rejected(self):
        """Setting both ref and follows is ambiguous."""
        with pytest.raises(ValidationError, match="exactly one"):
            ComponentSpec(
                name="gwos", source_location="x", ref="develop", follows="godwoken"
            )

    def test_no_selector_rejected(self):
        """A component must have a version selector."""
        with pytest.raises(ValidationError, match="exactly one"):
            ComponentSpec(name="gwos", source_location="x")

    def test_ref_without_source_rejected(self):
        """A tracked ref needs somewhere to resolve it."""
        with pytest.raises(ValidationError, match="source_location"):
            ComponentSpec(name="godwoken", ref="develop")

    def test_self_follow_rejected(self):
        """A component cannot follow itself."""
        with pytest.raises(ValidationError, match="itself"):
            ComponentSpec(name="gwos", follows="gwos")

    def test_blank_ref_rejected(self):
        """Blank selectors are rejected."""
        with pytest.raises(ValidationError):
            ComponentSpec(name="godwoken", source_location="x", ref="  ")

    def test_unknown_field_rejected(self):
        """Typos in the manifest surface as errors."""
        with pytest.raises(ValidationError):
            ComponentSpec(name="godwoken", source_location="x", ref="a", branch="b")

    def test_frozen(self):
        """Specs are immutable for a run."""
        spec = ComponentSpec(name="gwos", follows="godwoken")
        with pytest.raises(ValidationError):
            spec.follows = "other"


class TestValidateComponentSet:
    """Tests for validate_component_set."""

    def test_full_set(self):
        validate_component_set([k.value for k in ComponentKind])

    def test_duplicate(self):
        names = [k.value for k in ComponentKind] + ["gwos"]
        with pytest.raises(ValueError, match="duplicate"):
            validate_component_set(names)

    def test_unknown(self):
        names = [k.value for k in ComponentKind] + ["web3"]
        with pytest.raises(ValueError, match="unknown"):
            validate_component_set(names)

    def test_missing(self):
        with pytest.raises(ValueError, match="missing.*gwos-evm"):
            validate_component_set(["ckb-production-scripts", "gwos", "godwoken"])


class TestManifestIO:
    """Tests for manifest loading."""

    def test_default_manifest(self):
        """The built-in manifest covers every component."""
        manifest = default_manifest()
        assert {c.name for c in manifest.components} == {k.value for k in ComponentKind}
        assert manifest.get(ComponentKind.GWOS).follows == "godwoken"
        assert manifest.get(ComponentKind.GWOS_EVM).follows == "godwoken"

    def test_load_yaml(self, tmp_path: Path):
        """YAML written from a manifest loads back equal."""
        path = tmp_path / "components.yaml"
        path.write_text(manifest_to_yaml_string(default_manifest()))
        assert load_manifest(path) == default_manifest()

    def test_load_json(self, tmp_path: Path):
        path = tmp_path / "components.json"
        path.write_text(json.dumps(DEFAULT_MANIFEST))
        manifest = load_manifest(path)
        assert manifest.get(ComponentKind.GODWOKEN).ref == "develop"

    def test_missing_file(self, tmp_path: Path):
        """A missing manifest is a resolution error."""
        with pytest.raises(ResolutionError, match="Cannot load manifest"):
            load_manifest(tmp_path / "nope.yaml")

    def test_unsupported_extension(self, tmp_path: Path):
        path = tmp_path / "components.toml"
        path.write_text("")
        with pytest.raises(ResolutionError, match="Unsupported"):
            load_manifest(path)

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "components.yaml"
        path.write_text("components: [unclosed\n")
        with pytest.raises(ResolutionError):
            load_manifest(path)

    def test_missing_component(self):
        """A manifest lacking a component is malformed."""
        data = {"components": DEFAULT_MANIFEST["components"][:3]}
        with pytest.raises(ResolutionError, match="Malformed manifest"):
            parse_manifest_data(data)

    def test_missing_field(self):
        """A component without a selector is malformed."""
        components = [dict(c) for c in DEFAULT_MANIFEST["components"]]
        del components[0]["ref"]
        with pytest.raises(ResolutionError):
            parse_manifest_data({"components": components})

    def test_get_by_kind(self):
        manifest = ManifestSchema.model_validate(DEFAULT_MANIFEST)
        assert manifest.get(ComponentKind.GODWOKEN).path == "."
