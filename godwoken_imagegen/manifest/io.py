"""Manifest loading and rendering.

This module provides helpers for loading the component version manifest
from YAML/JSON files. Any malformed manifest surfaces as a
ResolutionError, since nothing can be resolved from it.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from godwoken_imagegen.errors import ResolutionError
from godwoken_imagegen.manifest.schema import ManifestSchema

DEFAULT_MANIFEST: dict[str, Any] = {
    "components": [
        {
            "name": "ckb-production-scripts",
            "source_location": "https://github.com/nervosnetwork/ckb-production-scripts",
            "ref": "rc_lock",
            "path": "docker/build/ckb-production-scripts",
        },
        {
            "name": "gwos",
            "follows": "godwoken",
            "path": "gwos",
            "subdir": "gwos",
        },
        {
            "name": "gwos-evm",
            "follows": "godwoken",
            "path": "gwos-evm",
            "subdir": "gwos-evm",
        },
        {
            "name": "godwoken",
            "source_location": "https://github.com/godwokenrises/godwoken",
            "ref": "develop",
            "path": ".",
            "hash_paths": ["crates", "Cargo.toml", "Cargo.lock"],
        },
    ]
}


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the document is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_manifest_data(data: dict[str, Any]) -> ManifestSchema:
    """Parse and validate manifest data.

    Args:
        data: Dictionary containing manifest data.

    Returns:
        Validated ManifestSchema instance.

    Raises:
        ResolutionError: If data does not match the schema.
    """
    try:
        return ManifestSchema.model_validate(data)
    except ValidationError as e:
        raise ResolutionError(f"Malformed manifest: {e}") from e


def load_manifest(path: Path) -> ManifestSchema:
    """Load and validate a manifest from a YAML or JSON file.

    File format is determined by extension (.yaml, .yml for YAML,
    .json for JSON).

    Raises:
        ResolutionError: If the file is missing, unparsable or invalid.
    """
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = load_yaml(path)
        elif suffix == ".json":
            data = load_json(path)
        else:
            raise ValueError(
                f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
            )
    except (OSError, yaml.YAMLError, json.JSONDecodeError, ValueError) as e:
        raise ResolutionError(f"Cannot load manifest {path}: {e}") from e
    return parse_manifest_data(data)


def default_manifest() -> ManifestSchema:
    """Return the built-in manifest used when no file is present."""
    return parse_manifest_data(DEFAULT_MANIFEST)


def manifest_to_yaml_string(manifest: ManifestSchema) -> str:
    """Convert a manifest to a YAML string."""
    data = manifest.model_dump(exclude_none=True, mode="json")
    result: str = yaml.dump(
        data, default_flow_style=False, allow_unicode=True, sort_keys=False
    )
    return result


__all__ = [
    "DEFAULT_MANIFEST",
    "default_manifest",
    "load_json",
    "load_manifest",
    "load_yaml",
    "manifest_to_yaml_string",
    "parse_manifest_data",
]
