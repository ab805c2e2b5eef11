"""Artifact collection, checksums and manifests.

This module handles:
- Expanding a recipe's output patterns inside a component checkout
- Verifying every produced artifact exists and is non-empty
- Computing checksums
- Generating the release context manifest
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from godwoken_imagegen.types import ArtifactInfo

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


class ArtifactError(Exception):
    """Raised when expected build outputs are missing or empty."""

    def __init__(
        self,
        message: str,
        missing: list[str] | None = None,
        code: str = "artifact_missing",
    ) -> None:
        super().__init__(message)
        self.missing = missing or []
        self.code = code


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def collect_outputs(workdir: Path, patterns: Iterable[str]) -> list[Path]:
    """Expand output glob patterns relative to a working directory.

    Every pattern must match at least one non-empty regular file.

    Args:
        workdir: Directory the toolchain ran in.
        patterns: Glob patterns such as ``build/*-generator``.

    Returns:
        Sorted, de-duplicated list of artifact paths.

    Raises:
        ArtifactError: If a pattern matches nothing or a match is empty.
    """
    found: set[Path] = set()
    missing: list[str] = []

    for pattern in patterns:
        matches = [p for p in workdir.glob(pattern) if p.is_file()]
        if not matches:
            missing.append(pattern)
            continue
        for path in matches:
            if path.stat().st_size == 0:
                missing.append(f"{path.relative_to(workdir).as_posix()} (empty)")
                continue
            found.add(path)

    if missing:
        raise ArtifactError(
            f"Missing or empty artifacts in {workdir}: {', '.join(missing)}",
            missing=missing,
        )

    artifacts = sorted(found)
    logger.debug("Collected %d artifacts in %s", len(artifacts), workdir)
    return artifacts


def describe_artifact(path: Path, root: Path | None = None) -> ArtifactInfo:
    """Build ArtifactInfo for a file, named relative to root when given."""
    name = path.name
    if root is not None:
        try:
            name = path.relative_to(root).as_posix()
        except ValueError:
            pass
    return ArtifactInfo(
        name=name,
        path=path,
        sha256=compute_file_hash(path),
        size_bytes=path.stat().st_size,
    )


def verify_checksums(
    artifacts: Iterable[ArtifactInfo],
    expected: Mapping[str, str] | None = None,
) -> list[str]:
    """Re-hash artifacts and report those that differ from the expectation.

    Args:
        artifacts: Artifacts with their recorded sha256.
        expected: Optional name->sha256 overriding the recorded values.

    Returns:
        Human-readable mismatch descriptions (empty when all match).
    """
    mismatches: list[str] = []
    for artifact in artifacts:
        want = artifact.sha256
        if expected is not None and artifact.name in expected:
            want = expected[artifact.name]
        if not artifact.path.is_file():
            mismatches.append(f"{artifact.name}: missing at {artifact.path}")
            continue
        actual = compute_file_hash(artifact.path)
        if actual != want:
            mismatches.append(f"{artifact.name}: expected {want}, got {actual}")
    return mismatches


def generate_manifest(
    artifacts: Mapping[str, Iterable[ArtifactInfo]],
    release_key: str | None = None,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a manifest of the staged release artifacts.

    Args:
        artifacts: Component name -> staged artifacts.
        release_key: Optional release cache key.
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    now = datetime.now(timezone.utc)

    components: dict[str, list[dict[str, Any]]] = {}
    for component, items in artifacts.items():
        rows = []
        for artifact in items:
            row = asdict(artifact)
            row["path"] = str(artifact.path)
            rows.append(row)
        components[component] = rows

    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": now.isoformat(),
        "components": components,
    }
    if release_key:
        manifest["release_key"] = release_key
    if extra_metadata:
        manifest["metadata"] = extra_metadata

    manifest["summary"] = {
        "total_artifacts": sum(len(rows) for rows in components.values()),
        "total_size_bytes": sum(
            row["size_bytes"] for rows in components.values() for row in rows
        ),
    }
    return manifest


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "HASH_CHUNK_SIZE",
    "ArtifactError",
    "collect_outputs",
    "compute_file_hash",
    "describe_artifact",
    "generate_manifest",
    "verify_checksums",
    "write_manifest",
]
