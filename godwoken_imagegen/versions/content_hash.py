"""Content hashing of component source trees.

The content hash is what makes reuse safe: it is stable across runs iff
the hashed source files are unchanged. Build output directories are
skipped so building never perturbs the hash of its own inputs.
"""

from __future__ import annotations

import hashlib
import stat
from collections.abc import Iterable, Iterator
from pathlib import Path

from godwoken_imagegen.builds.artifacts import compute_file_hash

DEFAULT_IGNORED_DIRS = frozenset({".git", "build", "target"})


def _iter_files(base: Path, ignored_dirs: frozenset[str]) -> Iterator[Path]:
    if base.is_file():
        yield base
        return
    for path in sorted(base.rglob("*")):
        rel_parts = path.relative_to(base).parts
        if any(part in ignored_dirs for part in rel_parts[:-1]):
            continue
        if path.is_file() and not path.is_symlink():
            yield path


def compute_tree_hash(
    root: Path,
    hash_paths: Iterable[str] | None = None,
    ignored_dirs: frozenset[str] = DEFAULT_IGNORED_DIRS,
) -> str:
    """Compute a deterministic hash of a source tree.

    The hash is computed over sorted records of:
    - File path (relative to root)
    - File mode (lower 9 bits: rwxrwxrwx)
    - SHA-256 of the file content

    Args:
        root: Checkout directory.
        hash_paths: Sub-paths of root to include (default: all of root).
        ignored_dirs: Directory names skipped at any depth.

    Returns:
        SHA-256 hex digest of the tree.

    Raises:
        FileNotFoundError: If root or a listed sub-path does not exist.
    """
    if not root.is_dir():
        raise FileNotFoundError(f"Source directory not found: {root}")

    bases = [root] if not hash_paths else [root / p for p in sorted(hash_paths)]

    records: set[tuple[str, int, str]] = set()
    for base in bases:
        if not base.exists():
            raise FileNotFoundError(f"Hash path not found: {base}")
        for path in _iter_files(base, ignored_dirs):
            rel_path = path.relative_to(root).as_posix()
            mode = stat.S_IMODE(path.stat().st_mode)
            records.add((rel_path, mode, compute_file_hash(path)))

    hasher = hashlib.sha256()
    for rel_path, mode, digest in sorted(records):
        # Paths cannot contain NUL, so each record is unambiguous
        hasher.update(rel_path.encode("utf-8"))
        hasher.update(b"\0")
        hasher.update(f"{mode:o}".encode())
        hasher.update(b"\0")
        hasher.update(digest.encode())
        hasher.update(b"\n")
    return hasher.hexdigest()


def hash_ref(commit: str) -> str:
    """Content hash stand-in when no checkout is available."""
    return hashlib.sha256(commit.encode("utf-8")).hexdigest()


__all__ = ["DEFAULT_IGNORED_DIRS", "compute_tree_hash", "hash_ref"]
