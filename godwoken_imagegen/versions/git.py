"""Upstream ref lookup and checkout verification.

Resolves a branch, tag or commit selector to a commit id via
``git ls-remote``. Peeled annotated tags win over lightweight tag objects,
and tags win over branches. A local checkout is only hashed and built once
its HEAD is confirmed to be the resolved commit.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Protocol

from godwoken_imagegen.errors import CHECKOUT_MISMATCH, ResolutionError

logger = logging.getLogger(__name__)

COMMIT_PATTERN = re.compile(r"^[0-9a-f]{40}$")


class GitClient(Protocol):
    """Collaborator that maps (source, ref) to a commit id and verifies checkouts."""

    def resolve_ref(self, source_location: str, ref: str) -> str: ...

    def check_checkout(self, path: Path, commit: str) -> None: ...


def parse_ls_remote(output: str, ref: str) -> str | None:
    """Pick the commit for ``ref`` out of ``git ls-remote`` output.

    Args:
        output: Raw stdout of ``git ls-remote``.
        ref: Selector as written in the manifest.

    Returns:
        Commit id, or None if the ref is not advertised.
    """
    advertised: dict[str, str] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) != 2:
            continue
        commit, name = parts
        advertised[name] = commit

    candidates = [
        f"refs/tags/{ref}^{{}}",
        f"refs/tags/{ref}",
        f"refs/heads/{ref}",
        ref,
    ]
    if ref.startswith("refs/"):
        candidates.insert(0, f"{ref}^{{}}")
    for name in candidates:
        if name in advertised:
            return advertised[name]
    return None


class GitCLI:
    """GitClient backed by the git command line."""

    def __init__(self, git: str = "git", timeout: int | None = 120) -> None:
        self.git = git
        self.timeout = timeout

    def resolve_ref(self, source_location: str, ref: str) -> str:
        """Resolve a ref against its upstream.

        Raises:
            ResolutionError: If the ref does not exist or git fails.
        """
        if COMMIT_PATTERN.match(ref):
            return ref

        # ls-remote patterns match trailing components, peeled tags included
        cmd = [self.git, "ls-remote", source_location, ref]
        logger.debug("Resolving %s at %s", ref, source_location)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise ResolutionError(
                f"git ls-remote {source_location} failed: {e.stderr.strip()}"
            ) from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ResolutionError(f"Failed to run git ls-remote: {e}") from e

        commit = parse_ls_remote(result.stdout, ref)
        if commit is None:
            raise ResolutionError(f"Ref '{ref}' does not exist in {source_location}")
        return commit

    def check_checkout(self, path: Path, commit: str) -> None:
        """Confirm the checkout at ``path`` has ``commit`` checked out.

        Raises:
            ResolutionError: If ``path`` is not a git checkout or its HEAD
                is a different commit.
        """
        cmd = [self.git, "-C", str(path), "rev-parse", "HEAD"]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise ResolutionError(
                f"{path} is not a git checkout: {e.stderr.strip()}",
                code=CHECKOUT_MISMATCH,
            ) from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ResolutionError(f"Failed to run git rev-parse: {e}") from e

        head = result.stdout.strip()
        if head != commit:
            raise ResolutionError(
                f"Checkout {path} is at {head[:12]}, expected {commit[:12]}",
                code=CHECKOUT_MISMATCH,
            )


__all__ = ["COMMIT_PATTERN", "GitCLI", "GitClient", "parse_ls_remote"]
