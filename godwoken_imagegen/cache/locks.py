"""Per-key file locks for cache writes."""

from __future__ import annotations

import fcntl
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


def safe_key(cache_key: str) -> str:
    """Filesystem-safe form of a cache key."""
    return cache_key.replace(":", "_").replace("/", "_")


@contextmanager
def key_lock(
    lock_dir: Path,
    cache_key: str,
    timeout: float | None = None,
) -> Iterator[None]:
    """Acquire an exclusive lock for a cache key.

    Only cache writes take this lock; it is never held across a build.

    Args:
        lock_dir: Directory for lock files.
        cache_key: Cache key to lock on.
        timeout: Lock acquisition timeout in seconds (None = blocking).

    Yields:
        None when lock is acquired.

    Raises:
        TimeoutError: If lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / f"{safe_key(cache_key)[:80]}.lock"

    logger.debug("Acquiring cache lock for key: %s", cache_key[:32])

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        if timeout is not None:
            start = time.monotonic()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= timeout:
                        raise TimeoutError(
                            f"Timeout waiting for cache lock on {cache_key[:32]}"
                        ) from None
                    time.sleep(0.1)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX)
            lock_acquired = True

        logger.debug("Cache lock acquired for key: %s", cache_key[:32])
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Cache lock released for key: %s", cache_key[:32])
        os.close(fd)


__all__ = ["key_lock", "safe_key"]
