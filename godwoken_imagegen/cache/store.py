"""Content-addressed component cache.

This module handles:
- The CacheStore contract (has / fetch / put)
- Write-once puts: equal content is a no-op, different content is an error
- An in-memory store and a disk store indexed in SQL

A key is either absent or holds a fixed set of artifacts. Nothing is ever
overwritten or evicted.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from godwoken_imagegen.builds.artifacts import describe_artifact
from godwoken_imagegen.cache.locks import key_lock, safe_key
from godwoken_imagegen.cache.models import CachedArtifactRecord, CacheEntryRecord
from godwoken_imagegen.db import get_session
from godwoken_imagegen.errors import CacheInconsistency, CacheMiss
from godwoken_imagegen.types import ArtifactInfo, CacheEntry

logger = logging.getLogger(__name__)


def describe_paths(
    paths: Sequence[Path],
    root: Path | None = None,
) -> tuple[ArtifactInfo, ...]:
    """Hash and name artifact paths, sorted by name.

    Raises:
        FileNotFoundError: If a path is not a regular file.
        ValueError: If two paths map to the same name.
    """
    infos: dict[str, ArtifactInfo] = {}
    for path in paths:
        if not path.is_file():
            raise FileNotFoundError(f"Artifact not found: {path}")
        info = describe_artifact(path, root)
        if info.name in infos:
            raise ValueError(f"Duplicate artifact name '{info.name}'")
        infos[info.name] = info
    return tuple(infos[name] for name in sorted(infos))


def ensure_same_content(
    key: str,
    stored: dict[str, str],
    offered: dict[str, str],
) -> None:
    """Raise CacheInconsistency unless both checksum maps are equal."""
    if stored != offered:
        logger.error("Cache inconsistency for key %s", key)
        raise CacheInconsistency(key, stored=stored, offered=offered)


class CacheStore(ABC):
    """Key -> artifacts mapping with write-once semantics."""

    @abstractmethod
    def has(self, key: str) -> bool:
        """Return True if the key is fully present."""

    @abstractmethod
    def fetch(self, key: str) -> CacheEntry:
        """Return the entry for key.

        Raises:
            CacheMiss: If the key is absent.
        """

    @abstractmethod
    def put(
        self,
        key: str,
        paths: Sequence[Path],
        root: Path | None = None,
        component: str | None = None,
    ) -> None:
        """Register artifacts under key.

        Re-putting equal content is a no-op.

        Raises:
            CacheInconsistency: If key already holds different content.
        """

    @abstractmethod
    def entries(self) -> list[CacheEntry]:
        """List every entry."""


class InMemoryCacheStore(CacheStore):
    """Process-local store; artifacts stay where they were produced."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def fetch(self, key: str) -> CacheEntry:
        with self._lock:
            try:
                return self._entries[key]
            except KeyError:
                raise CacheMiss(key) from None

    def put(
        self,
        key: str,
        paths: Sequence[Path],
        root: Path | None = None,
        component: str | None = None,
    ) -> None:
        artifacts = describe_paths(paths, root)
        offered = {a.name: a.sha256 for a in artifacts}
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                ensure_same_content(key, existing.checksums, offered)
                logger.debug("Key %s already cached with equal content", key[:32])
                return
            self._entries[key] = CacheEntry(
                key=key,
                artifacts=artifacts,
                produced_at=datetime.now(timezone.utc),
            )
        logger.info("Cached %d artifacts under %s", len(artifacts), key[:32])

    def entries(self) -> list[CacheEntry]:
        with self._lock:
            return list(self._entries.values())


class DiskCacheStore(CacheStore):
    """Store that copies artifacts under a root directory, indexed in SQL.

    Layout: ``{root}/entries/{safe_key}/{artifact name}``. Artifacts are
    copied into a private staging directory first, then renamed into place
    under the key's lock, and the index row is committed last.

    Args:
        root: Cache root directory.
        session_factory: Session factory for the cache index.
        lock_timeout: Seconds to wait for a key lock.
    """

    def __init__(
        self,
        root: Path,
        session_factory: sessionmaker[Session],
        lock_timeout: float | None = 300.0,
    ) -> None:
        self.root = root
        self.session_factory = session_factory
        self.lock_timeout = lock_timeout
        self.entries_dir = root / "entries"
        self.staging_dir = root / ".staging"
        self.lock_dir = root / ".locks"
        for directory in (self.entries_dir, self.staging_dir, self.lock_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def _entry_dir(self, key: str) -> Path:
        return self.entries_dir / safe_key(key)

    def _load(self, session: Session, key: str) -> CacheEntryRecord | None:
        stmt = (
            select(CacheEntryRecord)
            .where(CacheEntryRecord.key == key)
            .options(selectinload(CacheEntryRecord.artifacts))
        )
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _to_entry(record: CacheEntryRecord) -> CacheEntry:
        storage_dir = Path(record.storage_dir)
        artifacts = tuple(
            ArtifactInfo(
                name=a.name,
                path=storage_dir / a.name,
                sha256=a.sha256,
                size_bytes=a.size_bytes,
            )
            for a in record.artifacts
        )
        return CacheEntry(
            key=record.key,
            artifacts=artifacts,
            produced_at=record.produced_at,
        )

    def has(self, key: str) -> bool:
        with get_session(self.session_factory) as session:
            return self._load(session, key) is not None

    def fetch(self, key: str) -> CacheEntry:
        with get_session(self.session_factory) as session:
            record = self._load(session, key)
            if record is None:
                raise CacheMiss(key)
            return self._to_entry(record)

    def put(
        self,
        key: str,
        paths: Sequence[Path],
        root: Path | None = None,
        component: str | None = None,
    ) -> None:
        sources = describe_paths(paths, root)
        staging = Path(tempfile.mkdtemp(prefix="put_", dir=self.staging_dir))
        try:
            for info in sources:
                dest = staging / info.name
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(info.path, dest)
            # Hash the copies: they are what later fetches will hand out
            staged = describe_paths([staging / info.name for info in sources], staging)
            offered = {a.name: a.sha256 for a in staged}

            with key_lock(self.lock_dir, key, timeout=self.lock_timeout):
                with get_session(self.session_factory) as session:
                    existing = self._load(session, key)
                    if existing is not None:
                        stored = {a.name: a.sha256 for a in existing.artifacts}
                        ensure_same_content(key, stored, offered)
                        logger.debug(
                            "Key %s already cached with equal content", key[:32]
                        )
                        return

                final_dir = self._entry_dir(key)
                if final_dir.exists():
                    # Left behind by a put that never committed its row
                    logger.warning("Replacing uncommitted cache dir %s", final_dir)
                    shutil.rmtree(final_dir)
                os.replace(staging, final_dir)

                with get_session(self.session_factory) as session:
                    record = CacheEntryRecord(
                        key=key,
                        component=component,
                        storage_dir=str(final_dir),
                        produced_at=datetime.now(timezone.utc),
                    )
                    for info in staged:
                        record.artifacts.append(
                            CachedArtifactRecord(
                                name=info.name,
                                sha256=info.sha256,
                                size_bytes=info.size_bytes,
                            )
                        )
                    session.add(record)

            logger.info(
                "Cached %d artifacts of %s under %s",
                len(staged),
                component or "component",
                key[:32],
            )
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

    def entries(self) -> list[CacheEntry]:
        with get_session(self.session_factory) as session:
            stmt = (
                select(CacheEntryRecord)
                .options(selectinload(CacheEntryRecord.artifacts))
                .order_by(CacheEntryRecord.id.desc())
            )
            return [self._to_entry(r) for r in session.execute(stmt).scalars().all()]

    def component_of(self, key: str) -> str | None:
        """Component recorded for a key, if any."""
        with get_session(self.session_factory) as session:
            record = self._load(session, key)
            return record.component if record is not None else None


__all__ = [
    "CacheStore",
    "DiskCacheStore",
    "InMemoryCacheStore",
    "describe_paths",
    "ensure_same_content",
]
