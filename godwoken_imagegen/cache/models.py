"""Cache index ORM models.

A CacheEntryRecord row exists only once every artifact of its key has been
written into place, so row presence is what "key is cached" means.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from godwoken_imagegen.db import Base


class CacheEntryRecord(Base):
    """ORM model for a cache key.

    Attributes:
        id: Primary key.
        key: Cache key (unique).
        component: Component the key belongs to.
        storage_dir: Directory holding the artifacts.
        produced_at: When the entry was committed.
    """

    __tablename__ = "cache_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    component: Mapped[str | None] = mapped_column(
        String(100), nullable=True, index=True
    )
    storage_dir: Mapped[str] = mapped_column(String(500), nullable=False)
    produced_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    artifacts: Mapped[list["CachedArtifactRecord"]] = relationship(
        "CachedArtifactRecord",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="CachedArtifactRecord.name",
    )

    def __repr__(self) -> str:
        """Return string representation of CacheEntryRecord."""
        return (
            f"<CacheEntryRecord(id={self.id}, component='{self.component}', "
            f"key='{self.key[:16]}...')>"
        )


class CachedArtifactRecord(Base):
    """ORM model for one artifact of a cache entry.

    Attributes:
        id: Primary key.
        entry_id: Foreign key to CacheEntryRecord.
        name: Artifact name relative to the entry directory.
        sha256: SHA-256 recorded when the artifact was put.
        size_bytes: File size in bytes.
    """

    __tablename__ = "cached_artifacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("cache_entries.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)

    entry: Mapped["CacheEntryRecord"] = relationship(
        "CacheEntryRecord", back_populates="artifacts"
    )

    def __repr__(self) -> str:
        """Return string representation of CachedArtifactRecord."""
        return f"<CachedArtifactRecord(name='{self.name}', size={self.size_bytes})>"


__all__ = ["CacheEntryRecord", "CachedArtifactRecord"]
