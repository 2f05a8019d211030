"""
RepoChat Database Models

SQLAlchemy 2.0 ORM models for the repository and chunk storage layer.
Uses pgvector for vector similarity search on chunk embeddings.

Tables:
    repositories: GitHub projects with ingestion status and derived metadata.
    chunks:       Repository text segments with 384-dim embeddings (MiniLM).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from repochat.models.base import Base, TimestampMixin

# Embedding dimension for all-MiniLM-L6-v2
EMBEDDING_DIMENSION: int = 384

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class RepositoryStatus(StrEnum):
    """Ingestion lifecycle: processing -> ready | error."""

    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class RepositoryRecord(Base, TimestampMixin):
    """
    A public GitHub repository registered for question answering.

    Created in ``processing`` by the API, then moved exactly once per
    ingestion run to ``ready`` or ``error``. Metadata columns stay NULL
    until an ingestion succeeds.

    Attributes:
        id: Opaque string primary key.
        url: Original GitHub URL.
        owner, name: GitHub coordinates, unique together.
        status: processing | ready | error.
        error: Human-readable failure reason (status=error only).
        chunk_count: Number of stored chunks after the last ingestion.
        file_tree, languages, framework, readme: Derived metadata.
        description, default_branch: GitHub repository info.
        chunks: Related ChunkRecord instances (cascade delete).
    """

    __tablename__ = "repositories"
    __table_args__ = (
        UniqueConstraint("owner", "name", name="uq_repositories_owner_name"),
        CheckConstraint(
            "status IN ('processing', 'ready', 'error')",
            name="ck_repositories_status",
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    owner: Mapped[str] = mapped_column(String(200), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RepositoryStatus.PROCESSING.value,
        index=True,
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    file_tree: Mapped[str | None] = mapped_column(Text, nullable=True)
    languages: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    framework: Mapped[str | None] = mapped_column(String(100), nullable=True)
    readme: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    default_branch: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # passive_deletes: the database cascade removes chunks, not the ORM
    chunks: Mapped[list[ChunkRecord]] = relationship(
        back_populates="repository",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChunkRecord.chunk_index",
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __repr__(self) -> str:
        return (
            f"<RepositoryRecord(id='{self.id}', repo='{self.full_name}', "
            f"status='{self.status}')>"
        )


class ChunkRecord(Base):
    """
    A retrievable text segment with its vector embedding.

    Text and embedding live in the same row, so neither can exist
    without the other. ``(repository_id, chunk_index)`` is unique.

    Attributes:
        id: Autoincrement primary key.
        repository_id: Foreign key to the owning repository (CASCADE delete).
        chunk_index: Zero-based ordinal within the repository.
        content: Chunk text, prefixed with ``File: <path>`` for file chunks.
        file_path: Source file path (NULL for non-file content).
        embedding: 384-dim vector.
        chunk_metadata: JSON blob (file_type, importance).
    """

    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint(
            "repository_id", "chunk_index", name="uq_chunks_repository_chunk"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repository_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(EMBEDDING_DIMENSION),
        nullable=False,
    )
    chunk_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )

    repository: Mapped[RepositoryRecord] = relationship(back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<ChunkRecord(repo='{self.repository_id}', idx={self.chunk_index}, "
            f"file='{self.file_path}')>"
        )
