"""
RepoChat Pipeline Schemas

Pydantic models for the data flowing through the ingestion and
retrieval pipeline: fetched source files, derived repository metadata,
chunks (before and after embedding) and ranked query results.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class SourceFile(BaseModel):
    """A text file fetched from the source provider."""

    path: str = Field(min_length=1, description="Path relative to the repo root")
    content: str = Field(description="Decoded UTF-8 file content")
    size: int = Field(default=0, ge=0, description="Size in bytes as reported upstream")


class RepositoryInfo(BaseModel):
    """Repository-level facts returned by the GitHub API."""

    owner: str
    repo: str
    description: str | None = None
    language: str | None = None
    default_branch: str = "main"


class RepositoryMetadata(BaseModel):
    """
    Metadata derived during ingestion and written onto the repository row.

    Attributes:
        file_tree: Prefix-drawn tree of the fetched paths, in listing order.
        languages: Deduplicated language names, first-seen order.
        framework: Best-effort framework label, None when no marker matched.
        readme: README text, None when the repository has none.
        description: GitHub description.
        default_branch: Branch the files were fetched from.
    """

    file_tree: str = ""
    languages: list[str] = Field(default_factory=list)
    framework: str | None = None
    readme: str | None = None
    description: str | None = None
    default_branch: str | None = None


class Chunk(BaseModel):
    """
    A segment of repository content ready for embedding.

    ``text`` already carries the ``File: <path>`` header, so each chunk
    is self-describing out of context.
    """

    text: str = Field(min_length=1)
    file_path: str | None = None
    file_type: str = "code"
    importance: float = Field(default=0.5, gt=0.0, le=1.0)

    @property
    def metadata(self) -> dict[str, Any]:
        """JSON blob persisted alongside the chunk row."""
        return {"file_type": self.file_type, "importance": self.importance}


class EmbeddedChunk(Chunk):
    """A Chunk paired with its embedding vector."""

    embedding: list[float]


class QueryResult(BaseModel):
    """A ranked chunk returned by similarity search (never persisted)."""

    text: str
    file_path: str | None = None
    similarity: float = Field(ge=0.0, le=1.0)
    chunk_index: int = Field(ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConversationTurn(BaseModel):
    """One prior message of the conversation, oldest first."""

    role: Literal["user", "assistant"]
    content: str
