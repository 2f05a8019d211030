"""
Repository API Schemas

Pydantic models for the repository endpoints' request/response cycle.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from repochat.models.schemas import ConversationTurn


class RepositoryCreate(BaseModel):
    """Request body for registering a repository."""

    url: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Public GitHub repository URL, e.g. https://github.com/acme/widgets",
    )


class RepositoryRead(BaseModel):
    """Repository as returned to the client."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    url: str
    owner: str
    name: str
    status: str = Field(description="'processing', 'ready' or 'error'")
    error: str | None = Field(default=None, description="Failure reason (status=error)")
    chunk_count: int = 0
    languages: list[str] | None = None
    framework: str | None = None
    description: str | None = None
    default_branch: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChunkCountResponse(BaseModel):
    """Number of stored chunks for a repository."""

    repository_id: str
    chunk_count: int


class AskRequest(BaseModel):
    """Request body for asking a question about a repository."""

    question: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="Natural language question about the repository",
    )
    history: list[ConversationTurn] = Field(
        default_factory=list,
        description="Prior turns, oldest first (only the most recent are used)",
    )


class SourceReference(BaseModel):
    """Reference to a chunk used to ground the answer."""

    file_path: str | None = Field(description="Source file path")
    chunk_index: int = Field(description="Chunk position within the repository")
    similarity: float = Field(description="Cosine similarity in [0, 1]")
    preview: str = Field(description="First 100 chars of chunk content")


class AskResponse(BaseModel):
    """Generated answer with its sources."""

    answer: str = Field(description="Generated answer text")
    sources: list[SourceReference] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """Body of a typed pipeline failure."""

    error_code: str
    category: str
    message: str
