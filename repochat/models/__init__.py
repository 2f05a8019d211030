"""Models package: Pydantic schemas and SQLAlchemy ORM for the RepoChat pipeline."""

from repochat.models.orm import (
    EMBEDDING_DIMENSION,
    ChunkRecord,
    RepositoryRecord,
    RepositoryStatus,
)
from repochat.models.schemas import (
    Chunk,
    ConversationTurn,
    EmbeddedChunk,
    QueryResult,
    RepositoryInfo,
    RepositoryMetadata,
    SourceFile,
)

__all__ = [
    # Pydantic schemas (pipeline)
    "Chunk",
    "ConversationTurn",
    "EmbeddedChunk",
    "QueryResult",
    "RepositoryInfo",
    "RepositoryMetadata",
    "SourceFile",
    # SQLAlchemy ORM (persistence layer)
    "ChunkRecord",
    "EMBEDDING_DIMENSION",
    "RepositoryRecord",
    "RepositoryStatus",
]
