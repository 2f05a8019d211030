"""
Vector Store

Persistence and similarity search for repository chunks.

Search runs one of two interchangeable strategies:
    - server: the ``match_chunks`` SQL function ranks rows by pgvector
      cosine distance. The chunk_index tie-break makes this an exact
      scan over the repository's rows; the HNSW index only serves a
      bare ``ORDER BY distance LIMIT n``.
    - client: every vector of the repository is fetched and ranked
      in-process with numpy cosine similarity.

Both order by descending similarity, ties broken by chunk_index.
The client strategy takes over when the server function is missing
(ProgrammingError), and the server path is probed again after
``retry_seconds``, so the store recovers once the function is restored.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from typing import Any

import numpy as np
from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Float,
    Integer,
    String,
    Text,
    bindparam,
    delete,
    func,
    insert,
    select,
    text,
)
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from repochat.models.orm import EMBEDDING_DIMENSION, ChunkRecord, JSONType
from repochat.models.schemas import EmbeddedChunk, QueryResult

logger = logging.getLogger(__name__)

DEFAULT_INSERT_BATCH_SIZE: int = 100
DEFAULT_SERVER_RETRY_SECONDS: float = 300.0

_MATCH_CHUNKS_SQL = """
SELECT chunk_index, content, file_path, metadata, similarity
FROM match_chunks(
    CAST(:query_embedding AS vector),
    :repository_id,
    :match_threshold,
    :match_count
)
"""


# ---------------------------------------------------------------------------
# Client-side similarity
# ---------------------------------------------------------------------------


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    ``dot(a, b) / (|a| * |b|)``.

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        ValueError: Vectors have different lengths.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.shape[0]} != {vb.shape[0]}")

    norm = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def rank_by_cosine(
    query_vector: Sequence[float],
    candidates: Iterable[tuple[int, Sequence[float]]],
    k: int,
    min_similarity: float = 0.0,
) -> list[tuple[int, float]]:
    """
    Rank ``(chunk_index, vector)`` candidates against a query.

    Returns:
        Up to ``k`` ``(chunk_index, similarity)`` pairs with similarity
        >= ``min_similarity``, by descending similarity then chunk_index.
    """
    scored = [
        (chunk_index, cosine_similarity(query_vector, vector))
        for chunk_index, vector in candidates
    ]
    kept = [pair for pair in scored if pair[1] >= min_similarity]
    kept.sort(key=lambda pair: (-pair[1], pair[0]))
    return kept[: max(k, 0)]


def _clamp(similarity: float) -> float:
    return min(1.0, max(0.0, similarity))


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class VectorStore:
    """
    Chunk persistence with repository-scoped similarity search.

    All methods expect an externally managed ``AsyncSession``.

    Key guarantees:
        - ``replace_all``: a repository's chunks are swapped in one
          transaction; a failure leaves the previous set untouched.
        - ``search``: at most ``k`` results, ordered by descending
          similarity, none below ``min_similarity``.

    Args:
        dimension: Required vector length.
        insert_batch_size: Rows per INSERT statement.
        retry_seconds: How long the client strategy is used before the
            server function is probed again.
    """

    def __init__(
        self,
        dimension: int = EMBEDDING_DIMENSION,
        insert_batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
        retry_seconds: float = DEFAULT_SERVER_RETRY_SECONDS,
    ) -> None:
        self._dimension = dimension
        self._insert_batch_size = insert_batch_size
        self._retry_seconds = retry_seconds
        self._server_retry_at: float | None = None

    @property
    def server_search_enabled(self) -> bool:
        """False while the store is serving searches client-side."""
        return self._server_retry_at is None or time.monotonic() >= self._server_retry_at

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def replace_all(
        self,
        session: AsyncSession,
        repository_id: str,
        chunks: Sequence[EmbeddedChunk],
    ) -> int:
        """
        Replace every chunk of a repository with ``chunks``.

        Ordinals follow the order of ``chunks``. Inserts are batched and
        the whole swap commits once; any failure rolls back and re-raises.

        Returns:
            Number of chunks stored.

        Raises:
            ValueError: A vector's length differs from the store dimension.
        """
        for i, chunk in enumerate(chunks):
            if len(chunk.embedding) != self._dimension:
                raise ValueError(
                    f"Chunk {i} has embedding length {len(chunk.embedding)}, "
                    f"expected {self._dimension}"
                )

        rows: list[dict[str, Any]] = [
            {
                "repository_id": repository_id,
                "chunk_index": i,
                "content": chunk.text,
                "file_path": chunk.file_path,
                "embedding": chunk.embedding,
                "chunk_metadata": chunk.metadata,
            }
            for i, chunk in enumerate(chunks)
        ]

        try:
            await session.execute(
                delete(ChunkRecord).where(ChunkRecord.repository_id == repository_id)
            )
            for offset in range(0, len(rows), self._insert_batch_size):
                batch = rows[offset : offset + self._insert_batch_size]
                await session.execute(insert(ChunkRecord), batch)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception(
                "replace_all failed for repository %s (%d chunks), rolled back",
                repository_id,
                len(rows),
            )
            raise

        logger.info("Stored %d chunks for repository %s", len(rows), repository_id)
        return len(rows)

    async def delete_all(self, session: AsyncSession, repository_id: str) -> int:
        """Remove every chunk of a repository. Returns the number removed."""
        result = await session.execute(
            delete(ChunkRecord).where(ChunkRecord.repository_id == repository_id)
        )
        await session.commit()
        removed = result.rowcount or 0
        logger.info("Deleted %d chunks for repository %s", removed, repository_id)
        return removed

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def count(self, session: AsyncSession, repository_id: str) -> int:
        """Number of stored chunks for a repository."""
        stmt = (
            select(func.count())
            .select_from(ChunkRecord)
            .where(ChunkRecord.repository_id == repository_id)
        )
        result = await session.execute(stmt)
        return int(result.scalar_one())

    async def search(
        self,
        session: AsyncSession,
        repository_id: str,
        query_vector: Sequence[float],
        k: int,
        min_similarity: float = 0.0,
    ) -> list[QueryResult]:
        """
        Top-``k`` chunks of one repository by cosine similarity.

        Args:
            session: Active async database session.
            repository_id: Repository to search (no other rows are considered).
            query_vector: Query embedding of the store dimension.
            k: Maximum number of results.
            min_similarity: Results below this raw similarity are excluded.

        Returns:
            QueryResults ordered by descending similarity, ties by chunk_index.
        """
        if k <= 0:
            return []
        if len(query_vector) != self._dimension:
            raise ValueError(
                f"Query vector length {len(query_vector)}, expected {self._dimension}"
            )

        if self.server_search_enabled:
            try:
                async with session.begin_nested():
                    results = await self._search_server(
                        session, repository_id, query_vector, k, min_similarity
                    )
            except ProgrammingError as exc:
                self._server_retry_at = time.monotonic() + self._retry_seconds
                logger.warning(
                    "match_chunks unavailable, using client-side ranking for %.0fs: %s",
                    self._retry_seconds,
                    exc.orig if exc.orig is not None else exc,
                )
            else:
                if self._server_retry_at is not None:
                    logger.info("match_chunks available again, server ranking restored")
                    self._server_retry_at = None
                return results

        return await self._search_client(
            session, repository_id, query_vector, k, min_similarity
        )

    async def _search_server(
        self,
        session: AsyncSession,
        repository_id: str,
        query_vector: Sequence[float],
        k: int,
        min_similarity: float,
    ) -> list[QueryResult]:
        stmt = (
            text(_MATCH_CHUNKS_SQL)
            .bindparams(bindparam("query_embedding", type_=Vector(self._dimension)))
            .columns(
                chunk_index=Integer,
                content=Text,
                file_path=String,
                metadata=JSONType,
                similarity=Float,
            )
        )
        result = await session.execute(
            stmt,
            {
                "query_embedding": list(query_vector),
                "repository_id": repository_id,
                "match_threshold": min_similarity,
                "match_count": k,
            },
        )
        return [
            QueryResult(
                text=row.content,
                file_path=row.file_path,
                similarity=_clamp(float(row.similarity)),
                chunk_index=row.chunk_index,
                metadata=row._mapping["metadata"] or {},
            )
            for row in result
        ]

    async def _search_client(
        self,
        session: AsyncSession,
        repository_id: str,
        query_vector: Sequence[float],
        k: int,
        min_similarity: float,
    ) -> list[QueryResult]:
        stmt = select(
            ChunkRecord.chunk_index,
            ChunkRecord.content,
            ChunkRecord.file_path,
            ChunkRecord.chunk_metadata,
            ChunkRecord.embedding,
        ).where(ChunkRecord.repository_id == repository_id)
        rows = {row.chunk_index: row for row in (await session.execute(stmt)).all()}

        ranked = rank_by_cosine(
            query_vector,
            ((index, row.embedding) for index, row in rows.items()),
            k,
            min_similarity,
        )
        logger.debug(
            "Client-side ranking over %d vectors returned %d results",
            len(rows),
            len(ranked),
        )
        return [
            QueryResult(
                text=rows[index].content,
                file_path=rows[index].file_path,
                similarity=_clamp(similarity),
                chunk_index=index,
                metadata=rows[index].chunk_metadata or {},
            )
            for index, similarity in ranked
        ]


# Module-level singleton for convenience imports
vector_store = VectorStore()
