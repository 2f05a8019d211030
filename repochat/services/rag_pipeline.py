"""
RepoChat Pipeline

Single entry point for the API layer and scripts. Composes the
individual services into the four core operations:

    ingest_repository   GitHub → chunks → embeddings → vector store
    answer_question     question → retrieval → generation → text
    get_chunk_count     stored chunks for a repository
    clear_repository    drop a repository's chunks
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repochat.core.config import Settings, settings
from repochat.core.database import get_session_factory
from repochat.models.schemas import ConversationTurn
from repochat.repositories.repos import RepositoryStore
from repochat.repositories.vectors import VectorStore
from repochat.services.chunking import TextChunker
from repochat.services.embeddings import (
    Embedder,
    SentenceTransformerProvider,
    build_embedder,
)
from repochat.services.github import GitHubSource
from repochat.services.ingestion import (
    IngestionOrchestrator,
    IngestResult,
    ProgressCallback,
)
from repochat.services.llm import GenerationService, build_generation_backend
from repochat.services.retrieval import Answer, RetrievalOrchestrator

logger = logging.getLogger(__name__)


class RepoChatPipeline:
    """
    Facade over ingestion, retrieval and the vector store.

    Usage::

        pipeline = build_pipeline(settings)
        await pipeline.ingest_repository(repo_id, "acme", "widgets")
        async with session_factory() as session:
            text = await pipeline.answer_question(session, repo_id, "How do I build it?")
    """

    def __init__(
        self,
        ingestion: IngestionOrchestrator,
        retrieval: RetrievalOrchestrator,
        vector_store: VectorStore,
        embedder: Embedder,
    ) -> None:
        self._ingestion = ingestion
        self._retrieval = retrieval
        self._vector_store = vector_store
        self._embedder = embedder

    @property
    def embedder(self) -> Embedder:
        return self._embedder

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest_repository(
        self,
        repository_id: str,
        owner: str,
        repo: str,
        on_progress: ProgressCallback | None = None,
    ) -> IngestResult | None:
        """Fetch, chunk, embed and store; failures land on the status row."""
        return await self._ingestion.ingest_repository(
            repository_id, owner, repo, on_progress
        )

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def answer_question(
        self,
        session: AsyncSession,
        repository_id: str,
        question: str,
        recent_history: Sequence[ConversationTurn] = (),
    ) -> str:
        return await self._retrieval.answer_question(
            session, repository_id, question, recent_history
        )

    async def answer_question_with_sources(
        self,
        session: AsyncSession,
        repository_id: str,
        question: str,
        recent_history: Sequence[ConversationTurn] = (),
    ) -> Answer:
        return await self._retrieval.answer_question_with_sources(
            session, repository_id, question, recent_history
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def get_chunk_count(self, session: AsyncSession, repository_id: str) -> int:
        return await self._vector_store.count(session, repository_id)

    async def clear_repository(self, session: AsyncSession, repository_id: str) -> None:
        await self._vector_store.delete_all(session, repository_id)


def build_pipeline(
    config: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> RepoChatPipeline:
    """Wire every service from settings."""
    embedder = build_embedder(config)
    vector_store = VectorStore(
        dimension=config.EMBEDDING_DIMENSION,
        insert_batch_size=config.INSERT_BATCH_SIZE,
        retry_seconds=config.SERVER_SEARCH_RETRY_SECONDS,
    )
    repo_store = RepositoryStore()

    ingestion = IngestionOrchestrator(
        source=GitHubSource(
            token=config.GITHUB_TOKEN,
            max_files=config.MAX_FILES,
            max_file_bytes=config.MAX_FILE_BYTES,
            api_url=config.GITHUB_API_URL,
            raw_url=config.GITHUB_RAW_URL,
        ),
        chunker=TextChunker(config.CHUNK_SIZE, config.CHUNK_OVERLAP),
        embedder=embedder,
        vector_store=vector_store,
        repo_store=repo_store,
        session_factory=session_factory or get_session_factory(),
    )
    retrieval = RetrievalOrchestrator(
        embedder=embedder,
        vector_store=vector_store,
        repo_store=repo_store,
        generator=GenerationService(
            build_generation_backend(config), timeout=config.PROVIDER_TIMEOUT
        ),
        top_k=config.TOP_K,
        min_similarity=config.MIN_SIMILARITY,
        history_turns=config.HISTORY_TURNS,
        context_token_budget=config.CONTEXT_TOKEN_BUDGET,
        max_response_tokens=config.MAX_RESPONSE_TOKENS,
        temperature=config.TEMPERATURE,
    )
    logger.info(
        "Pipeline ready (embeddings=%s, generation=%s)",
        config.EMBEDDING_PROVIDER,
        config.GENERATION_PROVIDER,
    )
    return RepoChatPipeline(ingestion, retrieval, vector_store, embedder)


_pipeline: RepoChatPipeline | None = None


def get_pipeline() -> RepoChatPipeline:
    """FastAPI dependency returning the process-wide pipeline (lazy)."""
    global _pipeline  # noqa: PLW0603
    if _pipeline is None:
        _pipeline = build_pipeline(settings)
    return _pipeline


async def warm_up(pipeline: RepoChatPipeline) -> None:
    """Load the local embedding model before the first request."""
    provider = pipeline.embedder.provider
    if isinstance(provider, SentenceTransformerProvider):
        await provider.warm_up()
