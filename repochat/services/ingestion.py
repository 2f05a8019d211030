"""
Repository Ingestion Service

Turns a GitHub repository into stored, embedded chunks and moves its
row from ``processing`` to ``ready`` or ``error``.

Steps (strictly ordered, each can fail independently):
    1. Fetch repository info, README and up to N allow-listed files.
    2. Derive metadata (file tree, languages, framework).
    3. Chunk README + files into one flat ordered sequence.
    4. Embed every chunk, in order.
    5. Replace stored chunks, write metadata, mark ``ready``.

Any exception aborts the run and records ``error`` with the message.
Runs for the same repository are serialized; different repositories
ingest in parallel.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from collections.abc import Callable
from typing import NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repochat.models.orm import RepositoryStatus
from repochat.models.schemas import EmbeddedChunk
from repochat.repositories.repos import RepositoryStore
from repochat.repositories.vectors import VectorStore
from repochat.services.chunking import TextChunker
from repochat.services.embeddings import Embedder
from repochat.services.github import GitHubSource
from repochat.services.metadata import derive_repository_metadata

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class IngestResult(NamedTuple):
    """Return value of a successful ingestion."""

    repository_id: str
    files_count: int
    chunks_count: int


class IngestionOrchestrator:
    """
    Drives source → chunker → embedder → vector store for one repository.

    Usage::

        orchestrator = IngestionOrchestrator(
            source, chunker, embedder, VectorStore(), RepositoryStore(),
            get_session_factory(),
        )
        result = await orchestrator.ingest_repository(repo_id, "acme", "widgets")
        # None means the run failed; the reason is on the repository row

    The database session is opened here, from ``session_factory``, so
    the run can outlive the HTTP request that scheduled it.
    """

    def __init__(
        self,
        source: GitHubSource,
        chunker: TextChunker,
        embedder: Embedder,
        vector_store: VectorStore,
        repo_store: RepositoryStore,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._source = source
        self._chunker = chunker
        self._embedder = embedder
        self._vector_store = vector_store
        self._repo_store = repo_store
        self._session_factory = session_factory
        # Entries vanish once no run holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest_repository(
        self,
        repository_id: str,
        owner: str,
        repo: str,
        on_progress: ProgressCallback | None = None,
    ) -> IngestResult | None:
        """
        Ingest ``owner/repo`` into ``repository_id``.

        Re-running fully replaces the previous chunks and metadata.

        Returns:
            IngestResult on success, None when the run failed (status
            ``error``) or the repository was deleted mid-run.
        """
        lock = self._locks.get(repository_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[repository_id] = lock

        async with lock:
            started = time.perf_counter()
            try:
                result = await self._run(repository_id, owner, repo, on_progress)
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                logger.error(
                    "Ingestion of %s/%s (%s) failed: %s",
                    owner,
                    repo,
                    repository_id,
                    message,
                    exc_info=True,
                )
                await self._mark_error(repository_id, message)
                self._report(on_progress, f"Error ingesting repository: {message}")
                return None

            if result is not None:
                logger.info(
                    "Ingested %s/%s: %d files, %d chunks in %.1fs",
                    owner,
                    repo,
                    result.files_count,
                    result.chunks_count,
                    time.perf_counter() - started,
                )
            return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(
        self,
        repository_id: str,
        owner: str,
        repo: str,
        on_progress: ProgressCallback | None,
    ) -> IngestResult | None:
        # --- Step 1: Fetch ---
        self._report(on_progress, f"Fetching {owner}/{repo} from GitHub...")
        info = await self._source.fetch_repository_info(owner, repo)
        readme_file = await self._source.find_readme(owner, repo, info.default_branch)
        readme = readme_file.content if readme_file is not None else None
        files = await self._source.list_text_files(owner, repo, info.default_branch)
        self._report(
            on_progress,
            f"Fetched {len(files)} files{' and README' if readme else ''}",
        )

        # --- Step 2: Metadata ---
        metadata = derive_repository_metadata(files, readme, info)
        self._report(
            on_progress,
            f"Detected languages: {', '.join(metadata.languages) or 'none'}; "
            f"framework: {metadata.framework or 'none'}",
        )

        # --- Step 3: Chunk ---
        chunks = self._chunker.chunk_repository(
            readme,
            files,
            readme_path=readme_file.path if readme_file is not None else "README.md",
        )
        self._report(on_progress, f"Split repository into {len(chunks)} chunks")

        # --- Step 4: Embed ---
        self._report(on_progress, "Generating embeddings...")
        vectors = await self._embedder.embed_many([chunk.text for chunk in chunks])
        embedded = [
            EmbeddedChunk(**chunk.model_dump(), embedding=vector)
            for chunk, vector in zip(chunks, vectors, strict=True)
        ]
        self._report(on_progress, f"Generated {len(embedded)} embeddings")

        # --- Step 5: Persist ---
        self._report(on_progress, "Storing chunks...")
        async with self._session_factory() as session:
            await self._vector_store.replace_all(session, repository_id, embedded)
            await self._repo_store.write_metadata(session, repository_id, metadata)
            updated = await self._repo_store.write_status(
                session,
                repository_id,
                RepositoryStatus.READY,
                chunk_count=len(embedded),
            )

        if not updated:
            logger.warning(
                "Repository %s was deleted during ingestion, result discarded",
                repository_id,
            )
            return None

        self._report(on_progress, f"Repository ready: {len(embedded)} chunks")
        return IngestResult(
            repository_id=repository_id,
            files_count=len(files),
            chunks_count=len(embedded),
        )

    async def _mark_error(self, repository_id: str, message: str) -> None:
        async with self._session_factory() as session:
            updated = await self._repo_store.write_status(
                session,
                repository_id,
                RepositoryStatus.ERROR,
                error=message,
            )
        if not updated:
            logger.info(
                "Repository %s no longer exists, failed ingestion ignored",
                repository_id,
            )

    @staticmethod
    def _report(on_progress: ProgressCallback | None, message: str) -> None:
        logger.info("%s", message)
        if on_progress is None:
            return
        # Progress is observational only; a failing callback never aborts a run
        try:
            on_progress(message)
        except Exception:
            logger.warning("Progress callback failed on %r", message, exc_info=True)
