"""
Ingestion Orchestrator Unit Tests

Runs the real chunker and Embedder (fake provider) against mocked
source and stores, checking status transitions, ordering, failure
recording and per-repository serialization.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from repochat.core.errors import SourceNotFoundError
from repochat.models.orm import RepositoryStatus
from repochat.models.schemas import RepositoryInfo, SourceFile
from repochat.services.chunking import TextChunker
from repochat.services.embeddings import Embedder
from repochat.services.ingestion import IngestionOrchestrator, IngestResult

README = "# Widgets\n\nA tiny library of reusable widgets.".ljust(50, ".")


def _source(
    readme: str | None = README,
    files: list[SourceFile] | None = None,
    readme_path: str = "README.md",
) -> AsyncMock:
    if files is None:
        files = [
            SourceFile(path="README.md", content=README, size=50),
            SourceFile(path="src/a.ts", content="x" * 3000, size=3000),
            SourceFile(path="src/b.ts", content="let b = 1;", size=10),
        ]
    source = AsyncMock()
    source.fetch_repository_info.return_value = RepositoryInfo(
        owner="acme", repo="widgets", description="Widgets", default_branch="main"
    )
    source.find_readme.return_value = (
        SourceFile(path=readme_path, content=readme, size=len(readme))
        if readme is not None
        else None
    )
    source.list_text_files.return_value = files
    return source


def _repo_store(exists: bool = True) -> AsyncMock:
    store = AsyncMock()
    store.write_status.return_value = exists
    store.write_metadata.return_value = exists
    return store


def _orchestrator(source, embedder, session_factory, vector_store=None, repo_store=None):
    return IngestionOrchestrator(
        source=source,
        chunker=TextChunker(),
        embedder=embedder,
        vector_store=vector_store or AsyncMock(),
        repo_store=repo_store or _repo_store(),
        session_factory=session_factory,
    )


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_acme_widgets(self, embedder, session_factory) -> None:
        vector_store = AsyncMock()
        repo_store = _repo_store()
        orchestrator = _orchestrator(
            _source(), embedder, session_factory, vector_store, repo_store
        )

        result = await orchestrator.ingest_repository("repo-1", "acme", "widgets")

        assert result == IngestResult("repo-1", files_count=3, chunks_count=4)

        session, repository_id, embedded = vector_store.replace_all.await_args.args
        assert repository_id == "repo-1"
        assert [c.file_path for c in embedded] == [
            "README.md",
            "src/a.ts",
            "src/a.ts",
            "src/b.ts",
        ]
        assert all(len(c.embedding) == 384 for c in embedded)

        repo_store.write_status.assert_awaited_once_with(
            session, "repo-1", RepositoryStatus.READY, chunk_count=4
        )
        metadata = repo_store.write_metadata.await_args.args[2]
        assert metadata.languages == ["TypeScript"]
        assert metadata.readme == README

    @pytest.mark.asyncio
    async def test_empty_repository_becomes_ready(
        self, embedder, fake_provider, session_factory
    ) -> None:
        repo_store = _repo_store()
        vector_store = AsyncMock()
        orchestrator = _orchestrator(
            _source(readme=None, files=[]), embedder, session_factory, vector_store, repo_store
        )

        result = await orchestrator.ingest_repository("repo-1", "acme", "empty")

        assert result is not None
        assert result.chunks_count == 0
        assert fake_provider.calls == []
        assert vector_store.replace_all.await_args.args[2] == []
        assert repo_store.write_status.await_args.args[2] == RepositoryStatus.READY
        assert repo_store.write_status.await_args.kwargs["chunk_count"] == 0

    @pytest.mark.asyncio
    async def test_progress_reported_in_order(self, embedder, session_factory) -> None:
        messages: list[str] = []
        orchestrator = _orchestrator(_source(), embedder, session_factory)

        await orchestrator.ingest_repository(
            "repo-1", "acme", "widgets", on_progress=messages.append
        )

        assert messages[0] == "Fetching acme/widgets from GitHub..."
        assert "Split repository into 4 chunks" in messages
        assert messages[-1] == "Repository ready: 4 chunks"

    @pytest.mark.asyncio
    async def test_readme_chunk_named_after_found_variant(
        self, embedder, session_factory
    ) -> None:
        vector_store = AsyncMock()
        source = _source(
            files=[SourceFile(path="src/b.ts", content="let b = 1;", size=10)],
            readme_path="README.txt",
        )
        orchestrator = _orchestrator(source, embedder, session_factory, vector_store)

        await orchestrator.ingest_repository("repo-1", "acme", "widgets")

        embedded = vector_store.replace_all.await_args.args[2]
        assert [c.file_path for c in embedded] == ["README.txt", "src/b.ts"]
        assert embedded[0].text.startswith("File: README.txt\n")

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_change_outcome(
        self, embedder, session_factory
    ) -> None:
        def closed_stdout(message: str) -> None:
            raise BrokenPipeError("stdout closed")

        repo_store = _repo_store()
        orchestrator = _orchestrator(
            _source(readme=None, files=[]), embedder, session_factory, repo_store=repo_store
        )

        result = await orchestrator.ingest_repository(
            "repo-1", "acme", "empty", on_progress=closed_stdout
        )

        assert result == IngestResult("repo-1", files_count=0, chunks_count=0)
        repo_store.write_status.assert_awaited_once()
        assert repo_store.write_status.await_args.args[2] == RepositoryStatus.READY


class TestFailures:
    @pytest.mark.asyncio
    async def test_provider_failure_marks_error(
        self, provider_factory, session_factory
    ) -> None:
        embedder = Embedder(provider_factory(error=RuntimeError("boom")), dimension=384)
        vector_store = AsyncMock()
        repo_store = _repo_store()
        orchestrator = _orchestrator(
            _source(), embedder, session_factory, vector_store, repo_store
        )

        result = await orchestrator.ingest_repository("repo-1", "acme", "widgets")

        assert result is None
        vector_store.replace_all.assert_not_awaited()
        call = repo_store.write_status.await_args
        assert call.args[1:3] == ("repo-1", RepositoryStatus.ERROR)
        assert "currently unavailable" in call.kwargs["error"]

    @pytest.mark.asyncio
    async def test_source_not_found_message_recorded(
        self, embedder, session_factory
    ) -> None:
        source = _source()
        source.fetch_repository_info.side_effect = SourceNotFoundError(
            "Repository acme/widgets not found"
        )
        repo_store = _repo_store()
        messages: list[str] = []
        orchestrator = _orchestrator(source, embedder, session_factory, repo_store=repo_store)

        result = await orchestrator.ingest_repository(
            "repo-1", "acme", "widgets", on_progress=messages.append
        )

        assert result is None
        assert repo_store.write_status.await_args.kwargs["error"] == (
            "Repository acme/widgets not found"
        )
        assert messages[-1] == "Error ingesting repository: Repository acme/widgets not found"

    @pytest.mark.asyncio
    async def test_failing_progress_callback_still_records_error(
        self, embedder, session_factory
    ) -> None:
        def closed_stdout(message: str) -> None:
            raise BrokenPipeError("stdout closed")

        source = _source()
        source.fetch_repository_info.side_effect = SourceNotFoundError(
            "Repository acme/widgets not found"
        )
        repo_store = _repo_store()
        orchestrator = _orchestrator(source, embedder, session_factory, repo_store=repo_store)

        result = await orchestrator.ingest_repository(
            "repo-1", "acme", "widgets", on_progress=closed_stdout
        )

        assert result is None
        repo_store.write_status.assert_awaited_once()
        call = repo_store.write_status.await_args
        assert call.args[1:3] == ("repo-1", RepositoryStatus.ERROR)
        assert call.kwargs["error"] == "Repository acme/widgets not found"

    @pytest.mark.asyncio
    async def test_storage_failure_marks_error(self, embedder, session_factory) -> None:
        vector_store = AsyncMock()
        vector_store.replace_all.side_effect = RuntimeError("connection lost")
        repo_store = _repo_store()
        orchestrator = _orchestrator(
            _source(), embedder, session_factory, vector_store, repo_store
        )

        assert await orchestrator.ingest_repository("repo-1", "acme", "widgets") is None
        repo_store.write_status.assert_awaited_once()
        assert repo_store.write_status.await_args.kwargs["error"] == "connection lost"

    @pytest.mark.asyncio
    async def test_repository_deleted_mid_run(self, embedder, session_factory) -> None:
        repo_store = _repo_store(exists=False)
        orchestrator = _orchestrator(_source(), embedder, session_factory, repo_store=repo_store)

        result = await orchestrator.ingest_repository("repo-1", "acme", "widgets")

        assert result is None
        # only the READY attempt; no follow-up error write
        repo_store.write_status.assert_awaited_once()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_same_repository_runs_serialized(
        self, provider_factory, session_factory
    ) -> None:
        provider = provider_factory(delay=0.05)
        embedder = Embedder(provider, dimension=384)
        orchestrator = _orchestrator(_source(), embedder, session_factory)

        results = await asyncio.gather(
            orchestrator.ingest_repository("repo-1", "acme", "widgets"),
            orchestrator.ingest_repository("repo-1", "acme", "widgets"),
        )

        assert all(r is not None for r in results)
        assert provider.max_active == 1

    @pytest.mark.asyncio
    async def test_different_repositories_run_in_parallel(
        self, provider_factory, session_factory
    ) -> None:
        provider = provider_factory(delay=0.05)
        embedder = Embedder(provider, dimension=384)
        orchestrator = _orchestrator(_source(), embedder, session_factory)

        await asyncio.gather(
            orchestrator.ingest_repository("repo-1", "acme", "widgets"),
            orchestrator.ingest_repository("repo-2", "acme", "gadgets"),
        )

        assert provider.max_active == 2

    @pytest.mark.asyncio
    async def test_locks_dropped_after_runs(self, embedder, session_factory) -> None:
        orchestrator = _orchestrator(_source(), embedder, session_factory)

        await asyncio.gather(
            orchestrator.ingest_repository("repo-1", "acme", "widgets"),
            orchestrator.ingest_repository("repo-1", "acme", "widgets"),
            orchestrator.ingest_repository("repo-2", "acme", "gadgets"),
        )

        assert len(orchestrator._locks) == 0
