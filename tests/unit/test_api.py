"""
Repositories API Unit Tests

Endpoint behaviour with the database session, repository store and
pipeline replaced through FastAPI dependency overrides. Startup checks
are mocked so no database or model is needed.
"""

from __future__ import annotations

from collections.abc import Iterator
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError

from repochat.api.v1.repositories import _get_store
from repochat.core.database import get_db
from repochat.core.errors import (
    NoRelevantContentError,
    QuotaExceededError,
    RepositoryNotReadyError,
)
from repochat.main import app
from repochat.models.schemas import QueryResult
from repochat.services.rag_pipeline import get_pipeline
from repochat.services.retrieval import Answer

BASE = "/api/v1/repositories"


class FakePipeline:
    """Records calls; real coroutines so BackgroundTasks awaits them."""

    def __init__(self) -> None:
        self.ingested: list[tuple[str, str, str]] = []
        self.cleared: list[str] = []
        self.questions: list[tuple[str, str, list]] = []
        self.error: Exception | None = None
        self.chunk_count = 0
        self.answer = Answer(
            text="It is built with Vite.",
            sources=[
                QueryResult(
                    text="export default defineConfig({ plugins: [react()] })" * 3,
                    file_path="vite.config.ts",
                    similarity=0.812345,
                    chunk_index=3,
                )
            ],
        )

    async def ingest_repository(self, repository_id, owner, repo, on_progress=None):
        self.ingested.append((repository_id, owner, repo))

    async def answer_question_with_sources(
        self, session, repository_id, question, recent_history=()
    ):
        if self.error is not None:
            raise self.error
        self.questions.append((repository_id, question, list(recent_history)))
        return self.answer

    async def get_chunk_count(self, session, repository_id) -> int:
        return self.chunk_count

    async def clear_repository(self, session, repository_id) -> None:
        self.cleared.append(repository_id)


def _record(status: str = "processing", **overrides) -> SimpleNamespace:
    values = {
        "id": "abc123",
        "url": "https://github.com/acme/widgets",
        "owner": "acme",
        "name": "widgets",
        "status": status,
        "error": None,
        "chunk_count": 0,
        "languages": None,
        "framework": None,
        "description": None,
        "default_branch": None,
        "created_at": None,
        "updated_at": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def session() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def store() -> AsyncMock:
    store = AsyncMock()
    store.find_by_owner_name.return_value = None
    store.create.return_value = _record()
    store.read.return_value = _record("ready", chunk_count=4)
    store.list_all.return_value = [_record("ready", chunk_count=4)]
    store.write_status.return_value = True
    store.delete.return_value = True
    return store


@pytest.fixture
def pipeline() -> FakePipeline:
    return FakePipeline()


@pytest.fixture
def client(session, store, pipeline) -> Iterator[TestClient]:
    async def _db():
        yield session

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[_get_store] = lambda: store
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    with (
        patch("repochat.main.wait_for_db", new_callable=AsyncMock),
        patch("repochat.main.warm_up", new_callable=AsyncMock),
        patch("repochat.main.get_pipeline", return_value=pipeline),
    ):
        with TestClient(app) as test_client:
            yield test_client
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestCreateRepository:
    def test_created_and_ingestion_scheduled(self, client, store, pipeline) -> None:
        response = client.post(f"{BASE}/", json={"url": "https://github.com/acme/widgets"})

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "processing"
        assert data["owner"] == "acme"
        assert data["chunk_count"] == 0

        kwargs = store.create.await_args.kwargs
        assert kwargs["owner"] == "acme"
        assert kwargs["name"] == "widgets"
        assert pipeline.ingested == [("abc123", "acme", "widgets")]

    def test_invalid_url(self, client, store) -> None:
        response = client.post(f"{BASE}/", json={"url": "https://example.com/nope"})

        assert response.status_code == 422
        store.create.assert_not_awaited()

    def test_duplicate_registration(self, client, store, pipeline) -> None:
        store.find_by_owner_name.return_value = _record("ready")

        response = client.post(f"{BASE}/", json={"url": "https://github.com/acme/widgets"})

        assert response.status_code == 409
        assert pipeline.ingested == []

    def test_concurrent_duplicate_insert(self, client, store, session) -> None:
        store.create.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))

        response = client.post(f"{BASE}/", json={"url": "https://github.com/acme/widgets"})

        assert response.status_code == 409
        session.rollback.assert_awaited_once()


# ---------------------------------------------------------------------------
# Reads and maintenance
# ---------------------------------------------------------------------------


class TestReadAndMaintenance:
    def test_list(self, client) -> None:
        response = client.get(f"{BASE}/")

        assert response.status_code == 200
        assert [r["id"] for r in response.json()] == ["abc123"]

    def test_get(self, client) -> None:
        response = client.get(f"{BASE}/abc123")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
        assert response.json()["chunk_count"] == 4

    def test_get_unknown(self, client, store) -> None:
        store.read.return_value = None

        assert client.get(f"{BASE}/missing").status_code == 404

    def test_chunk_count(self, client, pipeline) -> None:
        pipeline.chunk_count = 4

        response = client.get(f"{BASE}/abc123/chunks/count")

        assert response.status_code == 200
        assert response.json() == {"repository_id": "abc123", "chunk_count": 4}

    def test_delete(self, client, store, pipeline) -> None:
        response = client.delete(f"{BASE}/abc123")

        assert response.status_code == 204
        assert pipeline.cleared == ["abc123"]
        store.delete.assert_awaited_once()

    def test_reingest(self, client, store, session, pipeline) -> None:
        response = client.post(f"{BASE}/abc123/reingest")

        assert response.status_code == 202
        assert store.write_status.await_args.args[1:] == ("abc123", "processing")
        session.refresh.assert_awaited_once()
        assert pipeline.ingested == [("abc123", "acme", "widgets")]


# ---------------------------------------------------------------------------
# Asking
# ---------------------------------------------------------------------------


class TestAsk:
    def test_answer_with_sources(self, client, pipeline) -> None:
        response = client.post(
            f"{BASE}/abc123/ask",
            json={
                "question": "Which bundler?",
                "history": [{"role": "user", "content": "hi"}],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["answer"] == "It is built with Vite."
        source = data["sources"][0]
        assert source["file_path"] == "vite.config.ts"
        assert source["similarity"] == 0.8123
        assert len(source["preview"]) == 100

        repository_id, question, history = pipeline.questions[0]
        assert (repository_id, question) == ("abc123", "Which bundler?")
        assert history[0].content == "hi"

    def test_empty_question_rejected(self, client) -> None:
        assert client.post(f"{BASE}/abc123/ask", json={"question": ""}).status_code == 422

    @pytest.mark.parametrize(
        ("error", "status_code", "category"),
        [
            (QuotaExceededError("quota", provider="OpenAI"), 429, "quota"),
            (
                RepositoryNotReadyError("abc123", "processing"),
                409,
                "repository_not_ready",
            ),
            (NoRelevantContentError("abc123"), 404, "no_relevant_content"),
        ],
    )
    def test_pipeline_errors_mapped(
        self, client, pipeline, error, status_code, category
    ) -> None:
        pipeline.error = error

        response = client.post(f"{BASE}/abc123/ask", json={"question": "Which bundler?"})

        assert response.status_code == status_code
        detail = response.json()["detail"]
        assert detail["category"] == category
        assert detail["error_code"] == error.error_code
        assert detail["message"] == str(error)
