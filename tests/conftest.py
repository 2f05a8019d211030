"""
Pytest Configuration and Fixtures

Shared fakes for the offline unit tests: a deterministic embedding
provider and a session factory that hands out mocked AsyncSessions.
"""

import os

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Test environment defaults. MUST be before any repochat imports.
#
# 1. Load .env first so that local database credentials are available.
# 2. setdefault fills in anything still missing (CI runners, fresh clones
#    without a .env file) so that pydantic Settings validation doesn't crash.
# ---------------------------------------------------------------------------
load_dotenv()  # .env → os.environ (no-op if file is missing)

_test_env = {
    "POSTGRES_USER": "repochat",
    "POSTGRES_PASSWORD": "repochat_password",
    "POSTGRES_HOST": "localhost",
    "POSTGRES_PORT": "5432",
    "POSTGRES_DB": "repochat_db",
}
for _key, _value in _test_env.items():
    os.environ.setdefault(_key, _value)

# ---------------------------------------------------------------------------
# Imports (safe now that env vars are set)
# ---------------------------------------------------------------------------
import asyncio  # noqa: E402
import hashlib  # noqa: E402
from contextlib import asynccontextmanager  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402

from repochat.services.embeddings import Embedder  # noqa: E402

DIM = 384


def fake_vector(text: str, dim: int = DIM) -> list[float]:
    """Deterministic non-zero vector derived from the text's hash."""
    digest = hashlib.sha256(text.encode()).digest()
    return [((digest[i % len(digest)] + i) % 17 + 1) / 17.0 for i in range(dim)]


class FakeEmbeddingProvider:
    """Records every call; optionally slow, failing or malformed."""

    name = "Fake"

    def __init__(
        self,
        dim: int = DIM,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.dim = dim
        self.delay = delay
        self.error = error
        self.calls: list[list[str]] = []
        self.active = 0
        self.max_active = 0

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return [fake_vector(t, self.dim) for t in texts]
        finally:
            self.active -= 1


class FakeSessionFactory:
    """Stands in for ``async_sessionmaker``; every session is an AsyncMock."""

    def __init__(self) -> None:
        self.sessions: list[AsyncMock] = []

    @asynccontextmanager
    async def _open(self):
        session = AsyncMock()
        session.add = MagicMock()
        self.sessions.append(session)
        yield session

    def __call__(self):
        return self._open()


@pytest.fixture
def provider_factory() -> type[FakeEmbeddingProvider]:
    """The FakeEmbeddingProvider class, for tests that need custom settings."""
    return FakeEmbeddingProvider


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def embedder(fake_provider: FakeEmbeddingProvider) -> Embedder:
    return Embedder(fake_provider, dimension=DIM, timeout=5.0, batch_size=64)


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()
