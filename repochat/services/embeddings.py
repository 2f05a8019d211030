"""
Embedding Service

Converts chunk texts and questions into fixed-length vectors.

Providers (selected by ``EMBEDDING_PROVIDER``):
    - local:       sentence-transformers all-MiniLM-L6-v2 (default)
    - huggingface: HF Inference feature-extraction endpoint over httpx
    - openai:      text-embedding-3-small truncated to 384 dimensions

``Embedder`` wraps whichever provider is configured and enforces the
pipeline contract:
    - one vector per input, same order
    - every vector has exactly ``dimension`` components
    - provider failures and timeouts surface as ProviderUnavailableError
    - an empty input list never reaches the provider

Pre-download the local model for production:
    python -c "from sentence_transformers import SentenceTransformer; \\
               SentenceTransformer('sentence-transformers/all-MiniLM-L6-v2')"
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, ClassVar, Protocol

import httpx
from openai import AsyncOpenAI

from repochat.core.config import Settings
from repochat.core.errors import (
    DimensionMismatchError,
    ProviderUnavailableError,
    translate_provider_error,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME: str = "sentence-transformers/all-MiniLM-L6-v2"
EMBEDDING_DIMENSION: int = 384


class EmbeddingProvider(Protocol):
    """Anything that turns a batch of texts into a batch of vectors."""

    name: str

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class SentenceTransformerProvider:
    """
    Local sentence-transformers model, loaded lazily and shared.

    The model is cached as a class-level singleton. Inference is
    CPU-bound and always runs via ``asyncio.to_thread``.
    """

    name = "Local embedding model"

    _model: ClassVar[Any] = None
    _model_name: ClassVar[str | None] = None

    def __init__(self, model_name: str = DEFAULT_MODEL_NAME) -> None:
        self.model_name = model_name

    def _get_model(self) -> Any:
        """
        Get or lazily initialize the sentence-transformers model.

        The import is deferred so that ``sentence_transformers`` is not
        required at module-import time (keeps test collection fast).
        """
        cls = type(self)
        if cls._model is None or cls._model_name != self.model_name:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model: %s ...", self.model_name)
            cls._model = SentenceTransformer(self.model_name)
            cls._model_name = self.model_name
            logger.info(
                "Model loaded (dim=%s)", cls._model.get_sentence_embedding_dimension()
            )
        return cls._model

    def _encode_sync(self, texts: list[str]) -> list[list[float]]:
        """Blocking batch encoding, L2-normalized. Call via ``asyncio.to_thread``."""
        model = self._get_model()
        embeddings = model.encode(texts, normalize_embeddings=True)
        # numpy ndarray → native Python lists for pgvector compatibility
        result: list[list[float]] = embeddings.tolist()
        return result

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return await asyncio.to_thread(self._encode_sync, texts)

    async def warm_up(self) -> None:
        """Load the model ahead of the first request."""
        await asyncio.to_thread(self._get_model)

    @classmethod
    def reset(cls) -> None:
        """Release the model from memory."""
        cls._model = None
        cls._model_name = None
        logger.info("Embedding model released")


class HuggingFaceInferenceProvider:
    """HF Inference API feature-extraction pipeline."""

    name = "Hugging Face"

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        token: str | None = None,
        base_url: str = "https://router.huggingface.co/hf-inference/models",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/{model_name}/pipeline/feature-extraction"
        self._token = token
        self._timeout = timeout
        self._transport = transport

    async def embed(self, texts: list[str]) -> list[list[float]]:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        payload = {"inputs": texts, "options": {"wait_for_model": True}}

        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.post(self._url, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, list):
            raise ProviderUnavailableError(
                f"{self.name} returned an unexpected payload.",
                provider=self.name,
                detail=str(data)[:500],
            )
        return data


class OpenAIEmbeddingProvider:
    """OpenAI embeddings, shortened server-side to the pipeline dimension."""

    name = "OpenAI"

    def __init__(
        self,
        api_key: str | None,
        model_name: str = "text-embedding-3-small",
        dimension: int = EMBEDDING_DIMENSION,
        timeout: float = 60.0,
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key, timeout=timeout)
        self._model_name = model_name
        self._dimension = dimension

    async def embed(self, texts: list[str]) -> list[list[float]]:
        # OpenAI recommends single-line input
        inputs = [text.replace("\n", " ") for text in texts]
        response = await self._client.embeddings.create(
            model=self._model_name,
            input=inputs,
            dimensions=self._dimension,
        )
        return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]


# ---------------------------------------------------------------------------
# Contract-enforcing wrapper
# ---------------------------------------------------------------------------


class Embedder:
    """
    Dimension-checked, timeout-bounded embedding client.

    Usage::

        embedder = Embedder(SentenceTransformerProvider())
        vectors = await embedder.embed_many(["hello", "world"])
        assert len(vectors) == 2 and len(vectors[0]) == 384

    Args:
        provider: Backend that produces raw vectors.
        dimension: Required length of every vector.
        timeout: Seconds allowed per provider call.
        batch_size: Maximum texts sent in one provider call.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        dimension: int = EMBEDDING_DIMENSION,
        timeout: float = 60.0,
        batch_size: int = 64,
    ) -> None:
        self._provider = provider
        self._dimension = dimension
        self._timeout = timeout
        self._batch_size = batch_size

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed_one(self, text: str) -> list[float]:
        """Embed a single text (typically a question)."""
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """
        Embed texts in order, one vector per input.

        Raises:
            DimensionMismatchError: A vector has the wrong length.
            ProviderUnavailableError: The provider failed, timed out,
                or returned the wrong number of vectors.
        """
        if not texts:
            return []

        vectors: list[list[float]] = []
        for offset in range(0, len(texts), self._batch_size):
            batch = texts[offset : offset + self._batch_size]
            result = await self._call_provider(batch)

            if len(result) != len(batch):
                raise ProviderUnavailableError(
                    f"{self._provider.name} returned {len(result)} vectors "
                    f"for {len(batch)} inputs.",
                    provider=self._provider.name,
                )
            for i, vector in enumerate(result):
                if len(vector) != self._dimension:
                    raise DimensionMismatchError(
                        self._dimension, len(vector), index=offset + i
                    )
                vectors.append([float(x) for x in vector])

        logger.debug("Embedded %d texts (dim=%d)", len(vectors), self._dimension)
        return vectors

    async def _call_provider(self, batch: list[str]) -> list[list[float]]:
        try:
            return await asyncio.wait_for(
                self._provider.embed(batch), timeout=self._timeout
            )
        except Exception as exc:
            error = translate_provider_error(exc, self._provider.name)
            logger.warning(
                "Embedding call failed (%s, %s): %s",
                self._provider.name,
                error.category,
                error.detail or error,
            )
            if error is exc:
                raise
            raise error from exc


def build_embedding_provider(config: Settings) -> EmbeddingProvider:
    """Instantiate the provider named by ``EMBEDDING_PROVIDER``."""
    choice = config.EMBEDDING_PROVIDER.lower()
    if choice == "local":
        return SentenceTransformerProvider(config.EMBEDDING_MODEL)
    if choice == "huggingface":
        return HuggingFaceInferenceProvider(
            model_name=config.EMBEDDING_MODEL,
            token=config.HF_TOKEN,
            base_url=config.HF_INFERENCE_URL,
            timeout=config.PROVIDER_TIMEOUT,
        )
    if choice == "openai":
        return OpenAIEmbeddingProvider(
            api_key=config.OPENAI_API_KEY,
            model_name=config.OPENAI_EMBEDDING_MODEL,
            dimension=config.EMBEDDING_DIMENSION,
            timeout=config.PROVIDER_TIMEOUT,
        )
    raise ValueError(f"Unknown EMBEDDING_PROVIDER: {config.EMBEDDING_PROVIDER!r}")


def build_embedder(config: Settings) -> Embedder:
    """Embedder wired from settings."""
    return Embedder(
        build_embedding_provider(config),
        dimension=config.EMBEDDING_DIMENSION,
        timeout=config.PROVIDER_TIMEOUT,
        batch_size=config.EMBEDDING_BATCH_SIZE,
    )
