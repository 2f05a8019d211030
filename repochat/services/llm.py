"""
LLM Service

Text generation for the retrieval pipeline.

Backends (selected by ``GENERATION_PROVIDER``):
    - ollama: local models via the Ollama ``/api/chat`` endpoint (default)
    - openai: chat completions through the ``openai`` SDK

``GenerationService`` is the single boundary where backend failures
are translated into AuthError / QuotaExceededError /
ProviderUnavailableError. The raw provider message is logged and kept
on ``exc.detail``. It is never part of ``str(exc)``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx
from openai import AsyncOpenAI

from repochat.core.config import Settings
from repochat.core.errors import ProviderUnavailableError, translate_provider_error

logger = logging.getLogger(__name__)

Message = dict[str, str]


class GenerationBackend(Protocol):
    """A chat model reachable over the network."""

    name: str

    async def complete(
        self,
        system: str,
        messages: list[Message],
        max_output_tokens: int,
        temperature: float,
    ) -> str: ...


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class OllamaBackend:
    """
    Ollama chat endpoint over httpx.

    Usage::

        backend = OllamaBackend("http://localhost:11434", "mistral")
        text = await backend.complete(system, messages, 512, 0.2)
    """

    name = "Ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "mistral",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._transport = transport

    async def complete(
        self,
        system: str,
        messages: list[Message],
        max_output_tokens: int,
        temperature: float,
    ) -> str:
        payload = {
            "model": self._model,
            "messages": [{"role": "system", "content": system}, *messages],
            "stream": False,
            "options": {
                "num_predict": max_output_tokens,
                "temperature": temperature,
            },
        }

        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.post(f"{self._base_url}/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()

        content: str = (data.get("message") or {}).get("content", "")
        logger.info(
            "Ollama response generated (model=%s, length=%d)",
            self._model,
            len(content),
        )
        return content

    async def health_check(self) -> bool:
        """True if the Ollama server answers ``/api/tags``."""
        try:
            async with httpx.AsyncClient(
                timeout=5.0, transport=self._transport
            ) as client:
                response = await client.get(f"{self._base_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False


class OpenAIBackend:
    """OpenAI chat completions."""

    name = "OpenAI"

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        timeout: float = 60.0,
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key, timeout=timeout)
        self._model = model

    async def complete(
        self,
        system: str,
        messages: list[Message],
        max_output_tokens: int,
        temperature: float,
    ) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=[{"role": "system", "content": system}, *messages],  # type: ignore[list-item]
            max_tokens=max_output_tokens,
            temperature=temperature,
        )
        content = response.choices[0].message.content or ""
        logger.info(
            "OpenAI response generated (model=%s, length=%d)",
            self._model,
            len(content),
        )
        return content


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class GenerationService:
    """
    Timeout-bounded, error-translating wrapper around a backend.

    Usage::

        service = GenerationService(OllamaBackend())
        answer = await service.generate(system, messages, 2048, 0.7)

    Args:
        backend: Chat model to call.
        timeout: Seconds allowed per call.
    """

    def __init__(self, backend: GenerationBackend, timeout: float = 60.0) -> None:
        self._backend = backend
        self._timeout = timeout

    @property
    def backend(self) -> GenerationBackend:
        return self._backend

    async def generate(
        self,
        system: str,
        messages: list[Message],
        max_output_tokens: int,
        temperature: float,
    ) -> str:
        """
        Generate a reply to ``messages`` under ``system`` instructions.

        Returns:
            The model's text, verbatim.

        Raises:
            AuthError: Credentials rejected.
            QuotaExceededError: Quota or rate limit exhausted.
            ProviderUnavailableError: Any other failure, timeout, or an
                empty reply.
        """
        try:
            content = await asyncio.wait_for(
                self._backend.complete(
                    system, messages, max_output_tokens, temperature
                ),
                timeout=self._timeout,
            )
        except Exception as exc:
            error = translate_provider_error(exc, self._backend.name)
            logger.error(
                "Generation failed (%s, %s): %s",
                self._backend.name,
                error.category,
                error.detail or error,
            )
            if error is exc:
                raise
            raise error from exc

        if not content.strip():
            raise ProviderUnavailableError(
                f"{self._backend.name} returned an empty response. "
                "Please try again later.",
                provider=self._backend.name,
            )
        return content


def build_generation_backend(config: Settings) -> GenerationBackend:
    """Instantiate the backend named by ``GENERATION_PROVIDER``."""
    choice = config.GENERATION_PROVIDER.lower()
    if choice == "ollama":
        return OllamaBackend(
            base_url=config.OLLAMA_BASE_URL,
            model=config.OLLAMA_MODEL,
            timeout=config.PROVIDER_TIMEOUT,
        )
    if choice == "openai":
        return OpenAIBackend(
            api_key=config.OPENAI_API_KEY,
            model=config.OPENAI_MODEL,
            timeout=config.PROVIDER_TIMEOUT,
        )
    raise ValueError(
        f"Unknown GENERATION_PROVIDER: {config.GENERATION_PROVIDER!r}"
    )
