"""
LLM Service Unit Tests

Ollama payload shape over a mocked transport, and GenerationService
error translation: auth, quota, timeout, unknown and empty replies.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from repochat.core.errors import (
    AuthError,
    ErrorCategory,
    ProviderUnavailableError,
    QuotaExceededError,
)
from repochat.services.llm import GenerationService, OllamaBackend


class _FailingBackend:
    name = "OpenAI"

    def __init__(self, error: Exception) -> None:
        self.error = error

    async def complete(self, system, messages, max_output_tokens, temperature) -> str:
        raise self.error


class _StaticBackend:
    name = "Static"

    def __init__(self, reply: str, delay: float = 0.0) -> None:
        self.reply = reply
        self.delay = delay

    async def complete(self, system, messages, max_output_tokens, temperature) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.reply


# ---------------------------------------------------------------------------
# Ollama backend
# ---------------------------------------------------------------------------


class TestOllamaBackend:
    @pytest.mark.asyncio
    async def test_posts_chat_payload(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"message": {"role": "assistant", "content": "It uses Vite."}}
            )

        backend = OllamaBackend(
            "http://ollama.test:11434/",
            "mistral",
            transport=httpx.MockTransport(handler),
        )

        reply = await backend.complete(
            "SYSTEM", [{"role": "user", "content": "Which bundler?"}], 256, 0.2
        )

        assert reply == "It uses Vite."
        assert seen["url"] == "http://ollama.test:11434/api/chat"
        body = seen["body"]
        assert body["model"] == "mistral"
        assert body["stream"] is False
        assert body["messages"][0] == {"role": "system", "content": "SYSTEM"}
        assert body["messages"][1] == {"role": "user", "content": "Which bundler?"}
        assert body["options"] == {"num_predict": 256, "temperature": 0.2}

    @pytest.mark.asyncio
    async def test_unauthorized_becomes_auth_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="nope"))
        service = GenerationService(OllamaBackend(transport=transport))

        with pytest.raises(AuthError):
            await service.generate("s", [{"role": "user", "content": "q"}], 10, 0.0)

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        up = OllamaBackend(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        down = OllamaBackend(transport=httpx.MockTransport(lambda r: httpx.Response(500)))

        assert await up.health_check() is True
        assert await down.health_check() is False


# ---------------------------------------------------------------------------
# GenerationService error translation
# ---------------------------------------------------------------------------


class TestGenerationService:
    @pytest.mark.asyncio
    async def test_returns_reply_verbatim(self) -> None:
        service = GenerationService(_StaticBackend("  **Answer**\n"))

        assert await service.generate("s", [], 10, 0.0) == "  **Answer**\n"

    @pytest.mark.asyncio
    async def test_quota_message_translated_and_kept_out_of_str(self) -> None:
        raw = "You exceeded your current quota, please check your plan and billing details."
        service = GenerationService(_FailingBackend(RuntimeError(raw)))

        with pytest.raises(QuotaExceededError) as exc_info:
            await service.generate("s", [], 10, 0.0)

        error = exc_info.value
        assert error.category is ErrorCategory.QUOTA
        assert error.provider == "OpenAI"
        assert error.detail == raw
        assert raw not in str(error)
        assert "quota" in str(error).lower()

    @pytest.mark.asyncio
    async def test_invalid_key_translated(self) -> None:
        service = GenerationService(_FailingBackend(RuntimeError("Invalid API key provided")))

        with pytest.raises(AuthError) as exc_info:
            await service.generate("s", [], 10, 0.0)

        assert exc_info.value.category is ErrorCategory.AUTH

    @pytest.mark.asyncio
    async def test_other_failures_are_unknown(self) -> None:
        service = GenerationService(_FailingBackend(ConnectionError("connection reset")))

        with pytest.raises(ProviderUnavailableError) as exc_info:
            await service.generate("s", [], 10, 0.0)

        error = exc_info.value
        assert type(error) is ProviderUnavailableError
        assert error.category is ErrorCategory.UNKNOWN
        assert "connection reset" not in str(error)

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        service = GenerationService(_StaticBackend("late", delay=1.0), timeout=0.01)

        with pytest.raises(ProviderUnavailableError, match="did not respond in time"):
            await service.generate("s", [], 10, 0.0)

    @pytest.mark.asyncio
    async def test_empty_reply_rejected(self) -> None:
        service = GenerationService(_StaticBackend("   "))

        with pytest.raises(ProviderUnavailableError, match="empty response"):
            await service.generate("s", [], 10, 0.0)

    @pytest.mark.asyncio
    async def test_already_translated_error_passes_through(self) -> None:
        original = QuotaExceededError("quota", provider="OpenAI", detail="raw")
        service = GenerationService(_FailingBackend(original))

        with pytest.raises(QuotaExceededError) as exc_info:
            await service.generate("s", [], 10, 0.0)

        assert exc_info.value is original
