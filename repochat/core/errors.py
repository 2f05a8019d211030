"""
RepoChat Error Taxonomy

Typed failures raised by the ingestion and retrieval pipeline.

Provider-specific error shapes (httpx status errors, OpenAI SDK errors,
timeouts) are translated exactly once, at the provider boundary, by
``translate_provider_error``. Everything above that boundary works with
the classes defined here.

``str(exc)`` is always safe to show to an end user. The raw provider
message, when there is one, is kept in ``exc.detail`` for logs.
"""

from __future__ import annotations

from enum import StrEnum

import httpx


class ErrorCategory(StrEnum):
    """User-facing category of a provider failure."""

    AUTH = "auth"
    QUOTA = "quota"
    UNKNOWN = "unknown"


class RepoChatError(Exception):
    """Base class for every pipeline failure."""

    error_code: str = "repochat_error"


# ---------------------------------------------------------------------------
# Provider failures (embedding + generation)
# ---------------------------------------------------------------------------


class DimensionMismatchError(RepoChatError):
    """Embedding provider returned a vector of the wrong length."""

    error_code = "dimension_mismatch"

    def __init__(self, expected: int, actual: int, index: int | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.index = index
        where = f" for input {index}" if index is not None else ""
        super().__init__(
            f"Expected embedding dimension {expected}{where}, got {actual}"
        )


class ProviderUnavailableError(RepoChatError):
    """
    An external provider call failed (network, auth, quota, timeout).

    Attributes:
        provider: Human-readable provider name ("Ollama", "OpenAI", ...).
        detail: Raw provider message, for logs only.
        category: User-facing category of the failure.
    """

    error_code = "provider_unavailable"
    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        provider: str = "provider",
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.detail = detail


class AuthError(ProviderUnavailableError):
    """Provider rejected the configured credentials."""

    error_code = "auth_error"
    category = ErrorCategory.AUTH


class QuotaExceededError(ProviderUnavailableError):
    """Provider quota or rate limit exhausted."""

    error_code = "quota_exceeded"
    category = ErrorCategory.QUOTA


# ---------------------------------------------------------------------------
# Repository state
# ---------------------------------------------------------------------------


class RepositoryNotFoundError(RepoChatError):
    """No repository row exists for the given id."""

    error_code = "repository_not_found"

    def __init__(self, repository_id: str) -> None:
        self.repository_id = repository_id
        super().__init__(f"Repository {repository_id} not found")


class RepositoryNotReadyError(RepoChatError):
    """Retrieval attempted before ingestion finished, or after it failed."""

    error_code = "repository_not_ready"

    def __init__(
        self,
        repository_id: str,
        status: str,
        reason: str | None = None,
    ) -> None:
        self.repository_id = repository_id
        self.status = status
        self.reason = reason
        if status == "processing":
            message = "Repository is still processing. Please try again shortly."
        else:
            message = f"Repository ingestion failed: {reason or 'unknown error'}"
        super().__init__(message)


class NoRelevantContentError(RepoChatError):
    """Search returned zero rows for an ingested repository."""

    error_code = "no_relevant_content"

    def __init__(self, repository_id: str) -> None:
        self.repository_id = repository_id
        super().__init__(
            "No relevant sections of this repository matched the question."
        )


# ---------------------------------------------------------------------------
# Source (GitHub) failures
# ---------------------------------------------------------------------------


class SourceFetchError(RepoChatError):
    """Upstream content provider failed."""

    error_code = "source_fetch_failed"


class SourceNotFoundError(SourceFetchError):
    error_code = "source_not_found"


class SourceRateLimitedError(SourceFetchError):
    error_code = "source_rate_limited"


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------

_AUTH_MARKERS = (
    "api key",
    "api_key",
    "unauthorized",
    "authentication",
    "invalid token",
    "permission denied",
)
_QUOTA_MARKERS = (
    "quota",
    "rate limit",
    "rate_limit",
    "too many requests",
    "resource exhausted",
    "resource_exhausted",
)


def classify_provider_error(
    message: str,
    status_code: int | None = None,
) -> ErrorCategory:
    """Map a raw provider message (and HTTP status, if any) to a category."""
    if status_code in (401, 403):
        return ErrorCategory.AUTH
    if status_code == 429:
        return ErrorCategory.QUOTA

    lowered = message.lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return ErrorCategory.AUTH
    if any(marker in lowered for marker in _QUOTA_MARKERS):
        return ErrorCategory.QUOTA
    return ErrorCategory.UNKNOWN


def _status_code_of(exc: BaseException) -> int | None:
    """Extract an HTTP status from httpx / OpenAI SDK exceptions."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def translate_provider_error(
    exc: BaseException,
    provider: str,
) -> ProviderUnavailableError:
    """
    Translate any provider exception into the pipeline taxonomy.

    Already-translated errors pass through unchanged so that nested
    boundaries never re-interpret a failure.
    """
    if isinstance(exc, ProviderUnavailableError):
        return exc

    detail = str(exc) or type(exc).__name__

    if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
        return ProviderUnavailableError(
            f"{provider} did not respond in time. Please try again later.",
            provider=provider,
            detail=detail,
        )

    category = classify_provider_error(detail, _status_code_of(exc))
    if category is ErrorCategory.AUTH:
        return AuthError(
            f"{provider} rejected the configured credentials. "
            "Please check the API key.",
            provider=provider,
            detail=detail,
        )
    if category is ErrorCategory.QUOTA:
        return QuotaExceededError(
            f"{provider} quota exceeded. Please check your usage limits "
            "or try again later.",
            provider=provider,
            detail=detail,
        )
    return ProviderUnavailableError(
        f"{provider} is currently unavailable. Please try again later.",
        provider=provider,
        detail=detail,
    )
