"""
Question Answering Service

Answers one question about an ingested repository:
    1. Embed the question.
    2. Search the repository's chunks (top-K, similarity floor).
    3. Assemble metadata block + ranked chunks within the token budget.
    4. Build messages from recent history and the question.
    5. Generate and return the answer verbatim.

Refuses repositories that are not ``ready``. A search with no hits
raises NoRelevantContentError, distinct from any provider failure.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession

from repochat.core.errors import (
    NoRelevantContentError,
    RepositoryNotFoundError,
    RepositoryNotReadyError,
)
from repochat.models.orm import RepositoryRecord, RepositoryStatus
from repochat.models.schemas import ConversationTurn, QueryResult, RepositoryMetadata
from repochat.repositories.repos import RepositoryStore
from repochat.repositories.vectors import VectorStore
from repochat.services.context import (
    build_context_document,
    build_messages,
    build_system_prompt,
    format_metadata_block,
)
from repochat.services.embeddings import Embedder
from repochat.services.llm import GenerationService

logger = logging.getLogger(__name__)


class Answer(NamedTuple):
    """Generated answer and the ranked chunks it was grounded on."""

    text: str
    sources: list[QueryResult]


class RetrievalOrchestrator:
    """
    Retrieval-augmented answering for one repository at a time.

    Takes no locks: ingestion's ``replace_all`` is the only writer and
    swaps chunks in a single transaction.

    Args:
        embedder: Embeds the question.
        vector_store: Repository-scoped similarity search.
        repo_store: Reads status and metadata.
        generator: Produces the answer.
        top_k: Chunks retrieved per question.
        min_similarity: Similarity floor passed to search.
        history_turns: Prior turns kept in the message list.
        context_token_budget: Token budget for the context document.
        max_response_tokens: Output cap passed to the generator.
        temperature: Sampling temperature passed to the generator.
    """

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        repo_store: RepositoryStore,
        generator: GenerationService,
        *,
        top_k: int = 10,
        min_similarity: float = 0.0,
        history_turns: int = 10,
        context_token_budget: int = 16000,
        max_response_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> None:
        self._embedder = embedder
        self._vector_store = vector_store
        self._repo_store = repo_store
        self._generator = generator
        self._top_k = top_k
        self._min_similarity = min_similarity
        self._history_turns = history_turns
        self._context_token_budget = context_token_budget
        self._max_response_tokens = max_response_tokens
        self._temperature = temperature

    async def answer_question(
        self,
        session: AsyncSession,
        repository_id: str,
        question: str,
        recent_history: Sequence[ConversationTurn] = (),
    ) -> str:
        """Answer text only. See ``answer_question_with_sources``."""
        answer = await self.answer_question_with_sources(
            session, repository_id, question, recent_history
        )
        return answer.text

    async def answer_question_with_sources(
        self,
        session: AsyncSession,
        repository_id: str,
        question: str,
        recent_history: Sequence[ConversationTurn] = (),
    ) -> Answer:
        """
        Answer a question grounded in the repository's chunks.

        Raises:
            RepositoryNotFoundError: Unknown repository id.
            RepositoryNotReadyError: Status is processing or error.
            NoRelevantContentError: Search returned no chunks.
            ProviderUnavailableError: Embedding or generation failed
                (AuthError / QuotaExceededError for those categories).
        """
        record = await self._repo_store.read(session, repository_id)
        if record is None:
            raise RepositoryNotFoundError(repository_id)
        if record.status != RepositoryStatus.READY:
            raise RepositoryNotReadyError(repository_id, record.status, record.error)

        query_vector = await self._embedder.embed_one(question)
        results = await self._vector_store.search(
            session,
            repository_id,
            query_vector,
            k=self._top_k,
            min_similarity=self._min_similarity,
        )
        if not results:
            raise NoRelevantContentError(repository_id)

        logger.info(
            "Retrieved %d chunks for %s (top similarity=%.3f)",
            len(results),
            record.full_name,
            results[0].similarity,
        )

        metadata_block = format_metadata_block(record.full_name, _metadata_of(record))
        context = build_context_document(
            metadata_block, results, self._context_token_budget
        )
        system = build_system_prompt(record.full_name, context)
        messages = build_messages(recent_history, question, self._history_turns)

        text = await self._generator.generate(
            system,
            messages,
            self._max_response_tokens,
            self._temperature,
        )
        return Answer(text=text, sources=results)


def _metadata_of(record: RepositoryRecord) -> RepositoryMetadata:
    return RepositoryMetadata(
        file_tree=record.file_tree or "",
        languages=record.languages or [],
        framework=record.framework,
        readme=record.readme,
        description=record.description,
        default_branch=record.default_branch,
    )
