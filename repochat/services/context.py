"""
Context Assembly

Builds the grounding document and message list for one question:
    - repository metadata block (file tree, languages, framework, README)
    - ranked chunks, each labelled with rank, path and similarity
    - the last N conversation turns followed by the question

Token counts are estimated as ``ceil(len(text) / 4)``. The estimate is
used only to fit context fragments into the token budget.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Final

from repochat.models.schemas import ConversationTurn, QueryResult, RepositoryMetadata

README_EXCERPT_CHARS: int = 2000
FRAGMENT_SEPARATOR: str = "\n\n---\n\n"

SYSTEM_PROMPT: Final[
    str
] = """You are a helpful assistant that answers questions about the GitHub repository {repository}.
Answer using ONLY the repository context provided below.

Rules:
1. Base your answer on the context. If it does not contain the answer, say so clearly.
2. Never invent files, functions or behaviour that the context does not show.
3. Reference file paths when you rely on a specific chunk.
4. Use Markdown. Put code in fenced blocks with a language tag.
5. Be concise and precise.

Repository context:
{context}
"""


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def truncate_context(fragments: Sequence[str], max_tokens: int) -> list[str]:
    """
    Keep fragments in order while they fit in ``max_tokens``.

    Stops at the first fragment that would exceed the budget. No
    fragment is ever partially included.
    """
    kept: list[str] = []
    total = 0
    for fragment in fragments:
        tokens = estimate_tokens(fragment)
        if total + tokens > max_tokens:
            break
        kept.append(fragment)
        total += tokens
    return kept


def format_metadata_block(name: str, metadata: RepositoryMetadata) -> str:
    """Repository-level section placed ahead of the ranked chunks."""
    lines = [f"Repository: {name}"]
    if metadata.description:
        lines.append(f"Description: {metadata.description}")
    lines.append(f"Languages: {', '.join(metadata.languages) or 'Unknown'}")
    lines.append(f"Framework: {metadata.framework or 'Not detected'}")
    if metadata.file_tree:
        lines.append(f"\nFile tree:\n{metadata.file_tree}")
    if metadata.readme:
        excerpt = metadata.readme[:README_EXCERPT_CHARS]
        if len(metadata.readme) > README_EXCERPT_CHARS:
            excerpt += "\n[...]"
        lines.append(f"\nREADME excerpt:\n{excerpt}")
    return "\n".join(lines)


def format_chunk(rank: int, result: QueryResult) -> str:
    """``[Chunk n] <path> (similarity NN%)`` followed by the chunk text."""
    source = result.file_path or "repository"
    return (
        f"[Chunk {rank}] {source} (similarity {round(result.similarity * 100)}%)\n"
        f"{result.text}"
    )


def build_context_document(
    metadata_block: str,
    results: Sequence[QueryResult],
    token_budget: int,
) -> str:
    """Metadata block plus as many ranked chunks as the budget allows."""
    remaining = max(token_budget - estimate_tokens(metadata_block), 0)
    fragments = [format_chunk(i, result) for i, result in enumerate(results, 1)]
    kept = truncate_context(fragments, remaining)
    return FRAGMENT_SEPARATOR.join([metadata_block, *kept])


def build_system_prompt(repository: str, context: str) -> str:
    return SYSTEM_PROMPT.format(repository=repository, context=context)


def build_messages(
    history: Sequence[ConversationTurn],
    question: str,
    max_turns: int,
) -> list[dict[str, str]]:
    """The last ``max_turns`` turns, oldest first, then the new question."""
    recent = list(history)[-max_turns:] if max_turns > 0 else []
    messages = [{"role": turn.role, "content": turn.content} for turn in recent]
    messages.append({"role": "user", "content": question})
    return messages
