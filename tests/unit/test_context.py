"""
Context Assembly Unit Tests

Token estimation, budget truncation, chunk labelling, context document
layout and the conversation window.
"""

from __future__ import annotations

from repochat.models.schemas import ConversationTurn, QueryResult, RepositoryMetadata
from repochat.services.context import (
    FRAGMENT_SEPARATOR,
    README_EXCERPT_CHARS,
    build_context_document,
    build_messages,
    build_system_prompt,
    estimate_tokens,
    format_chunk,
    format_metadata_block,
    truncate_context,
)


def _result(index: int, similarity: float, text: str = "body") -> QueryResult:
    return QueryResult(
        text=text, file_path=f"src/f{index}.ts", similarity=similarity, chunk_index=index
    )


class TestEstimateTokens:
    def test_rounds_up(self) -> None:
        assert estimate_tokens("") == 0
        assert estimate_tokens("abc") == 1
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2


class TestTruncateContext:
    def test_keeps_everything_within_budget(self) -> None:
        fragments = ["a" * 40, "b" * 40]

        assert truncate_context(fragments, 20) == fragments

    def test_stops_at_first_overflow(self) -> None:
        # 10 + 30 + 5 tokens against a budget of 20
        fragments = ["a" * 40, "b" * 120, "c" * 20]

        assert truncate_context(fragments, 20) == ["a" * 40]

    def test_zero_budget(self) -> None:
        assert truncate_context(["abcd"], 0) == []


class TestFormatting:
    def test_chunk_label(self) -> None:
        label = format_chunk(2, _result(7, 0.8149, "const x = 1;"))

        assert label == "[Chunk 2] src/f7.ts (similarity 81%)\nconst x = 1;"

    def test_metadata_block(self) -> None:
        metadata = RepositoryMetadata(
            file_tree="└── src",
            languages=["TypeScript", "Python"],
            framework="Vite",
            readme="# Hello",
            description="Widgets",
        )

        block = format_metadata_block("acme/widgets", metadata)

        assert block.startswith("Repository: acme/widgets")
        assert "Description: Widgets" in block
        assert "Languages: TypeScript, Python" in block
        assert "Framework: Vite" in block
        assert "└── src" in block
        assert "# Hello" in block

    def test_metadata_block_defaults(self) -> None:
        block = format_metadata_block("acme/empty", RepositoryMetadata())

        assert "Languages: Unknown" in block
        assert "Framework: Not detected" in block
        assert "README" not in block

    def test_long_readme_excerpted(self) -> None:
        metadata = RepositoryMetadata(readme="r" * (README_EXCERPT_CHARS + 500))

        block = format_metadata_block("acme/widgets", metadata)

        assert "r" * README_EXCERPT_CHARS + "\n[...]" in block
        assert "r" * (README_EXCERPT_CHARS + 1) not in block


class TestContextDocument:
    def test_chunks_follow_metadata_in_rank_order(self) -> None:
        results = [_result(3, 0.81, "first"), _result(1, 0.77, "second")]

        document = build_context_document("Repository: acme/widgets", results, 4000)

        parts = document.split(FRAGMENT_SEPARATOR)
        assert parts[0] == "Repository: acme/widgets"
        assert parts[1].startswith("[Chunk 1] src/f3.ts (similarity 81%)")
        assert parts[2].startswith("[Chunk 2] src/f1.ts (similarity 77%)")

    def test_budget_drops_trailing_chunks(self) -> None:
        results = [_result(0, 0.9, "x" * 100), _result(1, 0.8, "y" * 4000)]

        document = build_context_document("meta", results, 100)

        assert "[Chunk 1]" in document
        assert "[Chunk 2]" not in document

    def test_system_prompt_embeds_context(self) -> None:
        prompt = build_system_prompt("acme/widgets", "CONTEXT-BODY")

        assert "acme/widgets" in prompt
        assert "CONTEXT-BODY" in prompt


class TestBuildMessages:
    def test_window_keeps_most_recent_turns(self) -> None:
        history = [
            ConversationTurn(role="user" if i % 2 == 0 else "assistant", content=f"m{i}")
            for i in range(14)
        ]

        messages = build_messages(history, "question?", max_turns=10)

        assert len(messages) == 11
        assert messages[0]["content"] == "m4"
        assert messages[-1] == {"role": "user", "content": "question?"}

    def test_no_history(self) -> None:
        assert build_messages([], "hi", max_turns=10) == [{"role": "user", "content": "hi"}]

    def test_zero_window_ignores_history(self) -> None:
        history = [ConversationTurn(role="user", content="old")]

        assert build_messages(history, "new", max_turns=0) == [
            {"role": "user", "content": "new"}
        ]
