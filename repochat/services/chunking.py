"""
Chunking Service

Splits repository content into overlapping Chunks suitable for
embedding and vector retrieval.

Splitting is done by ``BoundaryTextSplitter``, a LangChain TextSplitter
that keeps the overlap exact: consecutive pieces share precisely
``chunk_overlap`` characters, so the original text can always be
rebuilt from the pieces. Cuts prefer paragraph > line > sentence > word
boundaries in the second half of the window, then fall back to a hard
character cut.

Defaults (2000 / 400 characters) size chunks for whole source-code
sections rather than prose sentences.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from langchain_text_splitters import TextSplitter

from repochat.models.schemas import Chunk, SourceFile
from repochat.services.metadata import (
    README_IMPORTANCE,
    classify_file_type,
    importance_for,
    is_root_readme,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE: int = 2000
DEFAULT_CHUNK_OVERLAP: int = 400

DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", " ")


class BoundaryTextSplitter(TextSplitter):
    """
    Boundary-aware splitter with exact overlap.

    For every piece except the last, the cut is placed just after the
    last separator found in ``(start + max(overlap + 1, size // 2), start + size]``,
    trying separators in priority order. The next piece starts
    ``chunk_overlap`` characters before the cut.

    Guarantees:
        - every piece is at most ``chunk_size`` characters
        - consecutive pieces overlap by exactly ``chunk_overlap`` characters
        - ``pieces[0] + "".join(p[overlap:] for p in pieces[1:]) == text``
        - empty input yields ``[]``
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        separators: Sequence[str] = DEFAULT_SEPARATORS,
        **kwargs: Any,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be less than "
                f"chunk_size ({chunk_size})"
            )
        if chunk_overlap < 0:
            raise ValueError(f"chunk_overlap ({chunk_overlap}) must be >= 0")
        super().__init__(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            strip_whitespace=False,
            **kwargs,
        )
        self._separators = tuple(separators)

    def split_text(self, text: str) -> list[str]:
        size = self._chunk_size
        overlap = self._chunk_overlap

        pieces: list[str] = []
        start = 0
        while start < len(text):
            if len(text) - start <= size:
                pieces.append(text[start:])
                break
            low = start + max(overlap + 1, size // 2)
            end = self._find_cut(text, low, start + size)
            pieces.append(text[start:end])
            start = end - overlap
        return pieces

    def _find_cut(self, text: str, low: int, high: int) -> int:
        """Index just past the best separator in [low, high), else ``high``."""
        for separator in self._separators:
            idx = text.rfind(separator, low, high)
            if idx != -1:
                return idx + len(separator)
        return high


def split(text: str, max_size: int, overlap: int) -> list[str]:
    """Split ``text`` into pieces of at most ``max_size`` overlapping by ``overlap``."""
    return BoundaryTextSplitter(chunk_size=max_size, chunk_overlap=overlap).split_text(
        text
    )


class TextChunker:
    """
    Turns README and source files into tagged Chunks.

    Each chunk's text is prefixed with a ``File: <path>`` header line.
    The README is chunked first with the highest importance; every other
    file gets its type and importance from the path rule tables.

    Usage::

        chunker = TextChunker()
        chunks = chunker.chunk_repository(readme, files)
        # Each chunk has: text, file_path, file_type, importance

    Args:
        chunk_size: Maximum characters per piece (before the header).
        chunk_overlap: Characters shared between consecutive pieces.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        self._splitter = BoundaryTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
        )
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap

    @property
    def chunk_size(self) -> int:
        """Maximum characters per piece."""
        return self._chunk_size

    @property
    def chunk_overlap(self) -> int:
        """Characters shared between consecutive pieces."""
        return self._chunk_overlap

    def split(self, text: str) -> list[str]:
        """Split raw text with this chunker's size and overlap."""
        return self._splitter.split_text(text)

    def chunk_with_metadata(
        self,
        content: str,
        file_path: str,
        file_type: str,
        importance: float,
    ) -> list[Chunk]:
        """
        Split one file's content into self-describing Chunks.

        Returns:
            Chunks whose text is ``File: <path>\\n<piece>``.
            Empty content returns an empty list.
        """
        return [
            Chunk(
                text=f"File: {file_path}\n{piece}",
                file_path=file_path,
                file_type=file_type,
                importance=importance,
            )
            for piece in self.split(content)
        ]

    def chunk_repository(
        self,
        readme: str | None,
        files: Sequence[SourceFile],
        readme_path: str = "README.md",
    ) -> list[Chunk]:
        """
        Chunk the README and every file into one flat ordered sequence.

        ``readme_path`` is the variant the README was found at and names
        its chunks. A root README present in ``files`` is skipped when
        ``readme`` was fetched separately, so it is not chunked twice.
        """
        chunks: list[Chunk] = []

        if readme:
            chunks.extend(
                self.chunk_with_metadata(
                    readme, readme_path, "documentation", README_IMPORTANCE
                )
            )

        for source in files:
            if readme is not None and is_root_readme(source.path):
                continue
            chunks.extend(
                self.chunk_with_metadata(
                    source.content,
                    source.path,
                    classify_file_type(source.path),
                    importance_for(source.path),
                )
            )

        logger.info(
            "Chunked %d files%s into %d chunks (size=%d, overlap=%d)",
            len(files),
            " + README" if readme else "",
            len(chunks),
            self._chunk_size,
            self._chunk_overlap,
        )
        return chunks
