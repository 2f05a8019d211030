"""
Repository Metadata Rules

Heuristic classification of repository paths:
    - file type and importance for each chunked file
    - human-readable language names from extensions
    - a single framework label from marker files
    - a prefix-drawn file tree for the context document

Every rule table is a plain ordered list of ``(pattern, label)`` pairs.
Rules are evaluated top to bottom and the first match wins.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections.abc import Iterable, Sequence

from repochat.models.schemas import RepositoryInfo, RepositoryMetadata, SourceFile

logger = logging.getLogger(__name__)

README_IMPORTANCE: float = 1.0
DEFAULT_IMPORTANCE: float = 0.5

README_NAMES: tuple[str, ...] = ("README.md", "readme.md", "Readme.md", "README.txt")

# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------

_TEST = re.compile(
    r"(^|/)(tests?|__tests__|specs?)/|(^|/)test_[^/]+$|[._-](test|spec)\.\w+$",
    re.IGNORECASE,
)
_README = re.compile(r"(^|/)readme(\.\w+)?$", re.IGNORECASE)
_API = re.compile(r"(^|/)(api|routes?|endpoints?|controllers?)/", re.IGNORECASE)
_MANIFEST = re.compile(
    r"(^|/)(package\.json|pyproject\.toml|requirements\.txt|Cargo\.toml"
    r"|tsconfig\.json|[\w.-]+\.config\.(js|mjs|cjs|ts))$",
    re.IGNORECASE,
)
_COMPONENT = re.compile(r"(^|/)components?/|\.(tsx|jsx)$", re.IGNORECASE)
_LIBRARY = re.compile(r"(^|/)(lib|libs|utils?|helpers?|pkg|internal)/", re.IGNORECASE)
_SOURCE = re.compile(r"(^|/)(src|app)/", re.IGNORECASE)
_DOCS = re.compile(r"(^|/)docs?/|\.(md|txt|rst)$", re.IGNORECASE)
_CONFIG = re.compile(
    r"\.(json|ya?ml|toml|ini)$|(^|/)[\w.-]+\.config\.\w+$", re.IGNORECASE
)

FILE_TYPE_RULES: list[tuple[re.Pattern[str], str]] = [
    (_TEST, "test"),
    (_DOCS, "documentation"),
    (_CONFIG, "config"),
    (_API, "api"),
    (_COMPONENT, "component"),
    (_LIBRARY, "library"),
]

IMPORTANCE_RULES: list[tuple[re.Pattern[str], float]] = [
    (_README, README_IMPORTANCE),
    (_TEST, 0.3),
    (_API, 0.9),
    (_MANIFEST, 0.8),
    (_COMPONENT, 0.7),
    (_LIBRARY, 0.7),
    (_SOURCE, 0.6),
    (_DOCS, 0.6),
]

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    ".py": "Python",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".go": "Go",
    ".java": "Java",
    ".rs": "Rust",
    ".cpp": "C++",
    ".c": "C",
    ".h": "C",
    ".html": "HTML",
    ".css": "CSS",
    ".scss": "SCSS",
    ".sql": "SQL",
    ".sh": "Shell",
    ".bash": "Shell",
}

FRAMEWORK_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(^|/)next\.config\.\w+$"), "Next.js"),
    (re.compile(r"(^|/)nuxt\.config\.\w+$"), "Nuxt"),
    (re.compile(r"(^|/)angular\.json$"), "Angular"),
    (re.compile(r"(^|/)svelte\.config\.\w+$"), "SvelteKit"),
    (re.compile(r"(^|/)astro\.config\.\w+$"), "Astro"),
    (re.compile(r"(^|/)gatsby-config\.\w+$"), "Gatsby"),
    (re.compile(r"(^|/)vite\.config\.\w+$"), "Vite"),
    (re.compile(r"(^|/)manage\.py$"), "Django"),
    (re.compile(r"(^|/)Cargo\.toml$"), "Rust (Cargo)"),
    (re.compile(r"(^|/)(pyproject\.toml|requirements\.txt)$"), "Python"),
    (re.compile(r"(^|/)package\.json$"), "Node.js"),
]


# ---------------------------------------------------------------------------
# Per-file classification
# ---------------------------------------------------------------------------


def classify_file_type(path: str) -> str:
    """Coarse file type tag, ``code`` when no rule matches."""
    for pattern, label in FILE_TYPE_RULES:
        if pattern.search(path):
            return label
    return "code"


def importance_for(path: str) -> float:
    """Importance score in (0, 1] used to tag chunks of ``path``."""
    for pattern, score in IMPORTANCE_RULES:
        if pattern.search(path):
            return score
    return DEFAULT_IMPORTANCE


def is_root_readme(path: str) -> bool:
    """True for the README variants fetched separately from the listing."""
    return path in README_NAMES


# ---------------------------------------------------------------------------
# Repository-level derivation
# ---------------------------------------------------------------------------


def detect_languages(paths: Iterable[str]) -> list[str]:
    """Deduplicated language names, in first-seen order."""
    languages: list[str] = []
    for path in paths:
        _, ext = posixpath.splitext(path)
        language = LANGUAGE_BY_EXTENSION.get(ext.lower())
        if language and language not in languages:
            languages.append(language)
    return languages


def detect_framework(paths: Sequence[str]) -> str | None:
    """Framework label of the first rule with a matching path, else None."""
    for pattern, label in FRAMEWORK_RULES:
        if any(pattern.search(path) for path in paths):
            return label
    return None


def render_file_tree(paths: Iterable[str]) -> str:
    """
    Render paths as a prefix-drawn tree, preserving listing order.

    Example::

        ├── README.md
        └── src
            ├── a.ts
            └── b.ts
    """
    root: dict[str, dict] = {}
    for path in paths:
        node = root
        for part in path.strip("/").split("/"):
            if part:
                node = node.setdefault(part, {})

    lines: list[str] = []

    def _walk(node: dict[str, dict], prefix: str) -> None:
        entries = list(node.items())
        for i, (name, children) in enumerate(entries):
            last = i == len(entries) - 1
            lines.append(f"{prefix}{'└── ' if last else '├── '}{name}")
            if children:
                _walk(children, prefix + ("    " if last else "│   "))

    _walk(root, "")
    return "\n".join(lines)


def derive_repository_metadata(
    files: Sequence[SourceFile],
    readme: str | None,
    info: RepositoryInfo | None = None,
) -> RepositoryMetadata:
    """Build the metadata written onto the repository row after ingestion."""
    paths = [f.path for f in files]
    metadata = RepositoryMetadata(
        file_tree=render_file_tree(paths),
        languages=detect_languages(paths),
        framework=detect_framework(paths),
        readme=readme,
        description=info.description if info else None,
        default_branch=info.default_branch if info else None,
    )
    logger.debug(
        "Derived metadata: %d paths, languages=%s, framework=%s",
        len(paths),
        metadata.languages,
        metadata.framework,
    )
    return metadata
