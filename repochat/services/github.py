"""
GitHub Source Service

Fetches public repository content over the GitHub REST API and
raw.githubusercontent.com using httpx.

Bounds:
    - at most ``max_files`` allow-listed blobs, first N in tree order
    - blobs larger than ``max_file_bytes`` are skipped
    - a short pause every 10 fetched files to stay under rate limits

Failures are reported distinctly: SourceNotFoundError (404),
SourceRateLimitedError (rate limit), SourceFetchError (anything else).
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import httpx

from repochat.core.errors import (
    SourceFetchError,
    SourceNotFoundError,
    SourceRateLimitedError,
)
from repochat.models.schemas import RepositoryInfo, SourceFile
from repochat.services.metadata import README_NAMES

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS: tuple[str, ...] = (
    ".md", ".txt",
    ".js", ".ts", ".tsx", ".jsx",
    ".py", ".go", ".java",
    ".rs", ".cpp", ".c", ".h",
    ".json", ".yaml", ".yml", ".toml",
    ".html", ".css", ".scss",
    ".sql", ".sh", ".bash",
)  # fmt: skip

PAUSE_EVERY: int = 10

_GITHUB_URL = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/"
    r"(?P<owner>[A-Za-z0-9][A-Za-z0-9-]*)/(?P<repo>[A-Za-z0-9._-]+?)"
    r"(?:\.git)?/?(?:[#?].*)?$"
)


def parse_github_url(url: str) -> tuple[str, str]:
    """
    Extract ``(owner, repo)`` from a GitHub repository URL.

    Raises:
        ValueError: The URL does not point at a GitHub repository.
    """
    match = _GITHUB_URL.match(url.strip())
    if match is None:
        raise ValueError(f"Not a GitHub repository URL: {url}")
    return match["owner"], match["repo"]


def is_supported_file(path: str) -> bool:
    return path.lower().endswith(SUPPORTED_EXTENSIONS)


class GitHubSource:
    """
    Async client for public GitHub repositories.

    Usage::

        source = GitHubSource(token=settings.GITHUB_TOKEN)
        info = await source.fetch_repository_info("acme", "widgets")
        readme = await source.fetch_readme("acme", "widgets", info.default_branch)
        files = await source.list_text_files("acme", "widgets", info.default_branch)

    Args:
        token: Optional personal access token for higher rate limits.
        max_files: Maximum number of files returned by ``list_text_files``.
        max_file_bytes: Blobs larger than this are skipped.
        api_url: GitHub REST API base URL.
        raw_url: Raw content base URL.
        timeout: Per-request timeout in seconds.
        pause_seconds: Sleep inserted every 10 fetched files.
        transport: Optional httpx transport (tests use MockTransport).
    """

    def __init__(
        self,
        token: str | None = None,
        max_files: int = 50,
        max_file_bytes: int = 1_000_000,
        api_url: str = "https://api.github.com",
        raw_url: str = "https://raw.githubusercontent.com",
        timeout: float = 30.0,
        pause_seconds: float = 0.1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self._max_files = max_files
        self._max_file_bytes = max_file_bytes
        self._api_url = api_url.rstrip("/")
        self._raw_url = raw_url.rstrip("/")
        self._timeout = timeout
        self._pause_seconds = pause_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "repochat",
        }
        if self._token:
            headers["Authorization"] = f"token {self._token}"
        return httpx.AsyncClient(
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_repository_info(self, owner: str, repo: str) -> RepositoryInfo:
        """Description, primary language and default branch."""
        async with self._client() as client:
            data = await self._get_json(
                client, f"{self._api_url}/repos/{owner}/{repo}", owner, repo
            )
        return RepositoryInfo(
            owner=owner,
            repo=repo,
            description=data.get("description") or None,
            language=data.get("language") or None,
            default_branch=data.get("default_branch") or "main",
        )

    async def fetch_readme(
        self,
        owner: str,
        repo: str,
        branch: str | None = None,
    ) -> str | None:
        """README text from the first variant that exists, else None."""
        readme = await self.find_readme(owner, repo, branch)
        return readme.content if readme is not None else None

    async def find_readme(
        self,
        owner: str,
        repo: str,
        branch: str | None = None,
    ) -> SourceFile | None:
        """
        First README variant that exists, with the path it was found at.

        Variants are tried in ``README_NAMES`` order.
        """
        if branch is None:
            branch = (await self.fetch_repository_info(owner, repo)).default_branch

        async with self._client() as client:
            for name in README_NAMES:
                content = await self._get_raw(client, owner, repo, branch, name)
                if content is not None:
                    logger.debug("Fetched %s for %s/%s", name, owner, repo)
                    return SourceFile(
                        path=name, content=content, size=len(content.encode())
                    )
        logger.info("No README found for %s/%s", owner, repo)
        return None

    async def list_text_files(
        self,
        owner: str,
        repo: str,
        branch: str | None = None,
    ) -> list[SourceFile]:
        """
        Fetch up to ``max_files`` allow-listed text files, in tree order.

        Files past the limit are dropped silently. Blobs that disappear
        between the tree listing and the raw fetch are skipped.
        """
        if branch is None:
            branch = (await self.fetch_repository_info(owner, repo)).default_branch

        async with self._client() as client:
            tree = await self._get_json(
                client,
                f"{self._api_url}/repos/{owner}/{repo}/git/trees/{branch}",
                owner,
                repo,
                params={"recursive": "1"},
            )
            if tree.get("truncated"):
                logger.warning("Tree listing for %s/%s was truncated", owner, repo)

            items = [
                item
                for item in tree.get("tree", [])
                if item.get("type") == "blob"
                and is_supported_file(item.get("path", ""))
                and int(item.get("size") or 0) <= self._max_file_bytes
            ][: self._max_files]

            files: list[SourceFile] = []
            for item in items:
                content = await self._get_raw(client, owner, repo, branch, item["path"])
                if content is None:
                    logger.warning(
                        "Skipping %s in %s/%s: not retrievable", item["path"], owner, repo
                    )
                    continue
                files.append(
                    SourceFile(
                        path=item["path"],
                        content=content,
                        size=int(item.get("size") or len(content)),
                    )
                )
                if len(files) % PAUSE_EVERY == 0 and self._pause_seconds > 0:
                    await asyncio.sleep(self._pause_seconds)

        logger.info(
            "Fetched %d of %d eligible files from %s/%s@%s",
            len(files),
            len(items),
            owner,
            repo,
            branch,
        )
        return files

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        owner: str,
        repo: str,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise SourceFetchError(
                f"Could not reach GitHub for {owner}/{repo}: {exc}"
            ) from exc

        if response.status_code == 404:
            raise SourceNotFoundError(f"Repository {owner}/{repo} not found")
        if _is_rate_limited(response):
            raise SourceRateLimitedError(
                "GitHub API rate limit exceeded. Consider providing a GitHub token."
            )
        if response.is_error:
            raise SourceFetchError(
                f"GitHub request failed for {owner}/{repo}: "
                f"{response.status_code} {response.reason_phrase}"
            )
        return response.json()

    async def _get_raw(
        self,
        client: httpx.AsyncClient,
        owner: str,
        repo: str,
        branch: str,
        path: str,
    ) -> str | None:
        """Raw file text, or None when the file does not exist."""
        url = f"{self._raw_url}/{owner}/{repo}/{branch}/{path}"
        try:
            response = await client.get(url)
        except httpx.HTTPError as exc:
            raise SourceFetchError(
                f"Could not fetch {path} from {owner}/{repo}: {exc}"
            ) from exc

        if response.status_code == 404:
            return None
        if _is_rate_limited(response):
            raise SourceRateLimitedError(
                "GitHub rate limit exceeded while fetching files. "
                "Consider providing a GitHub token."
            )
        if response.is_error:
            raise SourceFetchError(
                f"Failed to fetch {path} from {owner}/{repo}: "
                f"{response.status_code} {response.reason_phrase}"
            )
        return response.text


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    if response.headers.get("x-ratelimit-remaining") == "0":
        return True
    return "rate limit" in response.text.lower()
