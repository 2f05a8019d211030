#!/usr/bin/env python3
"""
RepoChat command line

Ingests a GitHub repository into the configured database (unless it is
already ready) and asks one question about it.

Usage:
    python scripts/ask_repo.py https://github.com/acme/widgets "How is it built?"
    python scripts/ask_repo.py acme/widgets "Where are the API routes?" --reingest
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from uuid import uuid4

from repochat.core.config import settings
from repochat.core.database import dispose_engine, get_session_factory
from repochat.core.errors import RepoChatError
from repochat.core.logging import setup_logging
from repochat.models.orm import RepositoryStatus
from repochat.repositories.repos import RepositoryStore
from repochat.services.github import parse_github_url
from repochat.services.rag_pipeline import build_pipeline


async def run(url: str, question: str, reingest: bool) -> int:
    if "github.com" not in url:
        url = f"https://github.com/{url.strip('/')}"
    owner, name = parse_github_url(url)

    factory = get_session_factory()
    pipeline = build_pipeline(settings, factory)
    store = RepositoryStore()

    async with factory() as session:
        record = await store.find_by_owner_name(session, owner, name)
        if record is None:
            record = await store.create(
                session, repository_id=uuid4().hex, url=url, owner=owner, name=name
            )
        repository_id = record.id
        needs_ingest = reingest or record.status != RepositoryStatus.READY

    if needs_ingest:
        result = await pipeline.ingest_repository(
            repository_id, owner, name, on_progress=lambda msg: print(f"  {msg}")
        )
        if result is None:
            async with factory() as session:
                record = await store.read(session, repository_id)
            reason = record.error if record else "repository deleted"
            print(f"Ingestion failed: {reason}", file=sys.stderr)
            return 1

    async with factory() as session:
        try:
            answer = await pipeline.answer_question_with_sources(
                session, repository_id, question
            )
        except RepoChatError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1

    print(f"\n{answer.text}\n")
    print("Sources:")
    for source in answer.sources:
        print(f"  [{source.similarity:.0%}] {source.file_path} #{source.chunk_index}")
    return 0


async def main_async(args: argparse.Namespace) -> int:
    try:
        return await run(args.url, args.question, args.reingest)
    finally:
        await dispose_engine()


def main() -> int:
    parser = argparse.ArgumentParser(description="Ask a question about a GitHub repo")
    parser.add_argument("url", help="GitHub URL or owner/repo")
    parser.add_argument("question", help="Question to ask")
    parser.add_argument(
        "--reingest", action="store_true", help="Re-ingest even if already ready"
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args()

    setup_logging(args.log_level)
    return asyncio.run(main_async(args))


if __name__ == "__main__":
    sys.exit(main())
