"""
RepoChat Application Entry Point

FastAPI application for asking questions about public GitHub
repositories with retrieval-augmented generation.

Start locally:
    uvicorn repochat.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from repochat.api.v1.repositories import router as repositories_router
from repochat.core.config import settings
from repochat.core.database import dispose_engine, get_engine
from repochat.core.logging import setup_logging
from repochat.services.embeddings import SentenceTransformerProvider
from repochat.services.rag_pipeline import get_pipeline, warm_up

setup_logging()
logger = logging.getLogger(__name__)

DB_CONNECT_ATTEMPTS: int = 10
DB_CONNECT_DELAY: float = 2.0


async def wait_for_db(
    attempts: int = DB_CONNECT_ATTEMPTS,
    delay: float = DB_CONNECT_DELAY,
) -> None:
    """Retry ``SELECT 1`` until the database answers or attempts run out."""
    engine = get_engine()
    for attempt in range(1, attempts + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return
        except (OSError, SQLAlchemyError) as exc:
            if attempt == attempts:
                logger.error("Database unreachable after %d attempts", attempts)
                raise
            logger.warning(
                "Database not ready (attempt %d/%d): %s", attempt, attempts, exc
            )
            await asyncio.sleep(delay)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
        1. Wait for database connectivity.
        2. Pre-load the local embedding model (avoids cold start).

    Shutdown:
        1. Release the embedding model from memory.
        2. Dispose database engine.
    """
    logger.info("Starting %s...", settings.PROJECT_NAME)

    await wait_for_db()

    logger.info("Pre-loading embedding model...")
    await warm_up(get_pipeline())
    logger.info("Embedding model ready")

    yield

    SentenceTransformerProvider.reset()
    await dispose_engine()
    logger.info("%s shutdown complete", settings.PROJECT_NAME)


app = FastAPI(
    title="RepoChat",
    description="Ask questions about public GitHub repositories (RAG).",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(
    repositories_router, prefix="/api/v1/repositories", tags=["Repositories"]
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check for load balancers and orchestrators."""
    return {
        "status": "ok",
        "service": "repochat",
        "environment": os.getenv("ENVIRONMENT", "local"),
    }
