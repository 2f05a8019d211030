"""
Repositories API Router

HTTP endpoints for registering GitHub repositories and asking
questions about them.

Endpoints:
    POST   /                   Register a repository, ingest in background (201).
    GET    /                   List repositories.
    GET    /{id}               Repository status and metadata.
    DELETE /{id}               Drop chunks, then the repository (204).
    POST   /{id}/reingest      Re-run ingestion in background (202).
    GET    /{id}/chunks/count  Stored chunk count.
    POST   /{id}/ask           Retrieval-augmented answer with sources.
"""

from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from repochat.core.database import get_db
from repochat.core.errors import (
    AuthError,
    DimensionMismatchError,
    NoRelevantContentError,
    ProviderUnavailableError,
    QuotaExceededError,
    RepoChatError,
    RepositoryNotFoundError,
    RepositoryNotReadyError,
)
from repochat.models.orm import RepositoryRecord, RepositoryStatus
from repochat.repositories.repos import RepositoryStore
from repochat.schemas.repositories import (
    AskRequest,
    AskResponse,
    ChunkCountResponse,
    ErrorDetail,
    RepositoryCreate,
    RepositoryRead,
    SourceReference,
)
from repochat.services.github import parse_github_url
from repochat.services.rag_pipeline import RepoChatPipeline, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter()

# Most specific class first
_STATUS_BY_ERROR: list[tuple[type[RepoChatError], int]] = [
    (RepositoryNotFoundError, 404),
    (RepositoryNotReadyError, 409),
    (NoRelevantContentError, 404),
    (AuthError, 502),
    (QuotaExceededError, 429),
    (DimensionMismatchError, 502),
    (ProviderUnavailableError, 503),
]


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_store() -> RepositoryStore:
    """FastAPI dependency returning a RepositoryStore instance."""
    return RepositoryStore()


async def _get_or_404(
    db: AsyncSession,
    store: RepositoryStore,
    repository_id: str,
) -> RepositoryRecord:
    record = await store.read(db, repository_id)
    if record is None:
        raise HTTPException(
            status_code=404, detail=f"Repository {repository_id} not found"
        )
    return record


def _http_error(exc: RepoChatError) -> HTTPException:
    status_code = next(
        (code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500
    )
    category = getattr(exc, "category", None)
    detail = ErrorDetail(
        error_code=exc.error_code,
        category=str(category) if category is not None else exc.error_code,
        message=str(exc),
    )
    return HTTPException(status_code=status_code, detail=detail.model_dump())


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/",
    response_model=RepositoryRead,
    status_code=201,
    summary="Register a GitHub repository",
    responses={409: {"description": "Repository already registered"}},
)
async def create_repository(
    request: RepositoryCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    store: RepositoryStore = Depends(_get_store),
    pipeline: RepoChatPipeline = Depends(get_pipeline),
) -> RepositoryRead:
    """
    Register a public GitHub repository and start ingesting it.

    Returns immediately with status ``processing``. Poll
    ``GET /{id}`` until the status becomes ``ready`` or ``error``.
    """
    try:
        owner, name = parse_github_url(request.url)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    if await store.find_by_owner_name(db, owner, name) is not None:
        raise HTTPException(
            status_code=409, detail=f"Repository {owner}/{name} already registered"
        )

    try:
        record = await store.create(
            db, repository_id=uuid4().hex, url=request.url, owner=owner, name=name
        )
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=409, detail=f"Repository {owner}/{name} already registered"
        ) from exc

    background_tasks.add_task(pipeline.ingest_repository, record.id, owner, name)
    return RepositoryRead.model_validate(record)


@router.get("/", response_model=list[RepositoryRead], summary="List repositories")
async def list_repositories(
    db: AsyncSession = Depends(get_db),
    store: RepositoryStore = Depends(_get_store),
) -> list[RepositoryRead]:
    records = await store.list_all(db)
    return [RepositoryRead.model_validate(record) for record in records]


@router.get("/{repository_id}", response_model=RepositoryRead, summary="Get repository")
async def get_repository(
    repository_id: str,
    db: AsyncSession = Depends(get_db),
    store: RepositoryStore = Depends(_get_store),
) -> RepositoryRead:
    record = await _get_or_404(db, store, repository_id)
    return RepositoryRead.model_validate(record)


@router.delete("/{repository_id}", status_code=204, summary="Delete repository")
async def delete_repository(
    repository_id: str,
    db: AsyncSession = Depends(get_db),
    store: RepositoryStore = Depends(_get_store),
    pipeline: RepoChatPipeline = Depends(get_pipeline),
) -> Response:
    await _get_or_404(db, store, repository_id)
    await pipeline.clear_repository(db, repository_id)
    await store.delete(db, repository_id)
    return Response(status_code=204)


@router.post(
    "/{repository_id}/reingest",
    response_model=RepositoryRead,
    status_code=202,
    summary="Re-run ingestion",
)
async def reingest_repository(
    repository_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    store: RepositoryStore = Depends(_get_store),
    pipeline: RepoChatPipeline = Depends(get_pipeline),
) -> RepositoryRead:
    """Move the repository back to ``processing`` and ingest it again."""
    record = await _get_or_404(db, store, repository_id)
    await store.write_status(db, repository_id, RepositoryStatus.PROCESSING)
    await db.refresh(record)

    background_tasks.add_task(
        pipeline.ingest_repository, record.id, record.owner, record.name
    )
    return RepositoryRead.model_validate(record)


@router.get(
    "/{repository_id}/chunks/count",
    response_model=ChunkCountResponse,
    summary="Stored chunk count",
)
async def get_chunk_count(
    repository_id: str,
    db: AsyncSession = Depends(get_db),
    store: RepositoryStore = Depends(_get_store),
    pipeline: RepoChatPipeline = Depends(get_pipeline),
) -> ChunkCountResponse:
    await _get_or_404(db, store, repository_id)
    count = await pipeline.get_chunk_count(db, repository_id)
    return ChunkCountResponse(repository_id=repository_id, chunk_count=count)


@router.post(
    "/{repository_id}/ask",
    response_model=AskResponse,
    summary="Ask a question about a repository",
    responses={
        404: {"model": ErrorDetail, "description": "Unknown repository / no match"},
        409: {"model": ErrorDetail, "description": "Repository not ready"},
        429: {"model": ErrorDetail, "description": "Provider quota exceeded"},
        502: {"model": ErrorDetail, "description": "Provider rejected credentials"},
        503: {"model": ErrorDetail, "description": "Provider unavailable"},
    },
)
async def ask(
    repository_id: str,
    request: AskRequest,
    db: AsyncSession = Depends(get_db),
    pipeline: RepoChatPipeline = Depends(get_pipeline),
) -> AskResponse:
    """
    Answer a question using the repository's most relevant chunks.

    Process:
        1. Embed the question.
        2. Retrieve the top-K chunks of this repository.
        3. Generate an answer grounded in those chunks.
    """
    logger.info("Ask %s: question='%s'", repository_id, request.question[:50])
    try:
        answer = await pipeline.answer_question_with_sources(
            db, repository_id, request.question, request.history
        )
    except RepoChatError as exc:
        logger.warning("Ask %s failed (%s): %s", repository_id, exc.error_code, exc)
        raise _http_error(exc) from exc

    return AskResponse(
        answer=answer.text,
        sources=[
            SourceReference(
                file_path=source.file_path,
                chunk_index=source.chunk_index,
                similarity=round(source.similarity, 4),
                preview=source.text[:100],
            )
            for source in answer.sources
        ],
    )
