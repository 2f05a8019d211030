"""
Repository Store

Data access layer for ``repositories`` rows: creation by the API,
status and metadata writes by the Ingestion Orchestrator, and reads by
the Retrieval Orchestrator.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from repochat.models.orm import RepositoryRecord, RepositoryStatus
from repochat.models.schemas import RepositoryMetadata

logger = logging.getLogger(__name__)


class RepositoryStore:
    """
    Keyed read/write access to RepositoryRecord rows.

    All methods expect an externally managed ``AsyncSession``. Writes
    commit before returning. ``write_status`` and ``write_metadata``
    report whether a row was updated, so a repository deleted while an
    ingestion was running shows up as ``False`` instead of an exception.
    """

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def create(
        self,
        session: AsyncSession,
        *,
        repository_id: str,
        url: str,
        owner: str,
        name: str,
    ) -> RepositoryRecord:
        """Insert a new repository in ``processing`` status."""
        record = RepositoryRecord(
            id=repository_id,
            url=url,
            owner=owner,
            name=name,
            status=RepositoryStatus.PROCESSING.value,
            chunk_count=0,
        )
        session.add(record)
        await session.commit()
        await session.refresh(record)
        logger.info("Created repository %s (%s)", record.id, record.full_name)
        return record

    async def write_status(
        self,
        session: AsyncSession,
        repository_id: str,
        status: RepositoryStatus,
        error: str | None = None,
        chunk_count: int | None = None,
    ) -> bool:
        """
        Set status (and error / chunk count) on a repository.

        ``error`` is cleared unless the new status is ``error``.

        Returns:
            True if the row exists and was updated.
        """
        values: dict[str, object] = {
            "status": RepositoryStatus(status).value,
            "error": error if status == RepositoryStatus.ERROR else None,
        }
        if chunk_count is not None:
            values["chunk_count"] = chunk_count

        result = await session.execute(
            update(RepositoryRecord)
            .where(RepositoryRecord.id == repository_id)
            .values(**values)
        )
        await session.commit()
        updated = bool(result.rowcount)
        if updated:
            logger.info("Repository %s -> %s", repository_id, values["status"])
        return updated

    async def write_metadata(
        self,
        session: AsyncSession,
        repository_id: str,
        metadata: RepositoryMetadata,
    ) -> bool:
        """Persist derived metadata. Returns True if the row was updated."""
        result = await session.execute(
            update(RepositoryRecord)
            .where(RepositoryRecord.id == repository_id)
            .values(
                file_tree=metadata.file_tree,
                languages=metadata.languages,
                framework=metadata.framework,
                readme=metadata.readme,
                description=metadata.description,
                default_branch=metadata.default_branch,
            )
        )
        await session.commit()
        return bool(result.rowcount)

    async def delete(self, session: AsyncSession, repository_id: str) -> bool:
        """Delete a repository row; chunks go with it (ON DELETE CASCADE)."""
        result = await session.execute(
            delete(RepositoryRecord).where(RepositoryRecord.id == repository_id)
        )
        await session.commit()
        deleted = bool(result.rowcount)
        if deleted:
            logger.info("Deleted repository %s", repository_id)
        return deleted

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def read(
        self,
        session: AsyncSession,
        repository_id: str,
    ) -> RepositoryRecord | None:
        """Look up a repository by id."""
        stmt = select(RepositoryRecord).where(RepositoryRecord.id == repository_id)
        result = await session.execute(stmt)
        return result.scalars().first()

    async def find_by_owner_name(
        self,
        session: AsyncSession,
        owner: str,
        name: str,
    ) -> RepositoryRecord | None:
        """Look up a repository by its GitHub coordinates."""
        stmt = select(RepositoryRecord).where(
            RepositoryRecord.owner == owner,
            RepositoryRecord.name == name,
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def list_all(self, session: AsyncSession) -> Sequence[RepositoryRecord]:
        """All repositories, newest first."""
        stmt = select(RepositoryRecord).order_by(RepositoryRecord.created_at.desc())
        result = await session.execute(stmt)
        return result.scalars().all()


# Module-level singleton for convenience imports
repository_store = RepositoryStore()
