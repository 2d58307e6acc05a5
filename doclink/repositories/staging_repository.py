"""Repository for the staging store written by the external pipeline."""

import json
from typing import Any, List, Optional

from sqlalchemy import select, update, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from doclink.database.staging_models import DeadLetter, StagingKind
from doclink.utils.logging import get_logger

LOGGER = get_logger(__name__)


class StagingRepository:
    """Queue-like access to staged documents, links and file paths.

    Every operation takes the staging kind it addresses. Like the content
    repositories this class only flushes; the caller commits.
    """

    def __init__(self, session: AsyncSession):
        """Initialize staging repository.

        Args:
            session: SQLAlchemy async session bound to the staging database
        """
        self.session = session
        self.logger = LOGGER

    async def fetch_pending(self, kind: StagingKind, limit: int) -> List[Any]:
        """Get up to ``limit`` rows not yet marked failed, oldest first."""
        if limit <= 0:
            return []
        model = kind.model
        try:
            query = select(model).where(model.failed.is_(False)).order_by(model.id).limit(limit)
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching pending {kind.value} rows: {str(e)}", exc_info=True)
            raise

    async def fetch_failed(self, kind: StagingKind, limit: Optional[int] = None) -> List[Any]:
        """Get rows marked failed, oldest first."""
        model = kind.model
        try:
            query = select(model).where(model.failed.is_(True)).order_by(model.id)
            if limit is not None:
                query = query.limit(limit)
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching failed {kind.value} rows: {str(e)}", exc_info=True)
            raise

    async def claim(self, kind: StagingKind, id: int, failed: bool = False) -> Optional[Any]:
        """Lock a single row for the rest of the current staging transaction.

        On PostgreSQL rows already locked by a concurrent run are skipped,
        so two runs never work on the same staged item. The row must still
        carry the expected ``failed`` flag.

        Returns:
            The locked row, or None if it is gone, changed state or is held elsewhere
        """
        model = kind.model
        try:
            query = (
                select(model)
                .where(model.id == id, model.failed.is_(failed))
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error claiming {kind.value} row {id}: {str(e)}", exc_info=True)
            raise

    async def insert(self, kind: StagingKind, **fields) -> Any:
        """Insert a new pending row."""
        try:
            instance = kind.model(**fields)
            self.session.add(instance)
            await self.session.flush()
            return instance
        except SQLAlchemyError as e:
            self.logger.error(f"Error inserting {kind.value} row: {str(e)}", exc_info=True)
            raise

    async def mark_failed(self, kind: StagingKind, id: int) -> bool:
        """Flag a row for the failure sweep.

        Returns:
            True if a row was flagged
        """
        model = kind.model
        try:
            result = await self.session.execute(
                update(model).where(model.id == id).values(failed=True)
            )
            return result.rowcount > 0
        except SQLAlchemyError as e:
            self.logger.error(f"Error marking {kind.value} row {id} failed: {str(e)}", exc_info=True)
            raise

    async def delete(self, kind: StagingKind, id: int) -> bool:
        """Remove a row. Deleting an already deleted row is a no-op.

        Returns:
            True if a row was removed
        """
        model = kind.model
        try:
            result = await self.session.execute(delete(model).where(model.id == id))
            return result.rowcount > 0
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting {kind.value} row {id}: {str(e)}", exc_info=True)
            raise

    async def dead_letter(self, kind: StagingKind, staged: Any, reason: str) -> DeadLetter:
        """Move a failed staged row into the dead-letter table.

        The row's columns, apart from bookkeeping ones, are kept as a JSON
        payload so the item can be inspected or replayed by hand.
        """
        model = kind.model
        payload = {
            column.key: getattr(staged, column.key)
            for column in model.__table__.columns
            if column.key not in ("id", "failed", "created_at")
        }
        try:
            entry = DeadLetter(
                kind=kind.value,
                staged_id=staged.id,
                payload=json.dumps(payload),
                reason=reason,
                failed_at=staged.created_at,
            )
            self.session.add(entry)
            await self.session.execute(delete(model).where(model.id == staged.id))
            await self.session.flush()
            return entry
        except SQLAlchemyError as e:
            self.logger.error(f"Error dead-lettering {kind.value} row {staged.id}: {str(e)}", exc_info=True)
            raise

    async def list_dead_letters(
        self,
        kind: Optional[StagingKind] = None,
        skip: int = 0,
        limit: int = 200,
    ) -> List[DeadLetter]:
        """List dead-lettered rows, oldest first, optionally of one kind."""
        query = select(DeadLetter)
        if kind is not None:
            query = query.where(DeadLetter.kind == kind.value)
        try:
            result = await self.session.execute(
                query.order_by(DeadLetter.id).offset(skip).limit(limit)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing dead letters: {str(e)}", exc_info=True)
            raise
