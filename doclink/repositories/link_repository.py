from typing import Optional, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from doclink.database.models import Link
from doclink.repositories.base_repository import BaseRepository


class LinkRepository(BaseRepository[Link]):
    """Repository for managing Link records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Link)

    async def create_link(
        self,
        from_document_id: int,
        to_document_id: int,
        label: Optional[str] = None,
        staging_key: Optional[str] = None,
    ) -> Link:
        """Create an active link between two documents.

        Args:
            from_document_id: Source document ID
            to_document_id: Target document ID
            label: Display label
            staging_key: Replay key of the staged row the link came from

        Returns:
            Created Link record
        """
        return await self.create(
            from_document_id=from_document_id,
            to_document_id=to_document_id,
            label=label,
            staging_key=staging_key,
            active=True,
        )

    async def get_by_staging_key(self, staging_key: str) -> Optional[Link]:
        query = select(Link).where(Link.staging_key == staging_key)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def count_active_from(self, from_document_id: int) -> int:
        """Count active links whose source is the given document."""
        query = select(func.count()).select_from(Link).where(
            Link.from_document_id == from_document_id,
            Link.active.is_(True),
        )
        result = await self.session.execute(query)
        return result.scalar_one()

    async def list_active_from(self, from_document_id: int) -> List[Link]:
        """List active links from a document, oldest first."""
        query = (
            select(Link)
            .where(Link.from_document_id == from_document_id, Link.active.is_(True))
            .order_by(Link.id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
