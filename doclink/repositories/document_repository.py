from typing import Optional, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from doclink.database.models import Document, UNKNOWN_LINK_COUNT
from doclink.repositories.base_repository import BaseRepository
from doclink.utils.logging import get_logger

LOGGER = get_logger(__name__)


class DocumentRepository(BaseRepository[Document]):
    """Repository for managing Document records.

    Inherits from BaseRepository for standard CRUD operations.
    """

    def __init__(self, session: AsyncSession):
        """Initialize document repository.

        Args:
            session: SQLAlchemy async session
        """
        super().__init__(session, Document)

    async def get_active_by_title(self, title: str) -> Optional[Document]:
        """Get the active document with exactly this title.

        Matching is exact and case-sensitive. If several active rows share
        the title the oldest one wins.

        Args:
            title: Document title

        Returns:
            The document if found, None otherwise
        """
        ids = await self.find_ids_by_field("title", title, active_only=True)
        if not ids:
            return None
        if len(ids) > 1:
            LOGGER.warning(
                "Multiple active documents share a title, using the oldest",
                extra={"title": title, "document_ids": ids}
            )
        return await self.get_by_id(ids[0])

    async def create_document(
        self,
        title: str,
        document_metadata: Optional[str] = None,
        document_file_id: Optional[int] = None,
        expected_link_count: int = UNKNOWN_LINK_COUNT,
    ) -> Document:
        """Create a new document record.

        Args:
            title: Document title
            document_metadata: Extracted metadata blob
            document_file_id: Owning DocumentFile, if known
            expected_link_count: Number of outgoing links expected, -1 if unknown

        Returns:
            Created Document record
        """
        return await self.create(
            title=title,
            document_metadata=document_metadata,
            document_file_id=document_file_id,
            expected_link_count=expected_link_count,
            active=True,
        )

    async def apply_ingested_fields(
        self,
        document_id: int,
        document_metadata: Optional[str],
        document_file_id: Optional[int],
        expected_link_count: int,
    ) -> Optional[Document]:
        """Overwrite the fields carried by a processed-document record.

        Fields are replaced, not merged.
        """
        return await self.update(
            document_id,
            document_metadata=document_metadata,
            document_file_id=document_file_id,
            expected_link_count=expected_link_count,
        )

    async def list_active(self, skip: int = 0, limit: int = 200) -> List[Document]:
        """List active documents ordered by ID."""
        query = (
            select(Document)
            .where(Document.active.is_(True))
            .order_by(Document.id)
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
