"""Link-count completion check for a document's outgoing links."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from doclink.core.exceptions import DocumentNotFoundError
from doclink.core.status import ProcessingStatus, StatusTrack
from doclink.repositories.document_file_repository import DocumentFileRepository
from doclink.repositories.document_repository import DocumentRepository
from doclink.repositories.link_repository import LinkRepository
from doclink.schemas.reconciliation import LinkCountAnomaly
from doclink.utils.logging import get_logger

LOGGER = get_logger(__name__)


class LinkCompletionService:
    """Compare a document's active outgoing links with its expected count.

    When the count is reached the owning document file's links track moves
    to Processed. Going over the expected count still completes the track
    but is reported as an anomaly.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.document_repo = DocumentRepository(session)
        self.document_file_repo = DocumentFileRepository(session)
        self.link_repo = LinkRepository(session)

    async def check(self, document_id: int) -> Optional[LinkCountAnomaly]:
        """Run the completion check for one source document.

        Args:
            document_id: Source document ID

        Returns:
            LinkCountAnomaly if more links exist than expected, else None

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        document = await self.document_repo.get_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")

        expected = document.expected_link_count
        if expected < 0 or document.document_file_id is None:
            # Unknown count or no file to carry the status
            return None

        actual = await self.link_repo.count_active_from(document.id)
        if actual < expected:
            return None

        await self.document_file_repo.set_status(
            document.document_file_id, StatusTrack.LINKS, ProcessingStatus.PROCESSED
        )

        if actual == expected:
            return None

        LOGGER.error(
            f"Too many links processed for document '{document.title}'. "
            f"Expected number: {expected}. Actual number: {actual}",
            extra={"document_id": document.id, "expected": expected, "actual": actual}
        )
        return LinkCountAnomaly(
            document_id=document.id,
            title=document.title,
            expected=expected,
            actual=actual,
        )
