from typing import Optional, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from doclink.core.exceptions import DocumentFileNotFoundError, InvalidStatusTransitionError
from doclink.core.status import ProcessingStatus, StatusTrack, transition
from doclink.database.models import DocumentFile
from doclink.repositories.base_repository import BaseRepository
from doclink.utils.logging import get_logger

LOGGER = get_logger(__name__)


class DocumentFileRepository(BaseRepository[DocumentFile]):
    """Repository for DocumentFile records and their status tracks."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, DocumentFile)

    async def create_document_file(
        self,
        source_file_path: str,
        aux_file_path: Optional[str] = None,
        label: Optional[str] = None,
    ) -> DocumentFile:
        """Create a document file with both tracks set to Processing.

        Args:
            source_file_path: Stored path of the uploaded PDF
            aux_file_path: Optional secondary file used for extraction
            label: Display name, usually the uploaded file name

        Returns:
            Created DocumentFile record
        """
        return await self.create(
            source_file_path=source_file_path,
            aux_file_path=aux_file_path,
            label=label,
            doc_status=ProcessingStatus.PROCESSING,
            links_status=ProcessingStatus.PROCESSING,
            sent_to_pipeline=False,
        )

    async def set_status(
        self,
        document_file_id: int,
        track: StatusTrack,
        target: ProcessingStatus,
    ) -> bool:
        """Move one status track of a document file.

        Disallowed moves (for example Processed -> Failed) are logged and
        leave the current value untouched.

        Args:
            document_file_id: DocumentFile ID
            track: Which status column to move
            target: Desired status

        Returns:
            True if the track now holds ``target``, False if the move was refused

        Raises:
            DocumentFileNotFoundError: If the document file does not exist
        """
        document_file = await self.get_by_id(document_file_id)
        if document_file is None:
            raise DocumentFileNotFoundError(f"Document file {document_file_id} not found")

        current = getattr(document_file, track.value)
        try:
            new_status = transition(current, target)
        except InvalidStatusTransitionError as e:
            LOGGER.warning(
                f"Ignoring status change for document file {document_file_id}: {e}",
                extra={"document_file_id": document_file_id, "track": track.value}
            )
            return False

        if new_status != current:
            setattr(document_file, track.value, new_status)
            await self.session.flush()
            LOGGER.info(
                f"Document file {document_file_id} {track.value}: {current.value} -> {new_status.value}"
            )
        return True

    async def mark_sent_to_pipeline(self, document_file: DocumentFile) -> DocumentFile:
        document_file.sent_to_pipeline = True
        await self.session.flush()
        return document_file

    async def get_many(self, ids: List[int]) -> dict[int, DocumentFile]:
        """Load several document files keyed by ID."""
        if not ids:
            return {}
        result = await self.session.execute(select(DocumentFile).where(DocumentFile.id.in_(ids)))
        return {document_file.id: document_file for document_file in result.scalars().all()}
