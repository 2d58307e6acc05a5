"""Document file service: registration, upload and hand-off to the pipeline."""

from pathlib import Path
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from doclink.core.exceptions import AppError, ValidationError
from doclink.database.models import DocumentFile
from doclink.database.staging_models import StagingKind
from doclink.repositories.document_file_repository import DocumentFileRepository
from doclink.repositories.staging_repository import StagingRepository
from doclink.schemas.documents import FileCreatedResponse
from doclink.services.base_service import BaseService
from doclink.services.storage_service import StorageService, decode_pdf
from doclink.utils.logging import get_logger

LOGGER = get_logger(__name__)


class DocumentFileService(BaseService):
    """Service for creating document files.

    A new document file starts with both status tracks at Processing, and
    its file path is staged exactly once for the external pipeline.
    """

    def __init__(
        self,
        session: AsyncSession,
        staging_session: AsyncSession,
        storage_service: Optional[StorageService] = None,
    ):
        """Initialize document file service.

        Args:
            session: Content store session
            staging_session: Staging store session
            storage_service: Where uploaded PDFs are written
        """
        super().__init__()
        self.session = session
        self.staging_session = staging_session
        self.file_repo = DocumentFileRepository(session)
        self.staging_repo = StagingRepository(staging_session)
        self.storage_service = storage_service or StorageService()

    async def run(self, *args, **kwargs) -> Any:
        """Route to the handler for ``action``."""
        action = kwargs.get("action")

        if action == "create":
            return await self._create_logic(
                kwargs["source_file_path"],
                kwargs.get("aux_file_path"),
                kwargs.get("label"),
            )
        elif action == "upload":
            return await self._upload_logic(kwargs["file_name"], kwargs["pdf_b64"])
        else:
            raise AppError(f"Unknown action: {action}")

    def validate(self, *args, **kwargs):
        if kwargs.get("action") == "create" and not kwargs.get("source_file_path"):
            raise ValidationError("source_file_path is required")
        if kwargs.get("action") == "upload" and not kwargs.get("file_name"):
            raise ValidationError("file_name is required")

    async def create_document_file(
        self,
        source_file_path: str,
        aux_file_path: Optional[str] = None,
        label: Optional[str] = None,
    ) -> FileCreatedResponse:
        """Register a file already on disk and stage it for processing.

        Args:
            source_file_path: Path of the PDF
            aux_file_path: Optional secondary file used for extraction
            label: Display name, defaults to the file name

        Returns:
            FileCreatedResponse with the new document file ID
        """
        return await self.execute(
            action="create",
            source_file_path=source_file_path,
            aux_file_path=aux_file_path,
            label=label,
        )

    async def upload(self, file_name: str, pdf_b64: str) -> FileCreatedResponse:
        """Store a base64 PDF upload and register it as a document file.

        Raises:
            InvalidUploadError: If the payload is not a PDF
        """
        return await self.execute(action="upload", file_name=file_name, pdf_b64=pdf_b64)

    async def _upload_logic(self, file_name: str, pdf_b64: str) -> FileCreatedResponse:
        content = decode_pdf(pdf_b64)
        stored_path = await self.storage_service.save_pdf(file_name, content)
        return await self._create_logic(stored_path, None, Path(file_name).name)

    async def _create_logic(
        self,
        source_file_path: str,
        aux_file_path: Optional[str],
        label: Optional[str],
    ) -> FileCreatedResponse:
        try:
            document_file = await self.file_repo.create_document_file(
                source_file_path=source_file_path,
                aux_file_path=aux_file_path,
                label=label or Path(source_file_path).name,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        LOGGER.info(
            f"Document file created: document_file_id={document_file.id}, path={source_file_path}"
        )

        await self.stage_file_path(document_file)
        return FileCreatedResponse(file_id=document_file.id)

    async def stage_file_path(self, document_file: DocumentFile) -> bool:
        """Hand the file path to the pipeline unless that already happened.

        The staging row is committed before the document file is flagged,
        so a crash in between can at worst stage the path a second time.

        Returns:
            True if a staging row was written
        """
        if document_file.sent_to_pipeline:
            LOGGER.info(f"Document file {document_file.id} already sent to the pipeline")
            return False

        try:
            await self.staging_repo.insert(
                StagingKind.FILE_PATH,
                pdf_path=document_file.source_file_path,
                process_path=document_file.aux_file_path or "",
                document_file_id=document_file.id,
            )
            await self.staging_session.commit()
        except Exception:
            await self.staging_session.rollback()
            raise

        try:
            await self.file_repo.mark_sent_to_pipeline(document_file)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        LOGGER.info(f"Staged file path for document file {document_file.id}")
        return True
