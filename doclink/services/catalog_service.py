"""Read-only views over documents, links and document file status."""

from typing import Any, List

from sqlalchemy.ext.asyncio import AsyncSession

from doclink.core.exceptions import AppError, DocumentFileNotFoundError, DocumentNotFoundError
from doclink.core.status import is_fully_processed
from doclink.repositories.document_file_repository import DocumentFileRepository
from doclink.repositories.document_repository import DocumentRepository
from doclink.repositories.link_repository import LinkRepository
from doclink.schemas.documents import DocumentSummary, FileStatusResponse, LinkSummary
from doclink.services.base_service import BaseService
from doclink.utils.logging import get_logger

LOGGER = get_logger(__name__)


class CatalogService(BaseService):
    """Service backing the read API."""

    def __init__(self, session: AsyncSession):
        super().__init__()
        self.session = session
        self.document_repo = DocumentRepository(session)
        self.file_repo = DocumentFileRepository(session)
        self.link_repo = LinkRepository(session)

    async def run(self, *args, **kwargs) -> Any:
        action = kwargs.get("action")

        if action == "list_documents":
            return await self._list_documents_logic(kwargs.get("limit", 200), kwargs.get("offset", 0))
        elif action == "list_links":
            return await self._list_links_logic(kwargs["document_id"])
        elif action == "file_status":
            return await self._file_status_logic(kwargs["file_id"])
        else:
            raise AppError(f"Unknown action: {action}")

    async def list_documents(self, limit: int = 200, offset: int = 0) -> List[DocumentSummary]:
        """List active documents with their tracked flag.

        A document is tracked once both status tracks of its document file
        are Processed. Placeholders are never tracked.
        """
        return await self.execute(action="list_documents", limit=limit, offset=offset)

    async def list_links(self, document_id: int) -> List[LinkSummary]:
        """List active outgoing links of a document, one entry per target.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        return await self.execute(action="list_links", document_id=document_id)

    async def get_file_status(self, file_id: int) -> FileStatusResponse:
        """Get both status tracks of a document file.

        Raises:
            DocumentFileNotFoundError: If the document file does not exist
        """
        return await self.execute(action="file_status", file_id=file_id)

    async def _list_documents_logic(self, limit: int, offset: int) -> List[DocumentSummary]:
        documents = await self.document_repo.list_active(skip=offset, limit=limit)
        files = await self.file_repo.get_many(
            [document.document_file_id for document in documents if document.document_file_id is not None]
        )
        return [
            DocumentSummary(
                id=document.id,
                title=document.title,
                tracked=is_fully_processed(files.get(document.document_file_id)),
            )
            for document in documents
        ]

    async def _list_links_logic(self, document_id: int) -> List[LinkSummary]:
        document = await self.document_repo.get_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")

        seen = set()
        links = []
        for link in await self.link_repo.list_active_from(document_id):
            key = (link.from_document_id, link.to_document_id)
            if key in seen:
                continue
            seen.add(key)
            links.append(LinkSummary(from_document_id=key[0], to_document_id=key[1]))
        return links

    async def _file_status_logic(self, file_id: int) -> FileStatusResponse:
        document_file = await self.file_repo.get_by_id(file_id)
        if document_file is None:
            raise DocumentFileNotFoundError(f"Document file {file_id} not found")
        return FileStatusResponse(
            file_id=document_file.id,
            doc=document_file.doc_status,
            links=document_file.links_status,
        )
