"""Idempotent lookup-or-create of documents by title."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from doclink.database.models import UNKNOWN_LINK_COUNT
from doclink.repositories.document_repository import DocumentRepository
from doclink.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedDocument:
    document_id: int
    created: bool


class DocumentResolver:
    """Find the active document for a title, creating it when missing.

    New documents are flushed straight away inside the caller's transaction,
    so a later lookup for the same title in the same unit of work finds them
    instead of creating a second placeholder.
    """

    def __init__(self, session: AsyncSession, document_repo: Optional[DocumentRepository] = None):
        self.session = session
        self.document_repo = document_repo or DocumentRepository(session)

    async def resolve(
        self,
        title: str,
        defaults: Optional[Dict[str, Any]] = None,
    ) -> ResolvedDocument:
        """Return the document ID for ``title``.

        Args:
            title: Exact, case-sensitive document title
            defaults: Field values used only if the document has to be created.
                ``expected_link_count`` falls back to -1 (unknown).

        Returns:
            ResolvedDocument with ``created`` set when a new row was inserted
        """
        existing = await self.document_repo.get_active_by_title(title)
        if existing is not None:
            return ResolvedDocument(document_id=existing.id, created=False)

        fields = {"expected_link_count": UNKNOWN_LINK_COUNT}
        fields.update(defaults or {})

        try:
            async with self.session.begin_nested():
                document = await self.document_repo.create_document(title=title, **fields)
        except IntegrityError:
            # Another run may have inserted the same title since our lookup
            winner = await self.document_repo.get_active_by_title(title)
            if winner is None:
                raise
            LOGGER.info(
                f"Document '{title}' was created concurrently, reusing {winner.id}",
                extra={"title": title, "document_id": winner.id}
            )
            return ResolvedDocument(document_id=winner.id, created=False)

        LOGGER.info(
            f"Created document '{title}'",
            extra={"title": title, "document_id": document.id, "fields": sorted(fields)}
        )
        return ResolvedDocument(document_id=document.id, created=True)
