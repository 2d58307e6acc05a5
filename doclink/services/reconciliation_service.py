"""Batch reconciliation of staged pipeline output into the content store.

A run has five steps, always in this order:

1. merge pending staged documents (upsert by title)
2. merge pending staged links (placeholders for unknown titles)
3. sweep failed staged file paths into ``doc_status = Failed``
4. sweep failed staged documents into ``doc_status = Failed``
5. sweep failed staged links into ``links_status = Failed``

A failed row that cannot be swept yet (no document file, or a link whose
source document is unknown) stays for a later run until it is older than
``FAILED_ITEM_MAX_AGE_HOURS``, then moves to the dead-letter table.

Each staged item is handled in its own unit of work. The staged row is
claimed in the staging database, the content mutation is committed, and
only then is the staged row deleted (or flagged failed) in a second commit.
Re-running an item whose content commit already landed is harmless:
documents are matched by title and links by the ID and creation time of
the staged row.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from doclink.core.config import settings
from doclink.core.exceptions import AppError, DocumentFileNotFoundError, ValidationError
from doclink.core.status import ProcessingStatus, StatusTrack
from doclink.database.models import UNKNOWN_LINK_COUNT
from doclink.database.staging_models import StagedDocument, StagedFilePath, StagedLink, StagingKind
from doclink.repositories.document_file_repository import DocumentFileRepository
from doclink.repositories.document_repository import DocumentRepository
from doclink.repositories.link_repository import LinkRepository
from doclink.repositories.staging_repository import StagingRepository
from doclink.schemas.reconciliation import (
    DeadLetterEntry,
    ItemError,
    LinkCountAnomaly,
    ReconciliationResult,
)
from doclink.services.base_service import BaseService
from doclink.services.document_resolver import DocumentResolver
from doclink.services.link_completion_service import LinkCompletionService
from doclink.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class ItemAttempt:
    """Side effects collected while applying one staged item."""

    kind: StagingKind
    staged_id: int
    created_document_ids: List[int] = field(default_factory=list)
    anomalies: List[LinkCountAnomaly] = field(default_factory=list)


@dataclass(frozen=True)
class ItemOutcome:
    """Result of applying one staged item.

    The caller commits the content store exactly once when ``succeeded``
    is set and rolls back otherwise.
    """

    kind: StagingKind
    staged_id: int
    succeeded: bool
    skipped: bool = False
    error: Optional[str] = None
    anomalies: tuple = ()

    @classmethod
    def committed(cls, attempt: ItemAttempt) -> "ItemOutcome":
        return cls(attempt.kind, attempt.staged_id, True, anomalies=tuple(attempt.anomalies))

    @classmethod
    def failed(cls, attempt: ItemAttempt, error: Exception) -> "ItemOutcome":
        return cls(attempt.kind, attempt.staged_id, False, error=f"{type(error).__name__}: {error}")

    @classmethod
    def claimed_elsewhere(cls, kind: StagingKind, staged_id: int) -> "ItemOutcome":
        return cls(kind, staged_id, False, skipped=True)


def link_label(from_title: str, to_title: str) -> str:
    return f"LINK {from_title} TO {to_title}"


def staging_key_for(staged: StagedLink) -> str:
    """Replay key of a staged link: its row ID plus its creation time.

    Staging IDs alone can be handed out again once a row is deleted, so the
    creation timestamp keeps a later link with a reused ID distinct.
    """
    created_at = staged.created_at
    if created_at is None:
        return str(staged.id)
    if created_at.tzinfo is not None:
        created_at = created_at.astimezone(timezone.utc).replace(tzinfo=None)
    return f"{staged.id}@{created_at.isoformat()}"


class ReconciliationService(BaseService):
    """Drain the staging store into the content store.

    Per-item failures never abort the batch: the staged row is flagged
    failed and picked up by the sweep of a later step or run.
    """

    def __init__(
        self,
        session: AsyncSession,
        staging_session: AsyncSession,
        failed_item_max_age: Optional[timedelta] = None,
    ):
        """Initialize reconciliation service.

        Args:
            session: Content store session
            staging_session: Staging store session
            failed_item_max_age: Age after which a failed row that cannot be
                swept is dead-lettered. Defaults to ``FAILED_ITEM_MAX_AGE_HOURS``.
        """
        super().__init__()
        self.session = session
        self.staging_session = staging_session
        self.document_repo = DocumentRepository(session)
        self.document_file_repo = DocumentFileRepository(session)
        self.link_repo = LinkRepository(session)
        self.staging_repo = StagingRepository(staging_session)
        self.resolver = DocumentResolver(session, self.document_repo)
        self.link_completion = LinkCompletionService(session)
        if failed_item_max_age is None:
            failed_item_max_age = timedelta(hours=settings.failed_item_max_age_hours)
        self.failed_item_max_age = failed_item_max_age

    async def reconcile(self, max_items: Optional[int] = None) -> ReconciliationResult:
        """Run one bounded reconciliation batch.

        Args:
            max_items: Upper bound on pending documents plus links merged in
                this run. Defaults to ``RECONCILE_DEFAULT_MAX_ITEMS``.

        Returns:
            ReconciliationResult with per-step counters, anomalies and errors
        """
        if max_items is None:
            max_items = settings.reconcile_default_max_items
        return await self.execute(action="reconcile", max_items=max_items)

    async def list_dead_letters(
        self,
        kind: Optional[StagingKind] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[DeadLetterEntry]:
        """List rows moved to the dead-letter table, oldest first."""
        return await self.execute(action="list_dead_letters", kind=kind, limit=limit, offset=offset)

    def validate(self, *args, **kwargs):
        if kwargs.get("action") != "reconcile":
            return
        max_items = kwargs.get("max_items")
        if isinstance(max_items, bool) or not isinstance(max_items, int) or max_items < 0:
            raise ValidationError(f"max_items must be a non-negative integer, got {max_items!r}")

    async def run(self, *args, **kwargs) -> Any:
        action = kwargs.get("action")

        if action == "reconcile":
            return await self._reconcile_logic(kwargs["max_items"])
        elif action == "list_dead_letters":
            return await self._list_dead_letters_logic(kwargs["kind"], kwargs["limit"], kwargs["offset"])
        else:
            raise AppError(f"Unknown action: {action}")

    async def _reconcile_logic(self, max_items: int) -> ReconciliationResult:
        result = ReconciliationResult(max_items=max_items)

        LOGGER.info(f"Starting reconciliation run (max_items={max_items})")

        document_ids = await self._fetch_pending(StagingKind.DOCUMENT, max_items // 2)
        for staged_id in document_ids:
            outcome = await self._process_item(StagingKind.DOCUMENT, staged_id, self._apply_document)
            self._record(result, outcome, "documents_processed", "documents_failed")

        link_ids = await self._fetch_pending(StagingKind.LINK, max_items - len(document_ids))
        for staged_id in link_ids:
            outcome = await self._process_item(StagingKind.LINK, staged_id, self._apply_link)
            self._record(result, outcome, "links_processed", "links_failed")

        result.file_paths_swept = await self._sweep(StagingKind.FILE_PATH, self._sweep_file_path, result)
        result.documents_swept = await self._sweep(StagingKind.DOCUMENT, self._sweep_document, result)
        result.links_swept = await self._sweep(StagingKind.LINK, self._sweep_link, result)

        LOGGER.info(
            "Reconciliation run finished",
            extra=result.model_dump(exclude={"anomalies", "errors"})
        )
        return result

    async def _list_dead_letters_logic(
        self, kind: Optional[StagingKind], limit: int, offset: int
    ) -> List[DeadLetterEntry]:
        try:
            entries = await self.staging_repo.list_dead_letters(kind=kind, skip=offset, limit=limit)
            return [DeadLetterEntry.from_model(entry) for entry in entries]
        finally:
            await self.staging_session.rollback()

    # Ingestion

    async def _fetch_pending(self, kind: StagingKind, limit: int) -> List[int]:
        try:
            rows = await self.staging_repo.fetch_pending(kind, limit)
            return [row.id for row in rows]
        finally:
            # Release the read transaction; each item claims its row afresh
            await self.staging_session.rollback()

    async def _process_item(
        self,
        kind: StagingKind,
        staged_id: int,
        apply: Callable[[Any, ItemAttempt], Awaitable[None]],
    ) -> ItemOutcome:
        """Claim, apply and settle one staged item."""
        attempt = ItemAttempt(kind=kind, staged_id=staged_id)

        try:
            staged = await self.staging_repo.claim(kind, staged_id)
        except Exception as e:
            await self.staging_session.rollback()
            LOGGER.error(f"Could not claim staged {kind.value} {staged_id}", exc_info=True)
            return ItemOutcome.failed(attempt, e)

        if staged is None:
            await self.staging_session.rollback()
            LOGGER.info(f"Staged {kind.value} {staged_id} is gone or held by another run, skipping")
            return ItemOutcome.claimed_elsewhere(kind, staged_id)

        try:
            await apply(staged, attempt)
            outcome = ItemOutcome.committed(attempt)
        except Exception as e:
            outcome = ItemOutcome.failed(attempt, e)

        if outcome.succeeded:
            try:
                await self.session.commit()
            except Exception as e:
                outcome = ItemOutcome.failed(attempt, e)

        if not outcome.succeeded:
            await self.session.rollback()
            await self._discard_placeholders(attempt.created_document_ids)
            LOGGER.error(
                f"Failed to merge staged {kind.value} {staged_id}: {outcome.error}",
                extra={"kind": kind.value, "staged_id": staged_id}
            )

        try:
            if outcome.succeeded:
                await self.staging_repo.delete(kind, staged_id)
            else:
                await self.staging_repo.mark_failed(kind, staged_id)
            await self.staging_session.commit()
        except Exception:
            await self.staging_session.rollback()
            # The content side is settled; the staged row is retried next run
            LOGGER.error(
                f"Could not settle staged {kind.value} {staged_id} in the staging store",
                exc_info=True
            )
            return outcome

        if outcome.succeeded:
            LOGGER.info(f"Merged staged {kind.value} {staged_id}")
        return outcome

    async def _apply_document(self, staged: StagedDocument, attempt: ItemAttempt) -> None:
        """Create or overwrite the document carried by a staged row."""
        if not staged.title:
            raise ValidationError(f"Staged document {staged.id} has no title")

        if staged.document_file_id is not None:
            if await self.document_file_repo.get_by_id(staged.document_file_id) is None:
                raise DocumentFileNotFoundError(
                    f"Document file {staged.document_file_id} not found"
                )

        fields = {
            "document_metadata": staged.document_metadata,
            "document_file_id": staged.document_file_id,
            "expected_link_count": (
                UNKNOWN_LINK_COUNT if staged.link_count is None else staged.link_count
            ),
        }

        document = await self.document_repo.get_active_by_title(staged.title)
        if document is None:
            resolved = await self.resolver.resolve(staged.title, defaults=fields)
            document_id = resolved.document_id
            if resolved.created:
                attempt.created_document_ids.append(document_id)
            else:
                document = await self.document_repo.get_by_id(document_id)

        if document is not None:
            document_id = document.id
            await self.document_repo.apply_ingested_fields(document.id, **fields)

        if staged.document_file_id is not None:
            await self.document_file_repo.set_status(
                staged.document_file_id, StatusTrack.DOC, ProcessingStatus.PROCESSED
            )

        # Links may have arrived before this document did
        anomaly = await self.link_completion.check(document_id)
        if anomaly is not None:
            attempt.anomalies.append(anomaly)

    async def _apply_link(self, staged: StagedLink, attempt: ItemAttempt) -> None:
        """Create the link carried by a staged row, resolving both endpoints."""
        if not staged.from_title or not staged.to_title:
            raise ValidationError(f"Staged link {staged.id} is missing a title")

        staging_key: Optional[str] = staging_key_for(staged)
        existing = await self.link_repo.get_by_staging_key(staging_key)
        if existing is not None:
            if await self._link_matches(existing, staged):
                LOGGER.info(f"Staged link {staged.id} was already merged as link {existing.id}")
                return
            LOGGER.warning(
                f"Staging key {staging_key} already used by link {existing.id} with different titles",
                extra={"staged_id": staged.id, "link_id": existing.id}
            )
            staging_key = None

        source = await self.resolver.resolve(staged.from_title)
        if source.created:
            attempt.created_document_ids.append(source.document_id)

        target = await self.resolver.resolve(staged.to_title)
        if target.created:
            attempt.created_document_ids.append(target.document_id)

        await self.link_repo.create_link(
            from_document_id=source.document_id,
            to_document_id=target.document_id,
            label=link_label(staged.from_title, staged.to_title),
            staging_key=staging_key,
        )

        anomaly = await self.link_completion.check(source.document_id)
        if anomaly is not None:
            attempt.anomalies.append(anomaly)

    async def _link_matches(self, link, staged: StagedLink) -> bool:
        source = await self.document_repo.get_by_id(link.from_document_id)
        target = await self.document_repo.get_by_id(link.to_document_id)
        return (
            source is not None
            and target is not None
            and source.title == staged.from_title
            and target.title == staged.to_title
        )

    async def _discard_placeholders(self, document_ids: List[int]) -> None:
        """Best-effort removal of documents created by a failed attempt.

        The rollback normally takes them with it; anything that survived is
        deleted here. Failures are logged and otherwise ignored, since a
        stray placeholder is reused by the next attempt for the same title.
        """
        for document_id in document_ids:
            try:
                if await self.document_repo.delete(document_id):
                    await self.session.commit()
                    LOGGER.info(f"Removed orphaned placeholder document {document_id}")
            except Exception:
                await self.session.rollback()
                LOGGER.warning(
                    f"Could not remove placeholder document {document_id}, leaving it in place",
                    exc_info=True
                )

    @staticmethod
    def _record(result: ReconciliationResult, outcome: ItemOutcome, ok_field: str, failed_field: str) -> None:
        if outcome.skipped:
            result.items_skipped += 1
        elif outcome.succeeded:
            setattr(result, ok_field, getattr(result, ok_field) + 1)
            result.anomalies.extend(outcome.anomalies)
        else:
            setattr(result, failed_field, getattr(result, failed_field) + 1)
            result.errors.append(
                ItemError(kind=outcome.kind.value, staged_id=outcome.staged_id, error=outcome.error or "")
            )

    # Failure sweeps

    async def _sweep(
        self,
        kind: StagingKind,
        settle: Callable[[Any, ReconciliationResult], Awaitable[bool]],
        result: ReconciliationResult,
    ) -> int:
        """Settle every failed row of one kind; returns how many were cleared."""
        try:
            rows = await self.staging_repo.fetch_failed(kind)
            staged_ids = [row.id for row in rows]
        finally:
            await self.staging_session.rollback()

        cleared = 0
        for staged_id in staged_ids:
            try:
                staged = await self.staging_repo.claim(kind, staged_id, failed=True)
                if staged is None:
                    await self.staging_session.rollback()
                    continue

                if await settle(staged, result):
                    cleared += 1
                else:
                    await self.session.rollback()
                    await self.staging_session.rollback()
            except Exception as e:
                await self.session.rollback()
                await self.staging_session.rollback()
                LOGGER.error(f"Failed to sweep staged {kind.value} {staged_id}", exc_info=True)
                result.errors.append(ItemError(kind=kind.value, staged_id=staged_id, error=str(e)))
        return cleared

    async def _fail_track(
        self,
        kind: StagingKind,
        staged: Any,
        document_file_id: Optional[int],
        track: StatusTrack,
        result: ReconciliationResult,
    ) -> bool:
        """Set a status track to Failed, then drop the staged row."""
        staged_id = staged.id
        if document_file_id is None:
            LOGGER.warning(f"Failed staged {kind.value} {staged_id} has no document file")
            return await self._defer_or_dead_letter(kind, staged, "No document file", result)
        try:
            moved = await self.document_file_repo.set_status(document_file_id, track, ProcessingStatus.FAILED)
        except DocumentFileNotFoundError:
            LOGGER.warning(
                f"Document file {document_file_id} for failed staged {kind.value} {staged_id} does not exist"
            )
            return await self._defer_or_dead_letter(
                kind, staged, f"Document file {document_file_id} not found", result
            )

        await self.session.commit()
        await self.staging_repo.delete(kind, staged_id)
        await self.staging_session.commit()
        if moved:
            LOGGER.info(f"Swept failed staged {kind.value} {staged_id} into {track.value}=Failed")
        else:
            LOGGER.info(f"Dropped failed staged {kind.value} {staged_id}, {track.value} is already final")
        return True

    async def _defer_or_dead_letter(
        self,
        kind: StagingKind,
        staged: Any,
        reason: str,
        result: ReconciliationResult,
    ) -> bool:
        """Leave a failed row for a later run, or dead-letter it once it is too old.

        Returns False either way: the row was not swept into a status.
        """
        staged_id = staged.id
        if self._age(staged.created_at) < self.failed_item_max_age:
            result.deferred += 1
            return False

        await self.staging_repo.dead_letter(
            kind, staged, reason=f"{reason} after {self.failed_item_max_age}"
        )
        await self.staging_session.commit()
        result.dead_lettered += 1
        LOGGER.warning(
            f"Dead-lettered failed staged {kind.value} {staged_id}",
            extra={"kind": kind.value, "staged_id": staged_id, "reason": reason}
        )
        return False

    async def _sweep_file_path(self, staged: StagedFilePath, result: ReconciliationResult) -> bool:
        return await self._fail_track(
            StagingKind.FILE_PATH, staged, staged.document_file_id, StatusTrack.DOC, result
        )

    async def _sweep_document(self, staged: StagedDocument, result: ReconciliationResult) -> bool:
        return await self._fail_track(
            StagingKind.DOCUMENT, staged, staged.document_file_id, StatusTrack.DOC, result
        )

    async def _sweep_link(self, staged: StagedLink, result: ReconciliationResult) -> bool:
        from_title = staged.from_title
        source = await self.document_repo.get_active_by_title(from_title) if from_title else None
        if source is not None and source.document_file_id is not None:
            return await self._fail_track(
                StagingKind.LINK, staged, source.document_file_id, StatusTrack.LINKS, result
            )

        # Source document not known yet
        return await self._defer_or_dead_letter(
            StagingKind.LINK, staged, f"No document with a file for '{from_title}'", result
        )

    @staticmethod
    def _age(created_at: Optional[datetime]) -> timedelta:
        if created_at is None:
            return timedelta(0)
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - created_at
