import json
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from doclink.core.exceptions import ValidationError
from doclink.core.status import ProcessingStatus
from doclink.database.models import Document, DocumentFile, Link
from doclink.database.staging_models import DeadLetter, StagedDocument, StagedFilePath, StagedLink, StagingKind
from doclink.services.reconciliation_service import ReconciliationService, link_label, staging_key_for


async def reconcile(content_sessions, staging_sessions, max_items=10, **kwargs):
    async with content_sessions() as session, staging_sessions() as staging_session:
        service = ReconciliationService(session, staging_session, **kwargs)
        return await service.reconcile(max_items=max_items)


async def all_rows(sessions, model):
    async with sessions() as session:
        result = await session.execute(select(model).order_by(model.id))
        return list(result.scalars().all())


async def documents_by_title(content_sessions):
    return {document.title: document for document in await all_rows(content_sessions, Document)}


async def get_file(content_sessions, file_id):
    async with content_sessions() as session:
        return await session.get(DocumentFile, file_id)


@pytest.mark.asyncio
async def test_document_then_links_in_one_run(content_sessions, staging_sessions, make_document_file, stage):
    file_id = await make_document_file()
    await stage(StagingKind.DOCUMENT, title="Report A", document_metadata="{}", document_file_id=file_id, link_count=2)
    await stage(StagingKind.LINK, from_title="Report A", to_title="Report B")
    await stage(StagingKind.LINK, from_title="Report A", to_title="Report C")

    result = await reconcile(content_sessions, staging_sessions, max_items=10)

    assert result.documents_processed == 1
    assert result.links_processed == 2
    assert result.errors == []

    documents = await documents_by_title(content_sessions)
    assert set(documents) == {"Report A", "Report B", "Report C"}
    assert documents["Report A"].expected_link_count == 2
    assert documents["Report A"].document_file_id == file_id
    assert documents["Report B"].is_placeholder
    assert documents["Report C"].is_placeholder

    links = await all_rows(content_sessions, Link)
    assert [(link.from_document_id, link.to_document_id) for link in links] == [
        (documents["Report A"].id, documents["Report B"].id),
        (documents["Report A"].id, documents["Report C"].id),
    ]
    assert links[0].label == link_label("Report A", "Report B")
    assert all(link.active for link in links)

    document_file = await get_file(content_sessions, file_id)
    assert document_file.doc_status == ProcessingStatus.PROCESSED
    assert document_file.links_status == ProcessingStatus.PROCESSED

    assert await all_rows(staging_sessions, StagedDocument) == []
    assert await all_rows(staging_sessions, StagedLink) == []


@pytest.mark.parametrize("link_total,expected_status,has_anomaly", [
    (2, ProcessingStatus.PROCESSING, False),
    (3, ProcessingStatus.PROCESSED, False),
    (4, ProcessingStatus.PROCESSED, True),
])
@pytest.mark.asyncio
async def test_link_count_completion(
    content_sessions, staging_sessions, make_document_file, stage, caplog,
    link_total, expected_status, has_anomaly,
):
    file_id = await make_document_file()
    await stage(StagingKind.DOCUMENT, title="Report A", document_file_id=file_id, link_count=3)
    for i in range(link_total):
        await stage(StagingKind.LINK, from_title="Report A", to_title=f"Target {i}")

    with caplog.at_level(logging.ERROR):
        result = await reconcile(content_sessions, staging_sessions, max_items=20)

    assert result.links_processed == link_total
    assert (await get_file(content_sessions, file_id)).links_status == expected_status

    if has_anomaly:
        assert len(result.anomalies) == 1
        assert result.anomalies[0].expected == 3
        assert result.anomalies[0].actual == 4
        assert "Too many links processed for document 'Report A'" in caplog.text
    else:
        assert result.anomalies == []


@pytest.mark.asyncio
async def test_links_before_document_create_placeholders(content_sessions, staging_sessions, make_document_file, stage):
    await stage(StagingKind.LINK, from_title="Report A", to_title="Report B")

    first = await reconcile(content_sessions, staging_sessions)

    assert first.links_processed == 1
    documents = await documents_by_title(content_sessions)
    assert documents["Report A"].is_placeholder
    assert documents["Report B"].is_placeholder
    placeholder_id = documents["Report A"].id

    # The real document arrives later and takes over the placeholder
    file_id = await make_document_file()
    await stage(StagingKind.DOCUMENT, title="Report A", document_metadata="meta", document_file_id=file_id, link_count=1)

    second = await reconcile(content_sessions, staging_sessions)

    assert second.documents_processed == 1
    documents = await documents_by_title(content_sessions)
    assert documents["Report A"].id == placeholder_id
    assert documents["Report A"].document_metadata == "meta"
    assert documents["Report A"].expected_link_count == 1
    assert len(documents) == 2

    document_file = await get_file(content_sessions, file_id)
    assert document_file.doc_status == ProcessingStatus.PROCESSED
    # The link was already there, so the count is reached on ingestion
    assert document_file.links_status == ProcessingStatus.PROCESSED


@pytest.mark.asyncio
async def test_reingesting_a_document_overwrites_fields(content_sessions, staging_sessions, make_document_file, stage):
    file_id = await make_document_file()
    await stage(StagingKind.DOCUMENT, title="Report A", document_metadata="v1", document_file_id=file_id, link_count=5)
    await reconcile(content_sessions, staging_sessions)

    await stage(StagingKind.DOCUMENT, title="Report A", document_metadata=None, document_file_id=file_id, link_count=0)
    await reconcile(content_sessions, staging_sessions)

    documents = await documents_by_title(content_sessions)
    assert len(documents) == 1
    assert documents["Report A"].document_metadata is None
    assert documents["Report A"].expected_link_count == 0
    assert (await get_file(content_sessions, file_id)).links_status == ProcessingStatus.PROCESSED


@pytest.mark.asyncio
async def test_failed_item_does_not_stop_the_batch(content_sessions, staging_sessions, make_document_file, stage):
    file_id = await make_document_file()
    bad_id = await stage(StagingKind.DOCUMENT, title="Broken", document_file_id=9999, link_count=1)
    await stage(StagingKind.DOCUMENT, title="Report A", document_file_id=file_id, link_count=0)

    result = await reconcile(content_sessions, staging_sessions)

    assert result.documents_processed == 1
    assert result.documents_failed == 1
    assert result.errors[0].staged_id == bad_id
    assert "DocumentFileNotFoundError" in result.errors[0].error

    documents = await documents_by_title(content_sessions)
    assert set(documents) == {"Report A"}

    # The document file is unknown, so the sweep leaves the row for later
    remaining = await all_rows(staging_sessions, StagedDocument)
    assert [(row.id, row.failed) for row in remaining] == [(bad_id, True)]
    assert result.documents_swept == 0


@pytest.mark.asyncio
async def test_failed_link_rolls_back_its_placeholders(content_sessions, staging_sessions, stage):
    staged_id = await stage(StagingKind.LINK, from_title="Report A", to_title="Report B")

    async with content_sessions() as session, staging_sessions() as staging_session:
        service = ReconciliationService(session, staging_session)
        service.link_repo.create_link = AsyncMock(side_effect=RuntimeError("disk full"))
        result = await service.reconcile(max_items=10)

    assert result.links_failed == 1
    assert result.errors[0].error == "RuntimeError: disk full"
    assert await all_rows(content_sessions, Document) == []
    assert await all_rows(content_sessions, Link) == []

    # Source document still unknown, so the failed row waits for it
    assert result.deferred == 1
    remaining = await all_rows(staging_sessions, StagedLink)
    assert [(row.id, row.failed) for row in remaining] == [(staged_id, True)]


@pytest.mark.asyncio
async def test_sweeps_fail_status_tracks(content_sessions, staging_sessions, make_document_file, stage):
    path_file_id = await make_document_file("/data/pdfs/a.pdf")
    doc_file_id = await make_document_file("/data/pdfs/b.pdf")
    link_file_id = await make_document_file("/data/pdfs/c.pdf")
    await stage(StagingKind.FILE_PATH, pdf_path="/data/pdfs/a.pdf", document_file_id=path_file_id, failed=True)
    await stage(StagingKind.DOCUMENT, title="Report B", document_file_id=doc_file_id, link_count=1, failed=True)
    await stage(StagingKind.DOCUMENT, title="Report C", document_file_id=link_file_id, link_count=2)
    await stage(StagingKind.LINK, from_title="Report C", to_title="Report D", failed=True)

    result = await reconcile(content_sessions, staging_sessions)

    assert result.file_paths_swept == 1
    assert result.documents_swept == 1
    assert result.links_swept == 1

    assert (await get_file(content_sessions, path_file_id)).doc_status == ProcessingStatus.FAILED
    assert (await get_file(content_sessions, doc_file_id)).doc_status == ProcessingStatus.FAILED
    link_file = await get_file(content_sessions, link_file_id)
    assert link_file.doc_status == ProcessingStatus.PROCESSED
    assert link_file.links_status == ProcessingStatus.FAILED

    assert await all_rows(staging_sessions, StagedDocument) == []
    assert await all_rows(staging_sessions, StagedLink) == []


@pytest.mark.asyncio
async def test_sweep_never_moves_processed_back(content_sessions, staging_sessions, make_document_file, stage):
    file_id = await make_document_file(doc_status=ProcessingStatus.PROCESSED)
    await stage(StagingKind.DOCUMENT, title="Report A", document_file_id=file_id, link_count=0, failed=True)

    result = await reconcile(content_sessions, staging_sessions)

    assert result.documents_swept == 1
    assert (await get_file(content_sessions, file_id)).doc_status == ProcessingStatus.PROCESSED


@pytest.mark.asyncio
async def test_failed_document_can_still_complete(content_sessions, staging_sessions, make_document_file, stage):
    file_id = await make_document_file(doc_status=ProcessingStatus.FAILED)
    await stage(StagingKind.DOCUMENT, title="Report A", document_file_id=file_id, link_count=0)

    await reconcile(content_sessions, staging_sessions)

    assert (await get_file(content_sessions, file_id)).doc_status == ProcessingStatus.PROCESSED


@pytest.mark.asyncio
async def test_missing_link_count_is_stored_as_unknown(content_sessions, staging_sessions, make_document_file, stage):
    file_id = await make_document_file()
    await stage(StagingKind.DOCUMENT, title="Report A", document_file_id=file_id)

    result = await reconcile(content_sessions, staging_sessions)

    assert result.documents_processed == 1
    document = (await documents_by_title(content_sessions))["Report A"]
    assert document.expected_link_count == -1
    assert not document.is_placeholder

    document_file = await get_file(content_sessions, file_id)
    assert document_file.doc_status == ProcessingStatus.PROCESSED
    assert document_file.links_status == ProcessingStatus.PROCESSING


@pytest.mark.asyncio
async def test_untitled_rows_fail_and_are_swept(content_sessions, staging_sessions, make_document_file, stage):
    file_id = await make_document_file()
    await stage(StagingKind.DOCUMENT, title=None, document_file_id=file_id, link_count=1)
    link_id = await stage(StagingKind.LINK, from_title=None, to_title="Report B")

    result = await reconcile(content_sessions, staging_sessions)

    assert result.documents_failed == 1
    assert result.links_failed == 1
    assert all("ValidationError" in error.error for error in result.errors)
    assert await all_rows(content_sessions, Document) == []

    assert result.documents_swept == 1
    assert (await get_file(content_sessions, file_id)).doc_status == ProcessingStatus.FAILED
    assert await all_rows(staging_sessions, StagedDocument) == []

    # No source title, so the link waits until it expires
    remaining = await all_rows(staging_sessions, StagedLink)
    assert [(row.id, row.failed) for row in remaining] == [(link_id, True)]


@pytest.mark.asyncio
async def test_expired_failed_link_is_dead_lettered(content_sessions, staging_sessions, stage):
    staged_id = await stage(StagingKind.LINK, from_title="Ghost", to_title="Report B", failed=True)

    deferred = await reconcile(content_sessions, staging_sessions)
    assert deferred.deferred == 1
    assert len(await all_rows(staging_sessions, StagedLink)) == 1

    expired = await reconcile(content_sessions, staging_sessions, failed_item_max_age=timedelta(0))

    assert expired.dead_lettered == 1
    assert await all_rows(staging_sessions, StagedLink) == []
    dead = await all_rows(staging_sessions, DeadLetter)
    assert [(entry.kind, entry.staged_id) for entry in dead] == [("link", staged_id)]
    assert json.loads(dead[0].payload)["from_title"] == "Ghost"


@pytest.mark.asyncio
async def test_expired_failed_rows_without_a_document_file_are_dead_lettered(content_sessions, staging_sessions, stage):
    document_id = await stage(StagingKind.DOCUMENT, title="Orphan", document_file_id=9999, link_count=1, failed=True)
    untitled_id = await stage(StagingKind.DOCUMENT, title=None, link_count=1, failed=True)
    path_id = await stage(StagingKind.FILE_PATH, pdf_path="/data/pdfs/gone.pdf", document_file_id=9999, failed=True)

    waiting = await reconcile(content_sessions, staging_sessions)
    assert waiting.deferred == 3
    assert waiting.dead_lettered == 0
    assert len(await all_rows(staging_sessions, StagedDocument)) == 2
    assert len(await all_rows(staging_sessions, StagedFilePath)) == 1

    expired = await reconcile(content_sessions, staging_sessions, failed_item_max_age=timedelta(0))

    assert expired.dead_lettered == 3
    assert expired.documents_swept == 0
    assert expired.file_paths_swept == 0
    assert await all_rows(staging_sessions, StagedDocument) == []
    assert await all_rows(staging_sessions, StagedFilePath) == []
    dead = await all_rows(staging_sessions, DeadLetter)
    assert {(entry.kind, entry.staged_id) for entry in dead} == {
        ("document", document_id),
        ("document", untitled_id),
        ("file_path", path_id),
    }

    async with content_sessions() as session, staging_sessions() as staging_session:
        service = ReconciliationService(session, staging_session)
        entries = await service.list_dead_letters(kind=StagingKind.FILE_PATH)
    assert [(entry.staged_id, entry.payload["pdf_path"]) for entry in entries] == [(path_id, "/data/pdfs/gone.pdf")]
    assert "Document file 9999 not found" in entries[0].reason


@pytest.mark.asyncio
async def test_failed_link_never_moves_completed_links_track_back(content_sessions, staging_sessions, make_document_file, stage):
    file_id = await make_document_file()
    await stage(StagingKind.DOCUMENT, title="Report A", document_file_id=file_id, link_count=1)
    await stage(StagingKind.LINK, from_title="Report A", to_title="Report B")
    await reconcile(content_sessions, staging_sessions)
    assert (await get_file(content_sessions, file_id)).links_status == ProcessingStatus.PROCESSED

    await stage(StagingKind.LINK, from_title="Report A", to_title="Report C", failed=True)
    result = await reconcile(content_sessions, staging_sessions)

    assert result.links_swept == 1
    document_file = await get_file(content_sessions, file_id)
    assert document_file.links_status == ProcessingStatus.PROCESSED
    assert document_file.doc_status == ProcessingStatus.PROCESSED
    assert await all_rows(staging_sessions, StagedLink) == []


@pytest.mark.asyncio
async def test_same_link_staged_twice_creates_two_links(content_sessions, staging_sessions, stage):
    await stage(StagingKind.LINK, from_title="Report A", to_title="Report B")
    await reconcile(content_sessions, staging_sessions)

    await stage(StagingKind.LINK, from_title="Report A", to_title="Report B")
    result = await reconcile(content_sessions, staging_sessions)

    assert result.links_processed == 1
    assert len(await all_rows(content_sessions, Link)) == 2
    assert await all_rows(staging_sessions, StagedLink) == []


@pytest.mark.asyncio
async def test_reused_staging_id_is_not_taken_for_a_replay(content_sessions, staging_sessions, stage):
    await stage(StagingKind.LINK, id=7, from_title="Report A", to_title="Report B")
    await reconcile(content_sessions, staging_sessions)

    # The staging store hands out the same ID again after the delete
    await stage(StagingKind.LINK, id=7, from_title="Report A", to_title="Report B")
    result = await reconcile(content_sessions, staging_sessions)

    assert result.links_processed == 1
    links = await all_rows(content_sessions, Link)
    assert len(links) == 2
    assert all(link.staging_key.startswith("7@") for link in links)
    assert links[0].staging_key != links[1].staging_key


def test_staging_key_for_combines_id_and_creation_time():
    created = datetime(2026, 1, 2, 3, 4, 5, 6, tzinfo=timezone.utc)

    aware = StagedLink(id=7, created_at=created)
    naive = StagedLink(id=7, created_at=created.replace(tzinfo=None))

    assert staging_key_for(aware) == staging_key_for(naive) == "7@2026-01-02T03:04:05.000006"
    assert staging_key_for(StagedLink(id=7, created_at=None)) == "7"
    assert staging_key_for(StagedLink(id=8, created_at=created)) != staging_key_for(aware)


@pytest.mark.asyncio
async def test_reapplying_after_lost_staging_delete_does_not_duplicate(content_sessions, staging_sessions, make_document_file, stage):
    file_id = await make_document_file()
    await stage(StagingKind.DOCUMENT, title="Report A", document_file_id=file_id, link_count=1)
    await stage(StagingKind.LINK, from_title="Report A", to_title="Report B")

    # Content commits land, staging deletes do not
    async with content_sessions() as session, staging_sessions() as staging_session:
        service = ReconciliationService(session, staging_session)
        service.staging_repo.delete = AsyncMock(side_effect=RuntimeError("connection lost"))
        await service.reconcile(max_items=10)

    assert len(await all_rows(staging_sessions, StagedLink)) == 1

    result = await reconcile(content_sessions, staging_sessions)

    assert result.documents_processed == 1
    assert result.links_processed == 1
    assert len(await all_rows(content_sessions, Link)) == 1
    assert len(await all_rows(content_sessions, Document)) == 2
    assert await all_rows(staging_sessions, StagedLink) == []
    assert (await get_file(content_sessions, file_id)).links_status == ProcessingStatus.PROCESSED


@pytest.mark.asyncio
async def test_max_items_splits_between_documents_and_links(content_sessions, staging_sessions, stage):
    for i in range(4):
        await stage(StagingKind.DOCUMENT, title=f"Doc {i}", link_count=0)
        await stage(StagingKind.LINK, from_title=f"Doc {i}", to_title="Shared")

    result = await reconcile(content_sessions, staging_sessions, max_items=4)

    assert result.documents_processed == 2
    assert result.links_processed == 2
    assert len(await all_rows(staging_sessions, StagedDocument)) == 2
    assert len(await all_rows(staging_sessions, StagedLink)) == 2


@pytest.mark.asyncio
async def test_unused_document_budget_goes_to_links(content_sessions, staging_sessions, stage):
    await stage(StagingKind.DOCUMENT, title="Doc", link_count=0)
    for i in range(5):
        await stage(StagingKind.LINK, from_title="Doc", to_title=f"T{i}")

    result = await reconcile(content_sessions, staging_sessions, max_items=5)

    assert result.documents_processed == 1
    assert result.links_processed == 4


@pytest.mark.asyncio
async def test_zero_max_items_only_sweeps(content_sessions, staging_sessions, make_document_file, stage):
    file_id = await make_document_file()
    await stage(StagingKind.DOCUMENT, title="Doc", link_count=0)
    await stage(StagingKind.FILE_PATH, pdf_path="/data/pdfs/a.pdf", document_file_id=file_id, failed=True)

    result = await reconcile(content_sessions, staging_sessions, max_items=0)

    assert result.documents_processed == 0
    assert result.file_paths_swept == 1
    assert len(await all_rows(staging_sessions, StagedDocument)) == 1


@pytest.mark.asyncio
async def test_negative_max_items_is_rejected(session, staging_session):
    with pytest.raises(ValidationError):
        await ReconciliationService(session, staging_session).reconcile(max_items=-1)
