import pytest
from sqlalchemy import func, select

from doclink.database.models import Document, UNKNOWN_LINK_COUNT
from doclink.repositories.document_repository import DocumentRepository
from doclink.services.document_resolver import DocumentResolver


async def count_documents(sessions, title):
    async with sessions() as session:
        result = await session.execute(
            select(func.count()).select_from(Document).where(Document.title == title)
        )
        return result.scalar_one()


@pytest.mark.asyncio
async def test_resolve_creates_placeholder(session, content_sessions):
    resolved = await DocumentResolver(session).resolve("Report B")
    await session.commit()

    assert resolved.created
    async with content_sessions() as check:
        document = await check.get(Document, resolved.document_id)
        assert document.title == "Report B"
        assert document.expected_link_count == UNKNOWN_LINK_COUNT
        assert document.document_file_id is None
        assert document.is_placeholder


@pytest.mark.asyncio
async def test_resolve_is_idempotent_within_one_transaction(session, content_sessions):
    resolver = DocumentResolver(session)

    first = await resolver.resolve("Report B")
    second = await resolver.resolve("Report B")
    await session.commit()

    assert first.document_id == second.document_id
    assert first.created and not second.created
    assert await count_documents(content_sessions, "Report B") == 1


@pytest.mark.asyncio
async def test_resolve_matches_titles_exactly(session):
    resolver = DocumentResolver(session)

    lower = await resolver.resolve("report b")
    upper = await resolver.resolve("Report B")

    assert lower.document_id != upper.document_id


@pytest.mark.asyncio
async def test_resolve_uses_defaults_only_when_creating(session):
    resolver = DocumentResolver(session)

    created = await resolver.resolve("Report A", defaults={"expected_link_count": 3, "document_metadata": "m"})
    again = await resolver.resolve("Report A", defaults={"expected_link_count": 9})

    document = await DocumentRepository(session).get_by_id(created.document_id)
    assert again.document_id == created.document_id
    assert document.expected_link_count == 3
    assert document.document_metadata == "m"


@pytest.mark.asyncio
async def test_resolve_reuses_concurrently_created_document(session, content_sessions):
    # Another run inserts the title between our lookup and our insert
    async with content_sessions() as other:
        winner = await DocumentRepository(other).create_document(title="Report C")
        await other.commit()
        winner_id = winner.id

    resolver = DocumentResolver(session)
    original_lookup = resolver.document_repo.get_active_by_title
    calls = []

    async def stale_lookup(title):
        calls.append(title)
        if len(calls) == 1:
            return None
        return await original_lookup(title)

    resolver.document_repo.get_active_by_title = stale_lookup

    resolved = await resolver.resolve("Report C")
    await session.commit()

    assert resolved.document_id == winner_id
    assert not resolved.created
    assert await count_documents(content_sessions, "Report C") == 1
