"""SQLAlchemy models for the staging store.

Rows in these tables are written by the external document pipeline and
consumed by the reconciliation run. ``failed`` marks a row that could not be
merged and is waiting for the failure sweep.
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Integer, String, Text, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from doclink.core.database import StagingBase


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StagedDocument(StagingBase):
    """Processed-document record waiting to be merged."""

    __tablename__ = "staged_documents"
    # IDs of deleted rows must not be handed out again
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    document_metadata: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_file_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    link_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    failed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utc_now)


class StagedLink(StagingBase):
    """Extracted link between two titles waiting to be merged."""

    __tablename__ = "staged_links"
    # IDs of deleted rows must not be handed out again
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    to_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    failed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utc_now)


class StagedFilePath(StagingBase):
    """File path handed to the pipeline for an uploaded document file."""

    __tablename__ = "staged_file_paths"
    # IDs of deleted rows must not be handed out again
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pdf_path: Mapped[str] = mapped_column(String, nullable=False)
    process_path: Mapped[str] = mapped_column(String, nullable=False, default="")
    document_file_id: Mapped[int] = mapped_column(Integer, nullable=False)
    failed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utc_now)


class DeadLetter(StagingBase):
    """Failed staged row that could not be settled before it expired.

    ``payload`` holds the staged row's own columns as JSON.
    """

    __tablename__ = "dead_letters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    staged_id: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    failed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    dead_lettered_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utc_now)


class StagingKind(str, Enum):
    """The three kinds of pending records in the staging store."""

    DOCUMENT = "document"
    LINK = "link"
    FILE_PATH = "file_path"

    @property
    def model(self) -> type:
        return STAGING_MODELS[self]


STAGING_MODELS: dict[StagingKind, type] = {
    StagingKind.DOCUMENT: StagedDocument,
    StagingKind.LINK: StagedLink,
    StagingKind.FILE_PATH: StagedFilePath,
}
