"""SQLAlchemy models for the content store."""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TIMESTAMP,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from doclink.core.database import Base
from doclink.core.status import ProcessingStatus

# Placeholder documents and documents whose link count is not known yet
UNKNOWN_LINK_COUNT = -1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def status_column() -> Mapped[ProcessingStatus]:
    return mapped_column(
        Enum(
            ProcessingStatus,
            name="processing_status",
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
        default=ProcessingStatus.PROCESSING,
    )


class DocumentFile(Base):
    """Uploaded source file plus its two processing status tracks."""

    __tablename__ = "document_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_file_path: Mapped[str] = mapped_column(String, nullable=False)
    aux_file_path: Mapped[str | None] = mapped_column(String, nullable=True)
    doc_status: Mapped[ProcessingStatus] = status_column()
    links_status: Mapped[ProcessingStatus] = status_column()
    sent_to_pipeline: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    documents: Mapped[list["Document"]] = relationship("Document", back_populates="document_file")


class Document(Base):
    """Canonical record for one tracked unit of content, matched by title."""

    __tablename__ = "documents"
    __table_args__ = (
        # One active document per title
        Index(
            "uq_documents_active_title",
            "title",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    document_metadata: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_file_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("document_files.id"), nullable=True
    )
    expected_link_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=UNKNOWN_LINK_COUNT
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    document_file: Mapped["DocumentFile | None"] = relationship(
        "DocumentFile", back_populates="documents"
    )

    @property
    def is_placeholder(self) -> bool:
        return self.document_file_id is None and self.expected_link_count == UNKNOWN_LINK_COUNT


class Link(Base):
    """Directed relationship between two documents."""

    __tablename__ = "links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str | None] = mapped_column(String(512), nullable=True)
    from_document_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("documents.id"), nullable=False, index=True
    )
    to_document_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("documents.id"), nullable=False
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # ID and creation time of the staged row this link was created from
    staging_key: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utc_now)

    # Relationships
    from_document: Mapped["Document"] = relationship("Document", foreign_keys=[from_document_id])
    to_document: Mapped["Document"] = relationship("Document", foreign_keys=[to_document_id])
