"""Database module for SQLAlchemy models."""

from doclink.database.models import UNKNOWN_LINK_COUNT, Document, DocumentFile, Link
from doclink.database.staging_models import (
    DeadLetter,
    StagedDocument,
    StagedFilePath,
    StagedLink,
    StagingKind,
)

__all__ = [
    "UNKNOWN_LINK_COUNT",
    "Document",
    "DocumentFile",
    "Link",
    "DeadLetter",
    "StagedDocument",
    "StagedFilePath",
    "StagedLink",
    "StagingKind",
]
