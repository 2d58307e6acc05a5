"""Repository layer modules."""

from doclink.repositories.document_file_repository import DocumentFileRepository
from doclink.repositories.document_repository import DocumentRepository
from doclink.repositories.link_repository import LinkRepository
from doclink.repositories.staging_repository import StagingRepository

__all__ = [
    "DocumentFileRepository",
    "DocumentRepository",
    "LinkRepository",
    "StagingRepository",
]
