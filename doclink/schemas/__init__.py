"""Pydantic schemas."""

from doclink.schemas.common import ApiResponse, ErrorDetail, ResponseMeta
from doclink.schemas.documents import (
    CreateFileRequest,
    DocumentSummary,
    FileCreatedResponse,
    FileStatusResponse,
    LinkSummary,
    UploadFileRequest,
)
from doclink.schemas.reconciliation import (
    DeadLetterEntry,
    ItemError,
    LinkCountAnomaly,
    ReconciliationResult,
)

__all__ = [
    "ApiResponse",
    "ErrorDetail",
    "ResponseMeta",
    "CreateFileRequest",
    "DocumentSummary",
    "FileCreatedResponse",
    "FileStatusResponse",
    "LinkSummary",
    "UploadFileRequest",
    "DeadLetterEntry",
    "ItemError",
    "LinkCountAnomaly",
    "ReconciliationResult",
]
