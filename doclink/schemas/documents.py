"""Request and response schemas for documents and document files."""

from typing import Optional

from pydantic import BaseModel, Field

from doclink.core.status import ProcessingStatus


class DocumentSummary(BaseModel):
    id: int
    title: str
    tracked: bool = Field(..., description="Both status tracks of the document file are Processed")


class LinkSummary(BaseModel):
    from_document_id: int
    to_document_id: int


class FileStatusResponse(BaseModel):
    file_id: int
    doc: ProcessingStatus
    links: ProcessingStatus


class CreateFileRequest(BaseModel):
    """Register a file that is already on disk."""

    source_file_path: str = Field(..., min_length=1, description="Path of the PDF to process")
    aux_file_path: Optional[str] = Field(None, description="Optional secondary file for extraction")
    label: Optional[str] = None


class UploadFileRequest(BaseModel):
    """Upload a PDF as base64."""

    file_name: str = Field(..., min_length=1)
    pdf: str = Field(..., description="Base64 encoded PDF content")


class FileCreatedResponse(BaseModel):
    file_id: int
