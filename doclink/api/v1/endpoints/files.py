from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Annotated

from doclink.core.database import get_async_session as get_session, get_staging_session
from doclink.core.exceptions import DocumentFileNotFoundError, InvalidUploadError
from doclink.schemas.common import ApiResponse
from doclink.schemas.documents import CreateFileRequest, UploadFileRequest
from doclink.services.catalog_service import CatalogService
from doclink.services.document_file_service import DocumentFileService
from doclink.utils.logging import get_logger
from doclink.utils.responses import create_api_response, create_error_detail
from doclink.api.v1.endpoints.documents import get_catalog_service

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_document_file_service(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    staging_session: Annotated[AsyncSession, Depends(get_staging_session)],
) -> DocumentFileService:
    return DocumentFileService(db_session, staging_session)


@router.post(
    "/",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a document file",
    operation_id="create_document_file",
)
async def create_document_file(
    request: Request,
    body: CreateFileRequest,
    file_service: Annotated[DocumentFileService, Depends(get_document_file_service)] = None,
) -> ApiResponse:
    """Create a document file for a PDF on disk and stage it for processing."""
    result = await file_service.create_document_file(
        source_file_path=body.source_file_path,
        aux_file_path=body.aux_file_path,
        label=body.label,
    )

    return create_api_response(
        data=result,
        message="Document file created",
        request=request
    )


@router.post(
    "/upload",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a PDF",
    operation_id="upload_document_file",
)
async def upload_document_file(
    request: Request,
    body: UploadFileRequest,
    file_service: Annotated[DocumentFileService, Depends(get_document_file_service)] = None,
) -> ApiResponse:
    """Upload a base64 encoded PDF and create its document file."""
    try:
        result = await file_service.upload(body.file_name, body.pdf)
    except InvalidUploadError as e:
        LOGGER.warning(f"Rejected upload {body.file_name}: {e}")
        error_detail = create_error_detail(
            title="Unsupported Media Type",
            status=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=str(e),
            request=request
        )
        raise HTTPException(status_code=415, detail=error_detail.model_dump(mode="json"))

    return create_api_response(
        data=result,
        message=f"Successfully uploaded {body.file_name}",
        request=request
    )


@router.get(
    "/{file_id}/status",
    response_model=ApiResponse,
    summary="Get document file status",
    operation_id="get_document_file_status",
)
async def get_document_file_status(
    request: Request,
    file_id: int,
    catalog_service: Annotated[CatalogService, Depends(get_catalog_service)] = None,
) -> ApiResponse:
    """Retrieve the doc and links status of a document file."""
    try:
        file_status = await catalog_service.get_file_status(file_id)
    except DocumentFileNotFoundError:
        error_detail = create_error_detail(
            title="Document File Not Found",
            status=status.HTTP_404_NOT_FOUND,
            detail=f"Document file with ID {file_id} not found",
            request=request
        )
        raise HTTPException(status_code=404, detail=error_detail.model_dump(mode="json"))

    return create_api_response(
        data=file_status,
        message="Status retrieved successfully",
        request=request
    )
