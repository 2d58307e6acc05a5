from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Annotated

from doclink.core.database import get_async_session as get_session
from doclink.core.exceptions import DocumentNotFoundError
from doclink.schemas.common import ApiResponse
from doclink.services.catalog_service import CatalogService
from doclink.utils.logging import get_logger
from doclink.utils.responses import create_api_response, create_error_detail

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_catalog_service(
    db_session: Annotated[AsyncSession, Depends(get_session)]
) -> CatalogService:
    return CatalogService(db_session)


@router.get(
    "/",
    response_model=ApiResponse,
    summary="List documents",
    operation_id="list_documents",
)
async def list_documents(
    request: Request,
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    catalog_service: Annotated[CatalogService, Depends(get_catalog_service)] = None,
) -> ApiResponse:
    """List active documents and whether each is fully processed."""
    documents = await catalog_service.list_documents(limit=limit, offset=offset)

    return create_api_response(
        data=documents,
        message="Documents retrieved successfully",
        request=request
    )


@router.get(
    "/{document_id}/links",
    response_model=ApiResponse,
    summary="List outgoing links of a document",
    operation_id="list_document_links",
)
async def list_document_links(
    request: Request,
    document_id: int,
    catalog_service: Annotated[CatalogService, Depends(get_catalog_service)] = None,
) -> ApiResponse:
    """Retrieve the active links from a document, one per target."""
    try:
        links = await catalog_service.list_links(document_id)
    except DocumentNotFoundError:
        error_detail = create_error_detail(
            title="Document Not Found",
            status=status.HTTP_404_NOT_FOUND,
            detail=f"Document with ID {document_id} not found",
            request=request
        )
        raise HTTPException(status_code=404, detail=error_detail.model_dump(mode="json"))

    return create_api_response(
        data=links,
        message="Links retrieved successfully",
        request=request
    )
