from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Annotated, Optional

from doclink.core.database import get_async_session as get_session, get_staging_session
from doclink.database.staging_models import StagingKind
from doclink.schemas.common import ApiResponse
from doclink.services.reconciliation_service import ReconciliationService
from doclink.utils.logging import get_logger
from doclink.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_reconciliation_service(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    staging_session: Annotated[AsyncSession, Depends(get_staging_session)],
) -> ReconciliationService:
    return ReconciliationService(db_session, staging_session)


@router.post(
    "/",
    response_model=ApiResponse,
    summary="Run one reconciliation batch",
    operation_id="run_reconciliation",
)
async def run_reconciliation(
    request: Request,
    max_items: Optional[int] = Query(None, ge=0, description="Upper bound on documents plus links merged"),
    reconciliation_service: Annotated[ReconciliationService, Depends(get_reconciliation_service)] = None,
) -> ApiResponse:
    """Merge pending staged rows and sweep failed ones."""
    result = await reconciliation_service.reconcile(max_items=max_items)

    return create_api_response(
        data=result,
        message=(
            f"Reconciled {result.documents_processed} documents and "
            f"{result.links_processed} links"
        ),
        request=request
    )


@router.get(
    "/dead-letters",
    response_model=ApiResponse,
    summary="List dead-lettered staged rows",
    operation_id="list_dead_letters",
)
async def list_dead_letters(
    request: Request,
    kind: Optional[StagingKind] = Query(None, description="Only rows of this staging kind"),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    reconciliation_service: Annotated[ReconciliationService, Depends(get_reconciliation_service)] = None,
) -> ApiResponse:
    """Failed staged rows that expired before they could be settled."""
    entries = await reconciliation_service.list_dead_letters(kind=kind, limit=limit, offset=offset)

    return create_api_response(
        data=entries,
        message=f"Found {len(entries)} dead-lettered rows",
        request=request
    )
