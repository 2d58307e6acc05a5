from fastapi import APIRouter
from doclink.api.v1.endpoints import documents, files, reconcile

# Create API router
api_router = APIRouter()

# Include routers
api_router.include_router(documents.router, prefix="/documents", tags=["Documents"])
api_router.include_router(files.router, prefix="/files", tags=["Files"])
api_router.include_router(reconcile.router, prefix="/reconcile", tags=["Reconciliation"])

__all__ = ["api_router"]
