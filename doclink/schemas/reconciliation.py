"""Schemas describing the outcome of a reconciliation run."""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LinkCountAnomaly(BaseModel):
    """A document ended up with more active links than it declared."""

    document_id: int = Field(..., description="Source document ID")
    title: str = Field(..., description="Source document title")
    expected: int = Field(..., description="Declared link count")
    actual: int = Field(..., description="Active links found")


class ItemError(BaseModel):
    """A staged item that could not be merged in this run."""

    kind: str = Field(..., description="Staging kind: document, link or file_path")
    staged_id: int = Field(..., description="ID of the staged row")
    error: str = Field(..., description="Error message")


class ReconciliationResult(BaseModel):
    """Counters for one reconciliation run."""

    max_items: int
    documents_processed: int = 0
    documents_failed: int = 0
    links_processed: int = 0
    links_failed: int = 0
    items_skipped: int = Field(default=0, description="Rows claimed by a concurrent run")
    file_paths_swept: int = 0
    documents_swept: int = 0
    links_swept: int = 0
    deferred: int = Field(default=0, description="Failed rows left for a later run")
    dead_lettered: int = Field(default=0, description="Expired failed rows moved to the dead-letter table")
    anomalies: List[LinkCountAnomaly] = Field(default_factory=list)
    errors: List[ItemError] = Field(default_factory=list)


class DeadLetterEntry(BaseModel):
    """A failed staged row that expired before it could be settled."""

    id: int
    kind: str = Field(..., description="Staging kind: document, link or file_path")
    staged_id: int = Field(..., description="ID the row had in the staging table")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Columns of the staged row")
    reason: str
    failed_at: Optional[datetime] = Field(None, description="When the staged row was created")
    dead_lettered_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, entry) -> "DeadLetterEntry":
        return cls(
            id=entry.id,
            kind=entry.kind,
            staged_id=entry.staged_id,
            payload=json.loads(entry.payload),
            reason=entry.reason,
            failed_at=entry.failed_at,
            dead_lettered_at=entry.dead_lettered_at,
        )
