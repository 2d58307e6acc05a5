"""Processing status lifecycle for document files.

Every ``DocumentFile`` carries two independent status tracks: one for the
document's own metadata (``doc_status``) and one for its outgoing links
(``links_status``). Both start at ``Processing`` and move to one of the
terminal states.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional

from doclink.core.exceptions import InvalidStatusTransitionError

if TYPE_CHECKING:
    from doclink.database.models import DocumentFile


class ProcessingStatus(str, Enum):
    PROCESSING = "Processing"
    PROCESSED = "Processed"
    FAILED = "Failed"


class StatusTrack(str, Enum):
    """Which of the two status columns on a DocumentFile is addressed."""

    DOC = "doc_status"
    LINKS = "links_status"


# A failed track may still complete when a later ingestion succeeds.
# Nothing ever returns to Processing, and Processed is final.
ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.PROCESSING: frozenset({ProcessingStatus.PROCESSED, ProcessingStatus.FAILED}),
    ProcessingStatus.FAILED: frozenset({ProcessingStatus.PROCESSED}),
    ProcessingStatus.PROCESSED: frozenset(),
}


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    """Return True if ``current -> target`` is permitted (self-moves included)."""
    return current == target or target in ALLOWED_TRANSITIONS[current]


def transition(current: ProcessingStatus, target: ProcessingStatus) -> ProcessingStatus:
    """Validate a status change and return the resulting status.

    Raises:
        InvalidStatusTransitionError: If the move is not permitted
    """
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(current, target)
    return target


def is_fully_processed(document_file: Optional["DocumentFile"]) -> bool:
    """True iff both the document and links tracks reached Processed."""
    if document_file is None:
        return False
    return (
        document_file.doc_status == ProcessingStatus.PROCESSED
        and document_file.links_status == ProcessingStatus.PROCESSED
    )
