"""Capture record changes as drafts and apply them after review."""

from .applier import apply_draft
from .approval import ApprovalService
from .config import DraftReviewSettings, load_settings
from .coordinator import DraftScope, DraftTransactionCoordinator, current, current_or_fail
from .errors import ErrorCategory, ErrorDetail, exception_to_error
from .models import (
    APPROVAL_ERROR,
    APPROVED,
    CREATE,
    DELETE,
    PENDING_APPROVAL,
    REJECTED,
    UPDATE,
    Draft,
    Draftable,
    DraftTransaction,
    PolymorphicReference,
)
from .options import CreateMethod, DeleteMethod, DraftOptions, UpdateMethod
from .proxy import ChangeInspector, ChangeProxy, ProxyKey
from .references import DraftRef, RecordRef
from .registry import DraftableRegistry, DraftableType
from .repository import DraftTransactionRepository
from .runtime import DraftReviewRuntime
from .serializer import changes_for_record, new_values_for_draft
from .writer import NO_CHANGES, DraftWriter

__all__ = [
    "APPROVAL_ERROR",
    "APPROVED",
    "ApprovalService",
    "CREATE",
    "ChangeInspector",
    "ChangeProxy",
    "CreateMethod",
    "DELETE",
    "DeleteMethod",
    "Draft",
    "DraftOptions",
    "DraftRef",
    "DraftReviewRuntime",
    "DraftReviewSettings",
    "DraftScope",
    "DraftTransaction",
    "DraftTransactionCoordinator",
    "DraftTransactionRepository",
    "DraftWriter",
    "Draftable",
    "DraftableRegistry",
    "DraftableType",
    "ErrorCategory",
    "ErrorDetail",
    "NO_CHANGES",
    "PENDING_APPROVAL",
    "PolymorphicReference",
    "ProxyKey",
    "REJECTED",
    "RecordRef",
    "UPDATE",
    "UpdateMethod",
    "apply_draft",
    "changes_for_record",
    "current",
    "current_or_fail",
    "exception_to_error",
    "load_settings",
    "new_values_for_draft",
]
