"""Error taxonomy for draft capture, review and approval.

Every library error carries a stable machine-readable ``code`` and a
high-level ``category`` so callers and the approval error trail can handle
failures without matching on message text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError


class ErrorCategory(str, Enum):
    """High-level error categories."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    INTEGRITY = "integrity"
    NOT_FOUND = "not_found"
    DEPENDENCY = "dependency"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ErrorDetail:
    """Structured description of a failure."""

    code: str
    message: str
    category: ErrorCategory
    metadata: Mapping[str, str] = field(default_factory=dict)

    def summary(self) -> str:
        """Return a one-line ``CODE (category): message`` rendering."""
        return f"{self.code} ({self.category.value}): {self.message}"


class DraftReviewError(Exception):
    """Base class for all library errors."""

    code = "DRAFT_REVIEW_ERROR"
    category = ErrorCategory.INTERNAL


class InvalidArgumentError(DraftReviewError, ValueError):
    """A caller passed an invalid or missing argument."""

    code = "INVALID_ARGUMENT"
    category = ErrorCategory.VALIDATION


class UnregisteredTypeError(InvalidArgumentError):
    """An entity type name or class is not present in the registry."""

    code = "UNREGISTERED_TYPE"


class DraftTransactionError(DraftReviewError):
    """Misuse of the draft transaction scope."""

    category = ErrorCategory.VALIDATION


class NestedTransactionError(DraftTransactionError):
    code = "NESTED_TRANSACTION"


class NoActiveTransactionError(DraftTransactionError):
    code = "NO_ACTIVE_TRANSACTION"


class DraftTransactionNotFoundError(DraftTransactionError):
    """No draft transaction exists with the requested id."""

    code = "DRAFT_TRANSACTION_NOT_FOUND"
    category = ErrorCategory.NOT_FOUND


class DraftSaveError(DraftReviewError):
    """A draft could not be written for a record."""

    category = ErrorCategory.VALIDATION


class ExistingDraftError(DraftSaveError):
    """The target record already has an outstanding draft."""

    code = "EXISTING_DRAFT"
    category = ErrorCategory.CONFLICT


class AlreadyPersistedError(DraftSaveError):
    code = "ALREADY_PERSISTED"


class UnpersistedError(DraftSaveError):
    code = "UNPERSISTED"


class ChangeSerializationError(DraftReviewError):
    category = ErrorCategory.INTEGRITY


class AssociationUnsavedError(ChangeSerializationError):
    """An association points at an unsaved record with no persisted draft."""

    code = "ASSOCIATION_UNSAVED"


class ApplyDraftError(DraftReviewError):
    """A draft could not be applied at approval time."""

    category = ErrorCategory.INTEGRITY


class PriorDraftNotAppliedError(ApplyDraftError):
    """A forward reference resolves to a draft that has not been applied yet."""

    code = "PRIOR_DRAFT_NOT_APPLIED"


class NoTargetError(ApplyDraftError):
    """The concrete record targeted by an update or delete draft is missing."""

    code = "NO_TARGET"
    category = ErrorCategory.NOT_FOUND


class ReferenceNotFoundError(ApplyDraftError):
    """A stored record reference points at a row or draft that does not exist."""

    code = "REFERENCE_NOT_FOUND"
    category = ErrorCategory.NOT_FOUND


def exception_to_error(exc: BaseException) -> ErrorDetail:
    """Normalize any exception into an ``ErrorDetail``.

    Library errors keep their own code and category. SQLAlchemy errors are
    mapped conservatively; everything else is reported as internal.
    """
    metadata = {"exception_type": type(exc).__name__}
    message = str(exc) or type(exc).__name__

    if isinstance(exc, DraftReviewError):
        return ErrorDetail(
            code=exc.code,
            message=message,
            category=exc.category,
            metadata=metadata,
        )

    if isinstance(exc, IntegrityError):
        return ErrorDetail(
            code="CONSTRAINT_VIOLATION",
            message=str(exc.orig) if exc.orig is not None else message,
            category=ErrorCategory.CONFLICT,
            metadata=metadata,
        )

    if isinstance(exc, OperationalError):
        return ErrorDetail(
            code="DATABASE_UNAVAILABLE",
            message=message,
            category=ErrorCategory.DEPENDENCY,
            metadata=metadata,
        )

    if isinstance(exc, SQLAlchemyError):
        return ErrorDetail(
            code="DATABASE_ERROR",
            message=message,
            category=ErrorCategory.DEPENDENCY,
            metadata=metadata,
        )

    if isinstance(exc, ValueError):
        return ErrorDetail(
            code="INVALID_VALUE",
            message=message,
            category=ErrorCategory.VALIDATION,
            metadata=metadata,
        )

    return ErrorDetail(
        code="UNEXPECTED_EXCEPTION",
        message=message,
        category=ErrorCategory.INTERNAL,
        metadata=metadata,
    )
