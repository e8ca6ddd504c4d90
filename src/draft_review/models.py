"""ORM models for draft transactions and drafts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
    inspect,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, object_session, relationship

from draft_review.references import DraftRef

# SQLAlchemy base for the draft tables
Base = declarative_base()

PENDING_APPROVAL = "pending_approval"
APPROVED = "approved"
REJECTED = "rejected"
APPROVAL_ERROR = "approval_error"

CREATE = "create"
UPDATE = "update"
DELETE = "delete"

DRAFT_ACTIONS = frozenset({CREATE, UPDATE, DELETE})
TERMINAL_STATUSES = frozenset({APPROVED, REJECTED})
# Drafts in these transactions still count as outstanding for their target.
BLOCKING_STATUSES = frozenset({PENDING_APPROVAL, APPROVAL_ERROR})

DraftTransactionStatusEnum = Enum(
    PENDING_APPROVAL,
    APPROVED,
    REJECTED,
    APPROVAL_ERROR,
    name="draft_transaction_status",
    native_enum=False,
)
DraftActionEnum = Enum(
    CREATE,
    UPDATE,
    DELETE,
    name="draft_action_type",
    native_enum=False,
)

JsonDocument = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DraftTransaction(Base):
    """A group of drafts approved or rejected as one unit."""

    __tablename__ = "draft_transactions"

    id = Column(Integer, primary_key=True)
    status = Column(DraftTransactionStatusEnum, nullable=False, default=PENDING_APPROVAL)
    created_by = Column(String(255), nullable=True)
    reviewed_by = Column(String(255), nullable=True)
    review_reason = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    extra_data = Column(JsonDocument, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    drafts = relationship(
        "Draft",
        back_populates="draft_transaction",
        order_by=lambda: [Draft.created_at, Draft.id],
    )

    __table_args__ = (
        Index("ix_draft_transactions_status", "status"),
        Index("ix_draft_transactions_created_by", "created_by"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<DraftTransaction id={self.id} status={self.status}>"


class Draft(Base):
    """One pending create, update or delete of one target record."""

    __tablename__ = "drafts"

    id = Column(Integer, primary_key=True)
    draft_transaction_id = Column(
        Integer,
        ForeignKey("draft_transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    target_type = Column(String(255), nullable=False)
    target_id = Column(String(255), nullable=True)
    action_type = Column(DraftActionEnum, nullable=False)
    change_set = Column(JsonDocument, nullable=False)
    options = Column(JsonDocument, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    draft_transaction = relationship("DraftTransaction", back_populates="drafts")

    __table_args__ = (
        Index("ix_drafts_draft_transaction_id", "draft_transaction_id"),
        Index("ix_drafts_target", "target_type", "target_id"),
    )

    @property
    def is_create(self) -> bool:
        return self.action_type == CREATE

    @property
    def is_update(self) -> bool:
        return self.action_type == UPDATE

    @property
    def is_delete(self) -> bool:
        return self.action_type == DELETE

    def reference(self) -> DraftRef:
        """Return a forward reference to this draft."""
        if self.id is None:
            raise ValueError("draft has not been persisted")
        return DraftRef(id=self.id)

    def __repr__(self) -> str:
        return (
            f"<Draft id={self.id} action={self.action_type} "
            f"target={self.target_type}:{self.target_id}>"
        )


def _ensure_aware_timestamp(value: datetime | None) -> datetime | None:
    """Normalize timestamps to UTC when timezone info is missing."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@event.listens_for(DraftTransaction, "load")
def _normalize_transaction_on_load(target: DraftTransaction, _context: object) -> None:
    """Ensure loaded transaction timestamps retain timezone awareness."""
    target.created_at = _ensure_aware_timestamp(target.created_at)
    target.updated_at = _ensure_aware_timestamp(target.updated_at)


@event.listens_for(Draft, "load")
def _normalize_draft_on_load(target: Draft, _context: object) -> None:
    """Ensure loaded draft timestamps retain timezone awareness."""
    target.created_at = _ensure_aware_timestamp(target.created_at)
    target.updated_at = _ensure_aware_timestamp(target.updated_at)


class Draftable:
    """Mixin for ORM models whose changes are captured as drafts.

    ``pending_draft`` is an in-memory link to the draft written for this
    instance; it is not a mapped column.
    """

    pending_draft = None


def is_persisted(record: object) -> bool:
    """Return ``True`` when the record has a database identity."""
    state = inspect(record)
    return state.has_identity and not state.deleted


class PolymorphicReference:
    """Single-valued association stored as a ``(type, id)`` column pair.

    Assigning an instance stores it in memory and mirrors its type name and
    primary key into the two columns. Reading returns the assigned instance
    or, for loaded rows, looks the target up in the owning session.
    """

    def __init__(self, type_attr: str, id_attr: str) -> None:
        self.type_attr = type_attr
        self.id_attr = id_attr
        self.name = ""
        self._resolve_model: Callable[[str], type] | None = None
        self._name_for: Callable[[object], str] | None = None
        self._identity_for: Callable[[object], Any] | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    @property
    def stash_key(self) -> str:
        return f"_{self.name}_assigned"

    def bind(
        self,
        *,
        resolve_model: Callable[[str], type],
        name_for: Callable[[object], str],
        identity_for: Callable[[object], Any],
    ) -> None:
        """Attach registry lookups; called when the owning type is registered."""
        self._resolve_model = resolve_model
        self._name_for = name_for
        self._identity_for = identity_for

    def assigned(self, instance: object) -> tuple[bool, object | None]:
        """Return ``(was_assigned, value)`` for the in-memory assignment."""
        if self.stash_key not in instance.__dict__:
            return False, None
        return True, instance.__dict__[self.stash_key]

    def __get__(self, instance: object | None, owner: type) -> Any:
        if instance is None:
            return self
        was_assigned, value = self.assigned(instance)
        if was_assigned:
            return value
        type_name = getattr(instance, self.type_attr)
        target_id = getattr(instance, self.id_attr)
        if type_name is None or target_id is None or self._resolve_model is None:
            return None
        session = object_session(instance)
        if session is None:
            return None
        return session.get(self._resolve_model(type_name), target_id)

    def __set__(self, instance: object, value: object | None) -> None:
        instance.__dict__[self.stash_key] = value
        if value is None:
            setattr(instance, self.type_attr, None)
            setattr(instance, self.id_attr, None)
            return
        if self._name_for is None or self._identity_for is None:
            raise RuntimeError(
                f"{type(instance).__name__}.{self.name} is not bound; register the type first"
            )
        setattr(instance, self.type_attr, self._name_for(value))
        setattr(instance, self.id_attr, self._identity_for(value))
