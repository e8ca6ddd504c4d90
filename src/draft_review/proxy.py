"""Read-only views of what a draft transaction will change.

A ``ChangeProxy`` wraps a draft, a concrete record, or both, and answers
"what is the value now" and "what will it be once this transaction is
approved" for fields and associations. Associated records are returned as
nested proxies bound to the same transaction, so a review screen can walk an
object graph as it will look after approval.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from draft_review.errors import DraftTransactionNotFoundError, InvalidArgumentError
from draft_review.models import Draft, DraftTransaction, is_persisted
from draft_review.references import DraftRef, RecordRef, reference_from_json
from draft_review.registry import DraftableRegistry, DraftableType, SingleAssociation
from draft_review.serializer import model_for_reference, scalar_from_json


@dataclass(frozen=True)
class ProxyKey:
    """Identity of a proxy: which draft and record it stands for, in which transaction."""

    transaction_id: int
    draft_id: int | None
    target_type: str
    target_id: str | None


class ChangeInspector:
    """Builds and caches change proxies for one draft transaction."""

    def __init__(
        self,
        session: Session,
        registry: DraftableRegistry,
        draft_transaction: DraftTransaction,
    ) -> None:
        self.session = session
        self.registry = registry
        self.draft_transaction = draft_transaction
        self._drafts: list[Draft] | None = None
        self._proxies: dict[ProxyKey, ChangeProxy] = {}

    @classmethod
    def for_transaction(
        cls,
        session: Session,
        registry: DraftableRegistry,
        transaction_id: int,
    ) -> "ChangeInspector":
        """Load a transaction by id and build an inspector for it."""
        draft_transaction = session.get(DraftTransaction, transaction_id)
        if draft_transaction is None:
            raise DraftTransactionNotFoundError(f"draft transaction {transaction_id} does not exist")
        return cls(session, registry, draft_transaction)

    @property
    def drafts(self) -> list[Draft]:
        """Drafts of the transaction in replay order."""
        if self._drafts is None:
            self._drafts = (
                self.session.query(Draft)
                .filter(Draft.draft_transaction_id == self.draft_transaction.id)
                .order_by(Draft.created_at, Draft.id)
                .all()
            )
        return self._drafts

    def proxy_for(self, value: Any) -> Any:
        """Wrap drafts and draftable records in proxies.

        Lists are wrapped element-wise; ``None`` and non-draftable values are
        returned unchanged.
        """
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            return [self.proxy_for(item) for item in value]
        if isinstance(value, Draft):
            return self._proxy_for_draft(value)
        if self.registry.is_registered(value):
            return self._proxy_for_record(value)
        return value

    def draft_for(self, draftable: DraftableType, target_id: Any) -> Draft | None:
        """Return this transaction's draft for a concrete record, if any."""
        wanted = str(target_id)
        for draft in self.drafts:
            if draft.target_type == draftable.name and draft.target_id == wanted:
                return draft
        return None

    def _proxy_for_draft(self, draft: Draft) -> "ChangeProxy":
        if draft.draft_transaction_id != self.draft_transaction.id:
            raise InvalidArgumentError(
                f"draft {draft.id} does not belong to draft transaction {self.draft_transaction.id}"
            )
        draftable = self.registry.get(draft.target_type)
        record = None
        if draft.target_id is not None:
            record = draftable.find(self.session, draft.target_id)
        return self._cached(draftable, draft, record)

    def _proxy_for_record(self, record: object) -> "ChangeProxy":
        if not is_persisted(record):
            raise InvalidArgumentError(f"{type(record).__name__} must already be persisted")
        draftable = self.registry.for_model(record)
        draft = self.draft_for(draftable, draftable.identity(record))
        return self._cached(draftable, draft, record)

    def _cached(self, draftable: DraftableType, draft: Draft | None, record: object | None) -> "ChangeProxy":
        if record is not None:
            target_id = str(draftable.identity(record))
        elif draft is not None:
            target_id = draft.target_id
        else:
            target_id = None
        key = ProxyKey(
            transaction_id=self.draft_transaction.id,
            draft_id=draft.id if draft is not None else None,
            target_type=draftable.name,
            target_id=target_id,
        )
        proxy = self._proxies.get(key)
        if proxy is None:
            proxy = ChangeProxy(self, key, draftable, draft, record)
            self._proxies[key] = proxy
        return proxy


class ChangeProxy:
    """Current and post-approval values of one record within a transaction."""

    def __init__(
        self,
        inspector: ChangeInspector,
        key: ProxyKey,
        draftable: DraftableType,
        draft: Draft | None,
        record: object | None,
    ) -> None:
        self._inspector = inspector
        self.key = key
        self.draftable = draftable
        self.draft = draft
        self.record = record
        self._current: dict[str, Any] = {}
        self._new: dict[str, Any] = {}
        self._added: dict[str, list[ChangeProxy]] = {}
        self._updated: dict[str, list[ChangeProxy]] = {}
        self._removed: dict[str, list[ChangeProxy]] = {}

    @property
    def is_create(self) -> bool:
        return self.draft is not None and self.draft.is_create

    @property
    def is_delete(self) -> bool:
        return self.draft is not None and self.draft.is_delete

    @property
    def changed_fields(self) -> list[str]:
        """Fields and single associations the draft changes."""
        if self.draft is None:
            return []
        return list(self.draft.change_set or {})

    @property
    def has_changes(self) -> bool:
        return bool(self.changed_fields)

    @property
    def field_changes(self) -> dict[str, tuple[Any, Any]]:
        """Map each changed field to ``(current, new)`` with associations proxied."""
        return {name: (self.current_value(name), self.new_value(name)) for name in self.changed_fields}

    def current_value(self, name: str) -> Any:
        """Return the persisted value of a field or association."""
        if name not in self._current:
            self._current[name] = self._compute_current(name)
        return self._current[name]

    def new_value(self, name: str) -> Any:
        """Return the value a field or association will have after approval."""
        if name not in self._new:
            self._new[name] = self._compute_new(name)
        return self._new[name]

    def association_changed(self, name: str) -> bool:
        """Return ``True`` when approval changes what the association points at."""
        if name in self.draftable.singles:
            return name in self.changed_fields
        return bool(self.added(name) or self.updated(name) or self.removed(name))

    def added(self, name: str) -> list["ChangeProxy"]:
        """Records that will newly belong to a multi-valued association."""
        if name not in self._added:
            self._added[name] = self._compute_added(name)
        return self._added[name]

    def updated(self, name: str) -> list["ChangeProxy"]:
        """Current members that have drafted changes but stay linked."""
        if name not in self._updated:
            _, inverse = self._inspector.registry.inverse_of(self.draftable, name)
            self._updated[name] = [
                child
                for child in self.current_value(name)
                if child.has_changes and not child.is_delete and child.new_value(inverse.name) == self
            ]
        return self._updated[name]

    def removed(self, name: str) -> list["ChangeProxy"]:
        """Current members that will be deleted or linked elsewhere."""
        if name not in self._removed:
            _, inverse = self._inspector.registry.inverse_of(self.draftable, name)
            self._removed[name] = [
                child
                for child in self.current_value(name)
                if child.is_delete or child.new_value(inverse.name) != self
            ]
        return self._removed[name]

    def _compute_current(self, name: str) -> Any:
        if name in self.draftable.manys:
            if self.record is None:
                return []
            return self._inspector.proxy_for(self._current_children(name))
        self._require_field(name)
        if self.record is None:
            return None
        return self._inspector.proxy_for(getattr(self.record, name))

    def _compute_new(self, name: str) -> Any:
        if name in self.draftable.manys:
            removed = {child.key for child in self.removed(name)}
            result = [child for child in self.current_value(name) if child.key not in removed]
            result.extend(child for child in self.added(name) if child not in result)
            return result
        self._require_field(name)
        change_set = self.draft.change_set if self.draft is not None else {}
        if name not in (change_set or {}):
            return self.current_value(name)
        new_half = change_set[name][1]
        if name in self.draftable.scalars:
            return scalar_from_json(self.draftable.scalars[name], new_half)
        return self._resolve(self.draftable.singles[name], new_half)

    def _resolve(self, assoc: SingleAssociation, stored: Any) -> Any:
        ref = reference_from_json(stored)
        if ref is None:
            return None
        session = self._inspector.session
        if isinstance(ref, DraftRef):
            draft = session.get(Draft, ref.id)
            if draft is None:
                raise InvalidArgumentError(f"draft {ref.id} referenced by {self.key} does not exist")
            return self._inspector.proxy_for(draft)
        model = model_for_reference(self._inspector.registry, assoc, ref.type_name)
        if self._inspector.registry.is_registered(model):
            record = self._inspector.registry.for_model(model).find(session, ref.id)
        else:
            record = session.get(model, ref.id)
        return self._inspector.proxy_for(record)

    def _compute_added(self, name: str) -> list["ChangeProxy"]:
        child_type, inverse = self._inspector.registry.inverse_of(self.draftable, name)
        own_ref = self._own_reference()
        found = []
        for draft in self._inspector.drafts:
            if draft.target_type != child_type.name or draft.is_delete:
                continue
            change = (draft.change_set or {}).get(inverse.name)
            if change is None:
                continue
            if _same_reference(reference_from_json(change[1]), own_ref):
                found.append(self._inspector.proxy_for(draft))
        return found

    def _current_children(self, name: str) -> list[object]:
        child_type, inverse = self._inspector.registry.inverse_of(self.draftable, name)
        child_model = child_type.model
        query = self._inspector.session.query(child_model).filter(
            getattr(child_model, inverse.id_attr) == self.draftable.identity(self.record)
        )
        if inverse.is_polymorphic:
            query = query.filter(getattr(child_model, inverse.type_attr) == self.draftable.name)
        return query.order_by(getattr(child_model, child_type.pk_attr)).all()

    def _own_reference(self) -> RecordRef | DraftRef:
        if self.record is not None:
            return RecordRef(type_name=self.draftable.name, id=self.draftable.identity(self.record))
        return DraftRef(id=self.draft.id)

    def _require_field(self, name: str) -> None:
        if name not in self.draftable.scalars and name not in self.draftable.singles:
            raise InvalidArgumentError(f"{name!r} is not a field of {self.draftable.name}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ChangeProxy):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return (
            f"<ChangeProxy {self.key.target_type}:{self.key.target_id} "
            f"draft={self.key.draft_id} transaction={self.key.transaction_id}>"
        )


def _same_reference(left: RecordRef | DraftRef | None, right: RecordRef | DraftRef) -> bool:
    """Compare references, treating ids by their string form."""
    if left is None or type(left) is not type(right):
        return False
    return left.type_name == right.type_name and str(left.id) == str(right.id)
