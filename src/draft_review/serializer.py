"""Conversion between in-memory record changes and stored change-sets.

A change-set maps field names to ``[old, new]`` pairs. Scalar values are kept
in a JSON-safe form; single-valued associations are stored as
``{"type": ..., "id": ...}`` references, where the reference may point at a
pending draft in the same transaction when the associated record only exists
as a draft.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from draft_review.errors import (
    AssociationUnsavedError,
    InvalidArgumentError,
    PriorDraftNotAppliedError,
    ReferenceNotFoundError,
)
from draft_review.models import Draft, is_persisted
from draft_review.references import (
    DraftRef,
    RecordRef,
    Reference,
    reference_from_json,
    reference_to_json,
)
from draft_review.registry import DraftableRegistry, ScalarField, SingleAssociation

ChangeSet = dict[str, list[Any]]


def changes_for_record(
    record: object,
    registry: DraftableRegistry,
    stored: Mapping[str, Any] | None = None,
) -> ChangeSet:
    """Serialize the pending in-memory changes of ``record``.

    ``stored`` holds the column values of the record's database row. When it
    is given, old values are read from it instead of from attribute history,
    which is empty for attributes that were expired before being assigned.
    Returns an empty mapping when nothing changed.
    """
    draftable = registry.for_model(record)
    state = inspect(record)
    changes: ChangeSet = {}

    for assoc in draftable.singles.values():
        old_ref = _association_old_value(state, assoc, registry, stored)
        new_ref = _association_new_value(record, state, assoc, registry, stored)
        if old_ref != new_ref:
            changes[assoc.name] = [reference_to_json(old_ref), reference_to_json(new_ref)]

    for scalar in draftable.scalars.values():
        history = state.attrs[scalar.name].history
        if not history.added:
            continue
        if stored is not None:
            old = coerce_scalar(scalar, stored.get(scalar.name))
        else:
            old = coerce_scalar(scalar, history.deleted[0] if history.deleted else None)
        new = coerce_scalar(scalar, history.added[0])
        if old == new:
            continue
        changes[scalar.name] = [scalar_to_json(old), scalar_to_json(new)]

    return changes


def new_values_for_draft(
    session: Session,
    draft: Draft,
    registry: DraftableRegistry,
) -> dict[str, Any]:
    """Resolve a stored change-set into concrete values to write.

    Association references are loaded through ``session``; forward references
    must point at drafts of the same transaction that were already applied.
    """
    draftable = registry.get(draft.target_type)
    values: dict[str, Any] = {}
    for name, change in (draft.change_set or {}).items():
        new_value = _new_half(name, change)
        if name in draftable.singles:
            values[name] = resolve_reference(
                session,
                draft,
                draftable.singles[name],
                reference_from_json(new_value),
                registry,
            )
        elif name in draftable.scalars:
            values[name] = scalar_from_json(draftable.scalars[name], new_value)
        else:
            raise InvalidArgumentError(f"{draftable.name}.{name} is not a draftable field")
    return values


def resolve_reference(
    session: Session,
    draft: Draft,
    assoc: SingleAssociation,
    ref: Reference | None,
    registry: DraftableRegistry,
) -> object | None:
    """Load the concrete record a stored reference points at."""
    if ref is None:
        return None

    if isinstance(ref, DraftRef):
        prior = session.get(Draft, ref.id)
        if prior is None or prior.draft_transaction_id != draft.draft_transaction_id:
            raise ReferenceNotFoundError(
                f"draft {ref.id} is not part of draft transaction {draft.draft_transaction_id}"
            )
        if prior.target_id is None:
            raise PriorDraftNotAppliedError(
                f"draft {prior.id} must be applied before draft {draft.id}"
            )
        target = registry.get(prior.target_type).find(session, prior.target_id)
        if target is None:
            raise ReferenceNotFoundError(
                f"{prior.target_type} {prior.target_id} created by draft {prior.id} no longer exists"
            )
        return target

    model = model_for_reference(registry, assoc, ref.type_name)
    ident = registry.for_model(model).coerce_id(ref.id) if registry.is_registered(model) else ref.id
    target = session.get(model, ident)
    if target is None:
        raise ReferenceNotFoundError(f"{ref.type_name} {ref.id} does not exist")
    return target


def model_for_reference(registry: DraftableRegistry, assoc: SingleAssociation, type_name: str) -> type:
    """Resolve a stored type name, allowing non-draftable association targets."""
    if assoc.target_model is not None and type_name_for(registry, assoc.target_model) == type_name:
        return assoc.target_model
    return registry.model_for(type_name)


def type_name_for(registry: DraftableRegistry, model: type) -> str:
    """Return the registered type name, or the class name for other models."""
    if registry.is_registered(model):
        return registry.for_model(model).name
    return model.__name__


def reference_for(record: object | None, registry: DraftableRegistry) -> Reference | None:
    """Build a reference to ``record``, falling back to its pending draft."""
    if record is None:
        return None
    if is_persisted(record):
        return RecordRef(
            type_name=type_name_for(registry, type(record)),
            id=inspect(record).identity[0],
        )
    draft = getattr(record, "pending_draft", None)
    if draft is None or draft.id is None:
        raise AssociationUnsavedError(
            f"{type(record).__name__} is not persisted and has no saved draft; "
            "save its draft first"
        )
    return draft.reference()


def coerce_scalar(scalar: ScalarField, value: Any) -> Any:
    """Coerce a value to the column's Python type where that is unambiguous.

    Naive datetimes bound for timezone-aware columns are taken as UTC.
    """
    value = _coerce_to_type(scalar.python_type, value)
    if scalar.timezone and isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _coerce_to_type(python_type: type | None, value: Any) -> Any:
    if value is None or python_type is None or isinstance(value, python_type):
        return value
    try:
        if python_type is datetime and isinstance(value, str):
            return datetime.fromisoformat(value)
        if python_type is date and isinstance(value, str):
            return date.fromisoformat(value)
        if python_type is time and isinstance(value, str):
            return time.fromisoformat(value)
        if python_type is bool and isinstance(value, (int, str)):
            return _coerce_bool(value)
        if python_type in (int, float, Decimal, str, uuid.UUID) or issubclass(python_type, enum.Enum):
            return python_type(value)
    except (TypeError, ValueError, InvalidOperation):
        return value
    return value


def scalar_to_json(value: Any) -> Any:
    """Convert a scalar to a JSON-safe value."""
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    return value


def scalar_from_json(scalar: ScalarField, value: Any) -> Any:
    """Convert a stored JSON value back to the column's Python type."""
    return coerce_scalar(scalar, value)


def _association_old_value(
    state: Any,
    assoc: SingleAssociation,
    registry: DraftableRegistry,
    stored: Mapping[str, Any] | None,
) -> RecordRef | None:
    """Build the committed (pre-change) reference; it is never a draft."""
    old_id = _committed_value(state, assoc.id_attr, stored)
    if assoc.is_polymorphic:
        old_type = _committed_value(state, assoc.type_attr, stored)
    else:
        old_type = type_name_for(registry, assoc.target_model)
    if old_id is None or old_type is None:
        return None
    return RecordRef(type_name=old_type, id=old_id)


def _association_new_value(
    record: object,
    state: Any,
    assoc: SingleAssociation,
    registry: DraftableRegistry,
    stored: Mapping[str, Any] | None,
) -> Reference | None:
    """Build the reference the record currently points at in memory."""
    if assoc.is_polymorphic:
        descriptor = getattr(type(record), assoc.name)
        was_assigned, target = descriptor.assigned(record)
        if was_assigned:
            return reference_for(target, registry)
        type_name = _current_value(record, state, assoc.type_attr, stored)
        target_id = _current_value(record, state, assoc.id_attr, stored)
        if type_name is None or target_id is None:
            return None
        return RecordRef(type_name=type_name, id=target_id)

    history = state.attrs[assoc.name].history
    if history.added:
        return reference_for(history.added[0], registry)
    if history.deleted or assoc.name in state.committed_state:
        # assigned in memory; the foreign key is not synced until flush
        return reference_for(getattr(record, assoc.name), registry)
    target_id = _current_value(record, state, assoc.id_attr, stored)
    if target_id is None:
        return None
    return RecordRef(type_name=type_name_for(registry, assoc.target_model), id=target_id)


def _committed_value(state: Any, key: str, stored: Mapping[str, Any] | None) -> Any:
    if stored is not None:
        return stored.get(key)
    history = state.attrs[key].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def _current_value(record: object, state: Any, key: str, stored: Mapping[str, Any] | None) -> Any:
    # expired attributes of a detached record cannot be loaded
    if stored is not None and key in state.unloaded:
        return stored.get(key)
    return getattr(record, key)


def _new_half(name: str, change: Any) -> Any:
    if not isinstance(change, (list, tuple)) or len(change) != 2:
        raise InvalidArgumentError(f"change for {name!r} must be an [old, new] pair")
    return change[1]


def _coerce_bool(value: int | str) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


def describe_changes(changes: Mapping[str, Any]) -> str:
    """Return a compact comma-separated list of changed field names."""
    return ", ".join(sorted(changes)) or "<none>"
