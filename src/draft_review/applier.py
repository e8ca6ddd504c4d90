"""Turn one stored draft into concrete database writes."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from draft_review.errors import InvalidArgumentError, NoTargetError
from draft_review.models import CREATE, DELETE, UPDATE, Draft
from draft_review.options import CreateMethod, DeleteMethod, UpdateMethod, parse_options
from draft_review.registry import DraftableRegistry, DraftableType
from draft_review.serializer import new_values_for_draft, type_name_for

logger = logging.getLogger(__name__)


def apply_draft(session: Session, draft: Draft, registry: DraftableRegistry) -> object | None:
    """Apply ``draft`` through ``session`` and return the affected record.

    Returns ``None`` when an ``*_if_exists`` strategy skipped a missing
    target. Database errors propagate unchanged.
    """
    draftable = registry.get(draft.target_type)
    options = parse_options(draft.options)

    if draft.action_type == CREATE:
        values = new_values_for_draft(session, draft, registry)
        if options.create_method is CreateMethod.FIND_OR_CREATE:
            record = _find_matching(session, registry, draftable, values)
            if record is not None:
                logger.debug("Reused existing %s for create draft %s", draftable.name, draft.id)
        else:
            record = None
        if record is None:
            record = draftable.construct(values)
            session.add(record)
            session.flush()
        draft.target_id = str(draftable.identity(record))
        session.flush()
        return record

    if draft.action_type == UPDATE:
        record = _load_target(session, draft, draftable)
        if record is None:
            if options.update_method is UpdateMethod.UPDATE_IF_EXISTS:
                logger.info("Skipped update of missing %s %s", draftable.name, draft.target_id)
                return None
            raise NoTargetError(f"{draftable.name} {draft.target_id} does not exist")
        draftable.assign(record, new_values_for_draft(session, draft, registry))
        session.flush()
        return record

    if draft.action_type == DELETE:
        record = _load_target(session, draft, draftable)
        if record is None:
            if options.delete_method is DeleteMethod.DELETE_IF_EXISTS:
                logger.info("Skipped delete of missing %s %s", draftable.name, draft.target_id)
                return None
            raise NoTargetError(f"{draftable.name} {draft.target_id} does not exist")
        session.delete(record)
        session.flush()
        return record

    raise InvalidArgumentError(f"unknown draft action {draft.action_type!r}")


def _load_target(session: Session, draft: Draft, draftable: DraftableType) -> object | None:
    if draft.target_id is None:
        raise NoTargetError(f"draft {draft.id} has no target record")
    return draftable.find(session, draft.target_id)


def _find_matching(
    session: Session,
    registry: DraftableRegistry,
    draftable: DraftableType,
    values: dict[str, Any],
) -> object | None:
    """Return the first record whose scalar and foreign-key values all match."""
    model = draftable.model
    query = session.query(model)
    for name, value in values.items():
        if name in draftable.scalars:
            query = query.filter(getattr(model, name) == value)
            continue
        assoc = draftable.singles[name]
        target_id = inspect(value).identity[0] if value is not None else None
        query = query.filter(getattr(model, assoc.id_attr) == target_id)
        if assoc.is_polymorphic:
            target_type = type_name_for(registry, type(value)) if value is not None else None
            query = query.filter(getattr(model, assoc.type_attr) == target_type)
    return query.order_by(getattr(model, draftable.pk_attr)).first()
