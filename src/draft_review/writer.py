"""Capture record changes as drafts instead of writing them."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Union

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from draft_review import coordinator as scopes
from draft_review.coordinator import DraftTransactionCoordinator
from draft_review.errors import (
    AlreadyPersistedError,
    ExistingDraftError,
    InvalidArgumentError,
    UnpersistedError,
)
from draft_review.logging import fields, log_context
from draft_review.models import (
    BLOCKING_STATUSES,
    CREATE,
    DELETE,
    DRAFT_ACTIONS,
    UPDATE,
    Draft,
    DraftTransaction,
    is_persisted,
)
from draft_review.options import DraftOptions, parse_options
from draft_review.registry import DraftableRegistry, DraftableType
from draft_review.serializer import changes_for_record, describe_changes

logger = logging.getLogger(__name__)


class _NoChanges:
    """Returned instead of a draft when an update changes nothing."""

    _instance: "_NoChanges | None" = None

    def __new__(cls) -> "_NoChanges":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_CHANGES"


NO_CHANGES = _NoChanges()

DraftOptionsInput = Union[DraftOptions, Mapping[str, Any], None]


class DraftWriter:
    """Writes drafts for in-memory record changes into the active scope."""

    def __init__(self, coordinator: DraftTransactionCoordinator, registry: DraftableRegistry) -> None:
        self._coordinator = coordinator
        self._registry = registry

    def write_draft(
        self,
        action: str,
        record: object,
        options: DraftOptionsInput = None,
    ) -> Draft | _NoChanges:
        """Persist a draft describing ``action`` applied to ``record``.

        Opens a draft transaction when none is active. The record itself is
        never written; it only gains a ``pending_draft`` link.
        """
        if record is None:
            raise InvalidArgumentError("record is required")
        if action not in DRAFT_ACTIONS:
            raise InvalidArgumentError(f"unknown draft action {action!r}")
        draftable = self._registry.for_model(record)
        stored_options = parse_options(options).to_json()

        return self._coordinator.ensure_active(
            lambda: self._write(action, record, draftable, stored_options)
        )

    def save_draft(self, record: object, options: DraftOptionsInput = None) -> Draft | _NoChanges:
        """Draft a create for new records and an update for persisted ones."""
        if record is None:
            raise InvalidArgumentError("record is required")
        action = UPDATE if is_persisted(record) else CREATE
        return self.write_draft(action, record, options)

    def draft_destroy(self, record: object, options: DraftOptionsInput = None) -> Draft | _NoChanges:
        """Draft the deletion of a persisted record."""
        return self.write_draft(DELETE, record, options)

    def _write(
        self,
        action: str,
        record: object,
        draftable: DraftableType,
        stored_options: dict[str, str] | None,
    ) -> Draft | _NoChanges:
        scope = scopes.current_or_fail()
        session = scope.session
        persisted = is_persisted(record)

        if action == CREATE and persisted:
            raise AlreadyPersistedError(f"{draftable.name} is already persisted")
        if action in (UPDATE, DELETE) and not persisted:
            raise UnpersistedError(f"{draftable.name} is not persisted")

        target_id: str | None = None
        stored = None
        with session.no_autoflush:
            if persisted:
                ident = draftable.identity(record)
                stored = draftable.stored_values(session, ident, for_update=True)
                if stored is None:
                    raise UnpersistedError(f"{draftable.name} {ident} no longer exists")
                target_id = str(ident)
            self._reject_existing_draft(session, draftable, record, target_id)
            changes = changes_for_record(record, self._registry, stored)

        self._detach_unsaved(session, record)

        if action == UPDATE and not changes:
            logger.debug("Skipped draft with no changes: target=%s:%s", draftable.name, target_id)
            return NO_CHANGES

        draft = Draft(
            draft_transaction=scope.draft_transaction,
            target_type=draftable.name,
            target_id=target_id,
            action_type=action,
            change_set=changes,
            options=stored_options,
        )
        session.add(draft)
        session.flush()
        record.pending_draft = draft
        scope.record_draft(draft)

        with log_context(
            {
                fields.DRAFT_ID: draft.id,
                fields.TARGET_TYPE: draftable.name,
                fields.ACTION_TYPE: action,
            }
        ):
            logger.info("Wrote draft: target_id=%s fields=%s", target_id, describe_changes(changes))
        return draft

    def _reject_existing_draft(
        self,
        session: Session,
        draftable: DraftableType,
        record: object,
        target_id: str | None,
    ) -> None:
        """Raise ``ExistingDraftError`` when the target already has an outstanding draft."""
        query = (
            session.query(Draft.id)
            .join(DraftTransaction, Draft.draft_transaction_id == DraftTransaction.id)
            .filter(DraftTransaction.status.in_(BLOCKING_STATUSES))
        )
        if target_id is not None:
            existing = (
                query.filter(Draft.target_type == draftable.name, Draft.target_id == target_id)
                .first()
            )
            if existing is not None:
                raise ExistingDraftError(
                    f"{draftable.name} {target_id} has existing draft {existing.id}"
                )

        pending = getattr(record, "pending_draft", None)
        if pending is not None and pending.id is not None:
            if query.filter(Draft.id == pending.id).first() is not None:
                raise ExistingDraftError(
                    f"{draftable.name} already has pending draft {pending.id}"
                )

    def _detach_unsaved(self, session: Session, record: object) -> None:
        """Keep the record and its unsaved associations out of the flush.

        Walks collections as well as single-valued associations: a transient
        child appended to an attached record is cascaded into the session.
        """
        state = inspect(record)
        for rel in state.mapper.relationships:
            for associated in state.attrs[rel.key].history.added:
                if associated is not None and _pending_in(session, associated):
                    session.expunge(associated)
        if state.session is session:
            session.expunge(record)


def _pending_in(session: Session, record: object) -> bool:
    state = inspect(record)
    return state.session is session and not state.has_identity
