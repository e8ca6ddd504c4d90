"""Draft transaction scope management.

The active scope is held in a ``ContextVar``: every thread and every asyncio
task sees its own value, so concurrent units of work never observe each
other's draft transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import closing, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, TypeVar

from sqlalchemy.orm import Session

from draft_review.errors import NestedTransactionError, NoActiveTransactionError
from draft_review.logging import fields, log_context
from draft_review.models import PENDING_APPROVAL, Draft, DraftTransaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CURRENT_SCOPE: ContextVar["DraftScope | None"] = ContextVar(
    "draft_review_current_scope", default=None
)


@dataclass
class DraftScope:
    """One open unit of work: a session plus the draft transaction row it owns.

    After the scope exits, ``draft_transaction`` is the committed transaction,
    or ``None`` when the unit of work wrote no drafts.
    """

    session: Session
    draft_transaction: DraftTransaction | None
    drafts: list[Draft] = field(default_factory=list)

    def record_draft(self, draft: Draft) -> None:
        self.drafts.append(draft)


def current() -> DraftScope | None:
    """Return the scope active in this execution context, if any."""
    return _CURRENT_SCOPE.get()


def current_or_fail() -> DraftScope:
    """Return the active scope or raise ``NoActiveTransactionError``."""
    scope = _CURRENT_SCOPE.get()
    if scope is None:
        raise NoActiveTransactionError("no draft transaction is active in this context")
    return scope


class DraftTransactionCoordinator:
    """Opens draft transactions and binds them to the current context."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize the coordinator with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    @contextmanager
    def begin_new(
        self,
        *,
        created_by: str | None = None,
        extra_data: Mapping[str, Any] | None = None,
    ) -> Iterator[DraftScope]:
        """Open a new draft transaction for the duration of the block.

        A transaction that ends up with no drafts is deleted before commit;
        other writes made through ``scope.session`` are still committed.
        """
        if _CURRENT_SCOPE.get() is not None:
            raise NestedTransactionError("a draft transaction is already active in this context")

        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            token = None
            try:
                draft_transaction = DraftTransaction(
                    status=PENDING_APPROVAL,
                    created_by=created_by,
                    extra_data=dict(extra_data) if extra_data is not None else None,
                )
                session.add(draft_transaction)
                session.flush()
                scope = DraftScope(session=session, draft_transaction=draft_transaction)
                token = _CURRENT_SCOPE.set(scope)

                with log_context({fields.DRAFT_TRANSACTION_ID: draft_transaction.id}):
                    logger.debug("Opened draft transaction")
                    yield scope

                    if not scope.drafts and not _has_drafts(session, draft_transaction):
                        session.delete(draft_transaction)
                        scope.draft_transaction = None
                        logger.debug("Discarded draft transaction with no drafts")
                    else:
                        logger.info(
                            "Committed draft transaction: drafts=%s",
                            len(scope.drafts),
                        )
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                if token is not None:
                    _CURRENT_SCOPE.reset(token)

    def run_in_new(
        self,
        fn: Callable[[], Any],
        *,
        created_by: str | None = None,
        extra_data: Mapping[str, Any] | None = None,
    ) -> DraftTransaction | None:
        """Run ``fn`` in a new draft transaction and return that transaction.

        Returns ``None`` when ``fn`` wrote no drafts.
        """
        with self.begin_new(created_by=created_by, extra_data=extra_data) as scope:
            fn()
        return scope.draft_transaction

    def ensure_active(
        self,
        fn: Callable[[], T],
        *,
        created_by: str | None = None,
        extra_data: Mapping[str, Any] | None = None,
    ) -> T:
        """Run ``fn`` in the active scope, opening a new one when there is none.

        Returns ``fn``'s result. ``created_by`` and ``extra_data`` only apply
        when a new scope is opened.
        """
        if _CURRENT_SCOPE.get() is not None:
            return fn()
        with self.begin_new(created_by=created_by, extra_data=extra_data):
            result = fn()
        return result


def _has_drafts(session: Session, draft_transaction: DraftTransaction) -> bool:
    """Check the database for drafts written outside the writer bookkeeping."""
    return (
        session.query(Draft.id)
        .filter(Draft.draft_transaction_id == draft_transaction.id)
        .first()
        is not None
    )
