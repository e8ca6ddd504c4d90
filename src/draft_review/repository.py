"""Read helpers for draft transactions and their drafts."""

from __future__ import annotations

from contextlib import closing
from typing import Any, Callable, Iterable

from sqlalchemy.orm import Session

from draft_review.errors import DraftTransactionNotFoundError, InvalidArgumentError
from draft_review.models import (
    BLOCKING_STATUSES,
    Draft,
    DraftTransaction,
    DraftTransactionStatusEnum,
)


class DraftTransactionRepository:
    """Repository for querying draft transactions outside a draft scope."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def get(self, transaction_id: int) -> DraftTransaction:
        """Return one draft transaction or raise ``DraftTransactionNotFoundError``."""

        def handler(session: Session) -> DraftTransaction:
            draft_transaction = session.get(DraftTransaction, transaction_id)
            if draft_transaction is None:
                raise DraftTransactionNotFoundError(
                    f"draft transaction {transaction_id} does not exist"
                )
            return draft_transaction

        return self._execute(handler)

    def list_by_status(
        self,
        statuses: str | Iterable[str],
        *,
        created_by: str | None = None,
        limit: int | None = None,
    ) -> list[DraftTransaction]:
        """Return transactions in the given statuses, oldest first."""
        wanted = [statuses] if isinstance(statuses, str) else list(statuses)
        unknown = set(wanted) - set(DraftTransactionStatusEnum.enums)
        if unknown:
            raise InvalidArgumentError(f"unknown draft transaction status: {sorted(unknown)}")

        def handler(session: Session) -> list[DraftTransaction]:
            query = session.query(DraftTransaction).filter(DraftTransaction.status.in_(wanted))
            if created_by is not None:
                query = query.filter(DraftTransaction.created_by == created_by)
            query = query.order_by(DraftTransaction.created_at, DraftTransaction.id)
            if limit is not None:
                query = query.limit(limit)
            return list(query.all())

        return self._execute(handler)

    def drafts_for(self, transaction_id: int) -> list[Draft]:
        """Return the drafts of a transaction in replay order."""

        def handler(session: Session) -> list[Draft]:
            return list(
                session.query(Draft)
                .filter(Draft.draft_transaction_id == transaction_id)
                .order_by(Draft.created_at, Draft.id)
                .all()
            )

        return self._execute(handler)

    def pending_draft_for(self, target_type: str, target_id: Any) -> Draft | None:
        """Return the outstanding draft for a concrete record, if any."""

        def handler(session: Session) -> Draft | None:
            return (
                session.query(Draft)
                .join(DraftTransaction, Draft.draft_transaction_id == DraftTransaction.id)
                .filter(
                    Draft.target_type == target_type,
                    Draft.target_id == str(target_id),
                    DraftTransaction.status.in_(BLOCKING_STATUSES),
                )
                .order_by(Draft.created_at.desc(), Draft.id.desc())
                .first()
            )

        return self._execute(handler)

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result
