"""Approve or reject a draft transaction as one unit."""

from __future__ import annotations

import logging
import traceback
from contextlib import closing
from typing import Callable

from sqlalchemy.orm import Session

from draft_review.applier import apply_draft
from draft_review.config import ApprovalSettings
from draft_review.db import transactional_session
from draft_review.errors import DraftTransactionNotFoundError, exception_to_error
from draft_review.logging import fields, log_context
from draft_review.models import APPROVAL_ERROR, APPROVED, REJECTED, Draft, DraftTransaction
from draft_review.registry import DraftableRegistry

logger = logging.getLogger(__name__)


class ApprovalService:
    """State machine for reviewing draft transactions.

    ``pending_approval`` and ``approval_error`` transactions can be approved
    or rejected; ``approved`` and ``rejected`` are terminal and returned as-is.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: DraftableRegistry,
        settings: ApprovalSettings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._settings = settings or ApprovalSettings()

    def approve(
        self,
        transaction_id: int,
        reviewed_by: str | None = None,
        review_reason: str | None = None,
    ) -> DraftTransaction:
        """Apply every draft of the transaction atomically.

        On failure nothing is applied, the transaction is marked
        ``approval_error`` with a diagnostic, and the original error is
        re-raised.
        """
        with log_context(
            {fields.DRAFT_TRANSACTION_ID: transaction_id, fields.REVIEWED_BY: reviewed_by}
        ):
            with closing(self._session_factory()) as session:
                session.expire_on_commit = False
                try:
                    draft_transaction = self._lock(session, transaction_id)
                    if draft_transaction.is_terminal:
                        logger.info(
                            "Ignored approval of finished transaction: status=%s",
                            draft_transaction.status,
                        )
                        session.commit()
                        return draft_transaction

                    drafts = (
                        session.query(Draft)
                        .filter(Draft.draft_transaction_id == transaction_id)
                        .order_by(Draft.created_at, Draft.id)
                        .all()
                    )
                    for draft in drafts:
                        with log_context({fields.DRAFT_ID: draft.id, fields.TARGET_TYPE: draft.target_type}):
                            apply_draft(session, draft, self._registry)

                    draft_transaction.status = APPROVED
                    draft_transaction.reviewed_by = reviewed_by
                    draft_transaction.review_reason = review_reason
                    draft_transaction.error = None
                    session.commit()
                except Exception as exc:
                    session.rollback()
                    logger.exception("Draft transaction approval failed")
                    if not isinstance(exc, DraftTransactionNotFoundError):
                        self._record_failure(transaction_id, exc)
                    raise

            logger.info("Approved draft transaction: drafts=%s", len(drafts))
            return draft_transaction

    def reject(
        self,
        transaction_id: int,
        reviewed_by: str | None = None,
        review_reason: str | None = None,
    ) -> DraftTransaction:
        """Mark the transaction rejected without applying any draft."""
        with log_context(
            {fields.DRAFT_TRANSACTION_ID: transaction_id, fields.REVIEWED_BY: reviewed_by}
        ):
            with transactional_session(self._session_factory) as session:
                session.expire_on_commit = False
                draft_transaction = self._lock(session, transaction_id)
                if draft_transaction.is_terminal:
                    logger.info(
                        "Ignored rejection of finished transaction: status=%s",
                        draft_transaction.status,
                    )
                    return draft_transaction
                draft_transaction.status = REJECTED
                draft_transaction.reviewed_by = reviewed_by
                draft_transaction.review_reason = review_reason
            logger.info("Rejected draft transaction")
            return draft_transaction

    def _lock(self, session: Session, transaction_id: int) -> DraftTransaction:
        draft_transaction = (
            session.query(DraftTransaction)
            .filter(DraftTransaction.id == transaction_id)
            .with_for_update()
            .one_or_none()
        )
        if draft_transaction is None:
            raise DraftTransactionNotFoundError(f"draft transaction {transaction_id} does not exist")
        return draft_transaction

    def _record_failure(self, transaction_id: int, exc: BaseException) -> None:
        """Persist ``approval_error`` and the diagnostic in a fresh session."""
        text = exception_to_error(exc).summary()
        if self._settings.include_traceback:
            text = f"{text}\n\n{traceback.format_exc()}"
        text = text[: self._settings.max_error_length]

        with transactional_session(self._session_factory) as session:
            draft_transaction = session.get(DraftTransaction, transaction_id)
            if draft_transaction is None:
                return
            draft_transaction.status = APPROVAL_ERROR
            draft_transaction.error = text

