"""Runtime wiring for the draft review services."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from draft_review.approval import ApprovalService
from draft_review.config import DraftReviewSettings
from draft_review.coordinator import DraftTransactionCoordinator
from draft_review.db import create_database_engine, create_session_factory, install_schema, ping
from draft_review.logging import configure_logging
from draft_review.registry import DraftableRegistry
from draft_review.repository import DraftTransactionRepository
from draft_review.writer import DraftWriter


@dataclass(frozen=True)
class DraftReviewRuntime:
    """Concrete handles for capturing, reviewing and approving drafts."""

    engine: Engine
    session_factory: sessionmaker[Session]
    registry: DraftableRegistry
    coordinator: DraftTransactionCoordinator
    writer: DraftWriter
    approvals: ApprovalService
    repository: DraftTransactionRepository

    @classmethod
    def from_settings(
        cls,
        settings: DraftReviewSettings,
        registry: DraftableRegistry,
    ) -> "DraftReviewRuntime":
        """Build the runtime from typed application settings.

        Also installs the stdout logging handler described by
        ``settings.logging``.
        """
        configure_logging(settings.logging)
        engine = create_database_engine(settings.database)
        return cls.from_engine(engine, registry, settings)

    @classmethod
    def from_engine(
        cls,
        engine: Engine,
        registry: DraftableRegistry,
        settings: DraftReviewSettings | None = None,
    ) -> "DraftReviewRuntime":
        """Build the runtime around an existing engine."""
        settings = settings or DraftReviewSettings()
        session_factory = create_session_factory(engine)
        coordinator = DraftTransactionCoordinator(session_factory)
        return cls(
            engine=engine,
            session_factory=session_factory,
            registry=registry,
            coordinator=coordinator,
            writer=DraftWriter(coordinator, registry),
            approvals=ApprovalService(session_factory, registry, settings.approval),
            repository=DraftTransactionRepository(session_factory),
        )

    def install_schema(self) -> None:
        """Create the draft tables."""
        install_schema(self.engine)

    def is_healthy(self) -> bool:
        """Return ``True`` when the backing database is reachable."""
        return ping(self.engine)
