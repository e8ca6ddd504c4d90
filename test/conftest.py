"""Pytest configuration for the draft review test suite."""

import os
import sys
from pathlib import Path
from typing import Generator

import pytest


def _ensure_test_env() -> None:
    """Keep developer config files and env overrides out of test runs."""
    for key in list(os.environ):
        if key.startswith("DRAFT_REVIEW_"):
            os.environ.pop(key)


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
TEST = ROOT / "test"
sys.path.insert(0, str(SRC))
sys.path.insert(0, str(TEST))

from sqlalchemy.orm import sessionmaker  # noqa: E402

from draft_review.approval import ApprovalService  # noqa: E402
from draft_review.config import ApprovalSettings  # noqa: E402
from draft_review.coordinator import DraftTransactionCoordinator  # noqa: E402
from draft_review.registry import DraftableRegistry  # noqa: E402
from draft_review.repository import DraftTransactionRepository  # noqa: E402
from draft_review.writer import DraftWriter  # noqa: E402
from helpers.database import make_session_factory  # noqa: E402
from helpers.sample_models import build_registry  # noqa: E402


@pytest.fixture
def sqlite_session_factory(tmp_path: Path) -> Generator[sessionmaker, None, None]:
    """Provide a sqlite session factory backed by a temp file."""
    factory = make_session_factory(tmp_path / "draft_review.db")
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def registry() -> DraftableRegistry:
    """Registry with every sample model registered."""
    return build_registry()


@pytest.fixture
def coordinator(sqlite_session_factory: sessionmaker) -> DraftTransactionCoordinator:
    return DraftTransactionCoordinator(sqlite_session_factory)


@pytest.fixture
def writer(coordinator: DraftTransactionCoordinator, registry: DraftableRegistry) -> DraftWriter:
    return DraftWriter(coordinator, registry)


@pytest.fixture
def approvals(sqlite_session_factory: sessionmaker, registry: DraftableRegistry) -> ApprovalService:
    return ApprovalService(
        sqlite_session_factory,
        registry,
        ApprovalSettings(include_traceback=False),
    )


@pytest.fixture
def repository(sqlite_session_factory: sessionmaker) -> DraftTransactionRepository:
    return DraftTransactionRepository(sqlite_session_factory)
