"""Unit tests for draft application strategy options."""

from __future__ import annotations

import pytest

from draft_review.errors import InvalidArgumentError
from draft_review.options import (
    CreateMethod,
    DeleteMethod,
    DraftOptions,
    UpdateMethod,
    parse_options,
)


def test_default_options_are_not_stored() -> None:
    """All-default options serialize to ``None``."""
    assert DraftOptions().to_json() is None
    assert parse_options(None) == DraftOptions()


def test_only_non_default_strategies_are_stored() -> None:
    """Stored options keep just the overridden strategies as plain strings."""
    options = parse_options({"create_method": "find_or_create"})

    assert options.create_method is CreateMethod.FIND_OR_CREATE
    assert options.update_method is UpdateMethod.UPDATE
    assert options.to_json() == {"create_method": "find_or_create"}


def test_stored_options_parse_back_to_enums() -> None:
    """Options read from a draft row come back as strategy enums."""
    options = parse_options({"update_method": "update_if_exists", "delete_method": "delete_if_exists"})

    assert options.update_method is UpdateMethod.UPDATE_IF_EXISTS
    assert options.delete_method is DeleteMethod.DELETE_IF_EXISTS


@pytest.mark.parametrize(
    "value",
    [
        {"create_method": "upsert"},
        {"update_method": "patch"},
        {"serializer_class": "Json"},
    ],
)
def test_unknown_strategies_fail_loudly(value: dict[str, str]) -> None:
    """Unknown strategy names and unknown keys are rejected at submission."""
    with pytest.raises(InvalidArgumentError):
        parse_options(value)


def test_options_instance_passes_through() -> None:
    """An existing ``DraftOptions`` is returned unchanged."""
    options = DraftOptions(delete_method=DeleteMethod.DELETE_IF_EXISTS)
    assert parse_options(options) is options
