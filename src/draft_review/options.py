"""Application strategies that can be attached to a draft at submission."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, ValidationError

from draft_review.errors import InvalidArgumentError


class CreateMethod(str, Enum):
    """How a CREATE draft is written at approval time."""

    CREATE = "create"
    FIND_OR_CREATE = "find_or_create"


class UpdateMethod(str, Enum):
    """How an UPDATE draft is written at approval time."""

    UPDATE = "update"
    UPDATE_IF_EXISTS = "update_if_exists"


class DeleteMethod(str, Enum):
    """How a DELETE draft is written at approval time."""

    DELETE = "delete"
    DELETE_IF_EXISTS = "delete_if_exists"


class DraftOptions(BaseModel):
    """Validated per-draft overrides, stored as JSON on the draft row."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    create_method: CreateMethod = CreateMethod.CREATE
    update_method: UpdateMethod = UpdateMethod.UPDATE
    delete_method: DeleteMethod = DeleteMethod.DELETE

    def to_json(self) -> dict[str, str] | None:
        """Return only the non-default strategies, or ``None`` when all are default."""
        data = self.model_dump(mode="json", exclude_defaults=True)
        return data or None


def parse_options(value: DraftOptions | Mapping[str, Any] | None) -> DraftOptions:
    """Coerce caller or stored options into ``DraftOptions``.

    Unknown keys and unknown strategy names raise ``InvalidArgumentError``.
    """
    if value is None:
        return DraftOptions()
    if isinstance(value, DraftOptions):
        return value
    try:
        return DraftOptions.model_validate(dict(value))
    except (ValidationError, TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"invalid draft options: {exc}") from exc
