"""Record references stored inside draft change-sets.

In memory a reference is either a ``RecordRef`` (a concrete persisted row)
or a ``DraftRef`` (a pending draft in the same transaction, used when the
referenced record does not exist yet). At the storage boundary both take the
``{"type": ..., "id": ...}`` JSON shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Union

TYPE_KEY = "type"
ID_KEY = "id"
DRAFT_TYPE_NAME = "Draft"


@dataclass(frozen=True)
class RecordRef:
    """Pointer to a concrete persisted record."""

    type_name: str
    id: Any

    def to_json(self) -> dict[str, Any]:
        return {TYPE_KEY: self.type_name, ID_KEY: self.id}


@dataclass(frozen=True)
class DraftRef:
    """Pointer to a pending draft whose target may not exist yet."""

    id: int

    @property
    def type_name(self) -> str:
        return DRAFT_TYPE_NAME

    def to_json(self) -> dict[str, Any]:
        return {TYPE_KEY: DRAFT_TYPE_NAME, ID_KEY: self.id}


Reference = Union[RecordRef, DraftRef]


def reference_to_json(ref: Reference | None) -> dict[str, Any] | None:
    """Serialize an optional reference to its JSON shape."""
    if ref is None:
        return None
    return ref.to_json()


def reference_from_json(value: Mapping[str, Any] | None) -> Reference | None:
    """Parse the stored ``{type, id}`` shape back into a reference."""
    if value is None:
        return None
    if not isinstance(value, Mapping) or TYPE_KEY not in value or ID_KEY not in value:
        raise ValueError(f"malformed record reference: {value!r}")
    type_name = value[TYPE_KEY]
    if type_name == DRAFT_TYPE_NAME:
        return DraftRef(id=int(value[ID_KEY]))
    return RecordRef(type_name=str(type_name), id=value[ID_KEY])
