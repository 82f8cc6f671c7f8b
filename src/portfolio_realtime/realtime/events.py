"""Change event variants and decoding of raw change-feed payloads."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Union


@dataclass(frozen=True)
class InsertEvent:
    """A row was inserted; ``record`` holds the new row's own columns."""

    record: Dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="insert", init=False)


@dataclass(frozen=True)
class UpdateEvent:
    """A row was updated; ``record`` holds the row after the change."""

    record: Dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="update", init=False)


@dataclass(frozen=True)
class DeleteEvent:
    """A row was deleted; only its identifier is carried."""

    record_id: str
    kind: str = field(default="delete", init=False)


ChangeEvent = Union[InsertEvent, UpdateEvent, DeleteEvent]


def decode_change(payload: Union[Mapping[str, Any], bytes, str]) -> ChangeEvent:
    """Decode a ``{eventType, new, old}`` payload into a :data:`ChangeEvent`.

    Raises ``ValueError`` for payloads that are not JSON objects, carry an
    unknown event type, or lack the row required by their type.
    """

    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError("change payload is not valid JSON") from exc
    if not isinstance(payload, Mapping):
        raise ValueError("change payload must be an object")

    event_type = str(payload.get("eventType") or payload.get("type") or "").upper()
    if event_type in {"INSERT", "UPDATE"}:
        row = payload.get("new") or payload.get("record")
        if not isinstance(row, Mapping):
            raise ValueError(f"{event_type} payload is missing the new row")
        if event_type == "INSERT":
            return InsertEvent(record=dict(row))
        return UpdateEvent(record=dict(row))
    if event_type == "DELETE":
        old = payload.get("old") or payload.get("old_record")
        if not isinstance(old, Mapping) or old.get("id") is None:
            raise ValueError("DELETE payload is missing the old row id")
        return DeleteEvent(record_id=str(old["id"]))
    raise ValueError(f"unsupported change event type: {event_type or '<empty>'}")


__all__ = [
    "ChangeEvent",
    "DeleteEvent",
    "InsertEvent",
    "UpdateEvent",
    "decode_change",
]
