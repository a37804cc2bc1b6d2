"""Normalization of the polymorphic cell values returned by the record store.

A cell arrives in one of a few shapes: missing, a plain string, a list of
rich-text fragments or attachments, an object exposing ``text``/``link``/
``url``/``file_token``, or a bare scalar (numbers, checkboxes, timestamps).
Each reader below first tags the value with its :class:`FieldShape` and then
normalizes it for one kind of field.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class FieldShape(str, Enum):
    ABSENT = "absent"
    TEXT = "text"
    FRAGMENTS = "fragments"
    OBJECT = "object"
    SCALAR = "scalar"


_TRUTHY = {"true", "1", "yes", "y", "是"}


def field_shape(value: Any) -> FieldShape:
    if value is None or value == "" or value == []:
        return FieldShape.ABSENT
    if isinstance(value, str):
        return FieldShape.TEXT
    if isinstance(value, (list, tuple)):
        return FieldShape.FRAGMENTS
    if isinstance(value, dict):
        return FieldShape.OBJECT
    return FieldShape.SCALAR


def field_text(value: Any) -> str:
    """Plain text of a cell; fragments are concatenated in order."""
    shape = field_shape(value)
    if shape is FieldShape.TEXT:
        return value
    if shape is FieldShape.FRAGMENTS:
        return "".join(field_text(item) for item in value)
    if shape is FieldShape.OBJECT:
        text = value.get("text")
        return text if isinstance(text, str) else ""
    if shape is FieldShape.SCALAR:
        return str(value)
    return ""


def field_link(value: Any) -> str | None:
    shape = field_shape(value)
    if shape is FieldShape.TEXT:
        return value.strip() or None
    if shape is FieldShape.OBJECT:
        link = value.get("link") or value.get("url")
        return link if isinstance(link, str) and link else None
    if shape is FieldShape.FRAGMENTS:
        for item in value:
            link = field_link(item)
            if link:
                return link
    return None


def field_attachment(value: Any) -> str | None:
    """URL or file token of the first attachment in a cell."""
    shape = field_shape(value)
    if shape is FieldShape.TEXT:
        return value.strip() or None
    if shape is FieldShape.FRAGMENTS:
        return field_attachment(value[0])
    if shape is FieldShape.OBJECT:
        for key in ("url", "link", "file_token"):
            candidate = value.get(key)
            if isinstance(candidate, str) and candidate:
                return candidate
    return None


def field_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    shape = field_shape(value)
    if shape is FieldShape.TEXT:
        return value.strip().lower() in _TRUTHY
    if shape is FieldShape.SCALAR:
        return bool(value)
    return False


def field_timestamp(value: Any) -> datetime | None:
    """Read an epoch-milliseconds cell as an aware UTC datetime."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return None


def encode_text(text: str, shape: FieldShape = FieldShape.TEXT) -> Any:
    """Render ``text`` in one of the cell shapes the store may return."""
    if shape is FieldShape.FRAGMENTS:
        return [{"type": "text", "text": text}]
    if shape is FieldShape.OBJECT:
        return {"text": text}
    return text


def encode_timestamp(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)
