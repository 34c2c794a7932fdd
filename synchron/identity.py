"""Canonical identifiers for registry lookups."""
from __future__ import annotations

from numbers import Integral
from typing import Any

from .errors import ValidationError

_MAX_IDENTIFIER_LENGTH = 128


def normalize_identifier(value: Any) -> str:
    """Return the canonical string form of a user identifier.

    Identifiers arrive from several clients, some of which send student
    numbers as JSON numbers and others as strings. Every lookup goes through
    this function so that ``430000001`` and ``"430000001"`` resolve to the
    same record.
    """

    if value is None or isinstance(value, bool):
        raise ValidationError("User id is required")

    if isinstance(value, Integral):
        text = str(int(value))
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"User id {value!r} is not a whole number")
        text = str(int(value))
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise ValidationError(f"Unsupported user id type: {type(value).__name__}")

    if not text:
        raise ValidationError("User id must not be empty")
    if len(text) > _MAX_IDENTIFIER_LENGTH:
        raise ValidationError("User id is too long")
    return text


__all__ = ["normalize_identifier"]
