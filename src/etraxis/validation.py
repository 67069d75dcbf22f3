"""Shared validation functions for all entry points.

Pure functions with no FastAPI or Click dependencies.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date
from typing import Any

_MAX_ACTOR_LENGTH = 254

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")


def _find_control_char(value: str, *, allow_newlines: bool = False) -> str | None:
    for ch in value:
        if allow_newlines and ch in "\n\r\t":
            continue
        if unicodedata.category(ch).startswith("C"):  # Cc (control) and Cf (format)
            return ch
    return None


def sanitize_actor(value: Any) -> tuple[str, str | None]:
    """Validate and clean an actor identity (a user email).

    Returns (cleaned_actor, None) on success or ("", error_message) on failure.
    """
    if not isinstance(value, str):
        return ("", "actor must be a string")
    ch = _find_control_char(value)
    if ch is not None:
        return ("", f"actor must not contain control characters (found U+{ord(ch):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", "actor must not be empty")
    if len(cleaned) > _MAX_ACTOR_LENGTH:
        return ("", f"actor must be at most {_MAX_ACTOR_LENGTH} characters")
    return (cleaned.lower(), None)


def clean_text(
    value: Any,
    name: str,
    max_length: int,
    *,
    required: bool = True,
    multiline: bool = False,
) -> str:
    """Strip and length-check a free-text input. Raises ValueError."""
    if value is None:
        value = ""
    if not isinstance(value, str):
        msg = f"{name} must be a string"
        raise ValueError(msg)
    ch = _find_control_char(value, allow_newlines=multiline)
    if ch is not None:
        msg = f"{name} must not contain control characters (found U+{ord(ch):04X})"
        raise ValueError(msg)
    cleaned = value.strip()
    if required and not cleaned:
        msg = f"{name} cannot be empty"
        raise ValueError(msg)
    if len(cleaned) > max_length:
        msg = f"{name} must be at most {max_length} characters"
        raise ValueError(msg)
    return cleaned


def clean_email(value: Any) -> str:
    email = clean_text(value, "email", _MAX_ACTOR_LENGTH).lower()
    if not _EMAIL_PATTERN.match(email):
        msg = f"Invalid email address: {email!r}"
        raise ValueError(msg)
    return email


def parse_iso_date(value: Any, name: str = "date") -> date:
    """Parse a strict YYYY-MM-DD string."""
    if not isinstance(value, str) or not re.fullmatch(r"\d{4}-\d{2}-\d{2}", value):
        msg = f"{name} must be a date in YYYY-MM-DD format"
        raise ValueError(msg)
    try:
        return date.fromisoformat(value)
    except ValueError:
        msg = f"{name} is not a valid calendar date: {value}"
        raise ValueError(msg) from None
