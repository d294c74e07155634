"""Shared validation functions for all entry points.

Pure functions — no FastAPI or Click dependencies.
"""

from __future__ import annotations

import unicodedata
from typing import Any

_MAX_ACTOR_LENGTH = 128
MAX_REASON_LENGTH = 500


def sanitize_actor(value: Any) -> tuple[str, str | None]:
    """Validate and clean an actor/requester id.

    Returns (cleaned_actor, None) on success or ("", error_message) on failure.
    Strips whitespace, then checks: non-empty, max length, no control/format chars.
    """
    if not isinstance(value, str):
        return ("", "actor must be a string")
    # Reject "\nbad" rather than silently absorbing the newline via strip().
    for ch in value:
        if unicodedata.category(ch).startswith("C"):  # Cc (control) and Cf (format)
            return ("", f"actor must not contain control characters (found U+{ord(ch):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", "actor must not be empty")
    if len(cleaned) > _MAX_ACTOR_LENGTH:
        return ("", f"actor must be at most {_MAX_ACTOR_LENGTH} characters")
    return (cleaned, None)


def sanitize_reason(value: Any, *, field: str = "reason") -> tuple[str, str | None]:
    """Validate a free-text hold/cancellation reason.

    Newlines and tabs are allowed; other control characters are not.
    """
    if not isinstance(value, str):
        return ("", f"{field} must be a string")
    for ch in value:
        if ch in "\n\t":
            continue
        if unicodedata.category(ch).startswith("C"):
            return ("", f"{field} must not contain control characters (found U+{ord(ch):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", f"{field} is required")
    if len(cleaned) > MAX_REASON_LENGTH:
        return ("", f"{field} must be at most {MAX_REASON_LENGTH} characters")
    return (cleaned, None)


def require_actor(value: Any) -> str:
    """``sanitize_actor`` for library callers: raises ValueError instead of returning the error."""
    cleaned, err = sanitize_actor(value)
    if err is not None:
        raise ValueError(err)
    return cleaned


def require_reason(value: Any) -> str:
    cleaned, err = sanitize_reason(value)
    if err is not None:
        raise ValueError(err)
    return cleaned
