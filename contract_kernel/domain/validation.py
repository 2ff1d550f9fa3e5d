"""
Lightweight domain validation helpers.

Pure checks with no I/O, run before any row is locked or any number is
allocated so that rejected input never consumes a sequence value.
"""

from __future__ import annotations

from contract_kernel.exceptions import MissingFieldError


def require_text(value: str | None, field: str) -> str:
    """Return value stripped of surrounding whitespace; MissingFieldError if blank."""
    if value is None or not value.strip():
        raise MissingFieldError(field)
    return value.strip()


def optional_text(value: str | None) -> str | None:
    """Strip value; blank strings collapse to None."""
    if value is None:
        return None
    value = value.strip()
    return value or None
