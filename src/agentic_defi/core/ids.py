"""Canonical ID and timestamp factories.

All modules import from here instead of defining local _uuid()/_now() copies.

Timestamp Rule
--------------
All timestamps are ``datetime`` with ``tzinfo=timezone.utc``, never naive.
Backend records exchange milliseconds since epoch; use :func:`to_ms` and
:func:`from_ms` at that boundary.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone


def new_id() -> str:
    """Generate a new UUID v4 string.  Use for all internal entity IDs."""
    return str(uuid.uuid4())


def new_session_id(now: datetime | None = None) -> str:
    """Generate a session key ID of the form ``sk_<ms>_<random>``."""
    ts = to_ms(now or utc_now())
    return f"sk_{ts}_{secrets.token_hex(4)}"


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def to_ms(dt: datetime) -> int:
    """Convert an aware datetime to milliseconds since epoch."""
    return int(dt.timestamp() * 1000)


def from_ms(ms: int) -> datetime:
    """Convert milliseconds since epoch to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
