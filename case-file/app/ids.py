"""Identifier and timestamp helpers shared by every entity in a case file."""

from __future__ import annotations

import itertools
import secrets
import time
import uuid
from datetime import datetime, timezone

_fallback_counter = itertools.count()


def new_id() -> str:
    """Return a fresh opaque entity id.

    Random UUIDs are preferred.  On platforms without an OS randomness source
    uuid4() raises NotImplementedError, so a random/timestamp composite is used
    instead; the process-wide counter keeps two fallback ids apart even when
    they share a millisecond.
    """
    try:
        return str(uuid.uuid4())
    except NotImplementedError:
        return _fallback_id()


def _fallback_id() -> str:
    try:
        salt = secrets.token_hex(6)
    except NotImplementedError:
        salt = f"{id(object()):x}"
    return f"id_{salt}_{int(time.time() * 1000)}_{next(_fallback_counter)}"


def now_iso() -> str:
    """Creation timestamp for new entities (ISO-8601, UTC)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_local_minute() -> str:
    """Local date-time at minute precision, e.g. "2024-11-03T18:05"."""
    return datetime.now().strftime("%Y-%m-%dT%H:%M")
