"""Persistence for the case-file document and the user profile.

The whole application state is one JSON document kept in a single storage
slot, data/slots/<key>.json.  Every change rewrites the slot in full; there
are no partial writes.  A second slot holds the small user profile shared
with sibling tools.

Loading never fails: a missing, unreadable or corrupt slot yields the empty
default document.  Saving can fail (quota, disk full); the caller decides
how to report that and the in-memory document is left untouched.
"""

from __future__ import annotations

import contextlib
import errno
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

import sys as _sys
_sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
from shared.config_store import get_config_number, get_config_value

from app.migrations import APP_ID, SCHEMA_VERSION, default_document, migrate_document

logger = logging.getLogger(__name__)

TOOL_NAME = "case-file"

# ── Paths and limits ─────────────────────────────────────────────────────────

DATA_DIR = Path(__file__).resolve().parent.parent / "data" / "slots"

STORAGE_KEY: str = get_config_value(TOOL_NAME, "storage_key", "landlord_case_file_app_v1")
PROFILE_KEY = "toolstack.profile.v1"

# Same ceiling as browser local storage (~5 MB per origin)
MAX_SLOT_BYTES = int(get_config_number(TOOL_NAME, "max_slot_mb", 5) * 1024 * 1024)

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class StorageError(Exception):
    """The slot could not be written."""


class QuotaExceededError(StorageError):
    """The slot rejected the write because the document is too large."""


def default_profile() -> dict:
    return {"org": "ToolStack", "user": "", "language": "EN", "logo": ""}


# ── Slot primitives ──────────────────────────────────────────────────────────


def _slot_path(key: str) -> Path:
    """Return the file path for a storage key."""
    # Keys are fixed strings, but never let one escape DATA_DIR
    safe_key = "".join(c for c in key if c.isalnum() or c in "-_.").strip(".")
    return DATA_DIR / f"{safe_key}.json"


def _read_slot(key: str) -> str | None:
    path = _slot_path(key)
    if not path.exists():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read storage slot %s: %s", path, exc)
        return None


def _write_slot(key: str, text: str) -> None:
    """Replace the slot with *text*.

    The new text goes to a sibling ``.tmp`` file first and is moved over the
    slot only once it is fully on disk, so a failed write leaves the last
    saved document in place.
    """
    size = len(text.encode("utf-8"))
    if size > MAX_SLOT_BYTES:
        raise QuotaExceededError(
            f"Document is {size} bytes; the storage slot allows {MAX_SLOT_BYTES}. "
            "Export your data and remove large attachments."
        )
    path = _slot_path(key)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        with tmp_path.open("w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        with contextlib.suppress(OSError):
            tmp_path.unlink(missing_ok=True)
        if exc.errno in _QUOTA_ERRNOS:
            raise QuotaExceededError(f"Storage is full: {exc}") from exc
        raise StorageError(f"Could not write {path}: {exc}") from exc


# ── Document ─────────────────────────────────────────────────────────────────


def serialize_document(doc: dict) -> str:
    """The exact text written to the slot: the document plus a meta block."""
    stamped = {
        "meta": {
            "appId": APP_ID,
            "version": SCHEMA_VERSION,
            "updatedAt": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        },
        **{k: v for k, v in doc.items() if k != "meta"},
    }
    return json.dumps(stamped, ensure_ascii=False)


def parse_document(text: str | None) -> dict:
    """Parse slot text into a canonical document, falling back to the default."""
    if not text:
        return default_document()
    try:
        payload: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Stored case file is not valid JSON (%s); starting empty", exc)
        return default_document()
    try:
        return migrate_document(payload)
    except ValidationError as exc:
        logger.warning("Stored case file could not be normalised (%s); starting empty", exc)
        return default_document()


def load_document(key: str | None = None) -> dict:
    """Read the document from its slot.  Never raises."""
    return parse_document(_read_slot(key or STORAGE_KEY))


def save_document(doc: dict, key: str | None = None) -> None:
    """Write the whole document to its slot.

    Raises QuotaExceededError when the slot is full, StorageError for any
    other write failure.
    """
    _write_slot(key or STORAGE_KEY, serialize_document(doc))


def wipe_document(key: str | None = None) -> bool:
    """Delete the slot.  Returns True if something was stored."""
    path = _slot_path(key or STORAGE_KEY)
    if not path.exists():
        return False
    try:
        path.unlink()
    except OSError as exc:
        raise StorageError(f"Could not delete {path}: {exc}") from exc
    return True


# ── Profile ──────────────────────────────────────────────────────────────────


def load_profile() -> dict:
    """Load the user profile, merged over the defaults."""
    text = _read_slot(PROFILE_KEY)
    if not text:
        return default_profile()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Stored profile is not valid JSON; using defaults")
        return default_profile()
    if not isinstance(data, dict):
        return default_profile()
    return {**default_profile(), **data}


def save_profile(profile: dict) -> dict:
    merged = {**default_profile(), **profile}
    _write_slot(PROFILE_KEY, json.dumps(merged, ensure_ascii=False))
    return merged
