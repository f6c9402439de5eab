"""The single owner of the in-memory case-file document.

Every change goes through CaseFileSession.apply(): run one pure transition
from app.crud / app.letters / app.transfer / app.attachments, keep the
result as the current document, then save the whole document.  Nothing else
holds or mutates the document.

A failed save does not undo the change.  The session keeps the new state,
records a warning for the user and tries again on the next change, so the
slot can lag behind memory until space is freed (typically by removing
attachments).
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import sys as _sys
_sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
from shared.config_store import get_config_number

from app import crud, store

logger = logging.getLogger(__name__)

NOTICE_LIMIT = int(get_config_number("case-file", "notice_limit", 20))

STORAGE_FULL_MESSAGE = "Storage is full. Export and delete large attachments."


@dataclass
class Notice:
    """A short message for the user (the equivalent of a toast)."""

    message: str
    level: str = "info"  # info | warning
    at: str = field(default_factory=lambda: datetime.now().isoformat(timespec="seconds"))


class CaseFileSession:
    """Holds the current document and persists it after every transition."""

    def __init__(self, key: str | None = None) -> None:
        self.key = key or store.STORAGE_KEY
        self.doc: dict = store.load_document(self.key)
        self.notices: deque[Notice] = deque(maxlen=NOTICE_LIMIT)
        self.dirty = False
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def apply(self, transition: Callable[..., dict], *args: Any, notice: str = "", **kwargs: Any) -> dict:
        """Run ``transition(doc, *args, **kwargs)``, adopt its result and save.

        Exceptions raised by the transition propagate and leave the document
        as it was.  Storage errors during the save are reported as a warning
        notice instead.  Transitions are serialised: a concurrent caller waits
        until this transition and its save have finished.
        """
        with self._lock:
            self.doc = transition(self.doc, *args, **kwargs)
            self.save()
            if notice:
                self.notify(notice)
            return self.doc

    def save(self) -> bool:
        """Persist the current document.  Returns False if storage refused it."""
        with self._lock:
            try:
                store.save_document(self.doc, self.key)
            except store.QuotaExceededError as exc:
                logger.warning("Case file not saved: %s", exc)
                self.dirty = True
                self.notify(STORAGE_FULL_MESSAGE, level="warning")
                return False
            except store.StorageError as exc:
                logger.error("Case file not saved: %s", exc)
                self.dirty = True
                self.notify(f"Could not save your data: {exc}", level="warning")
                return False
            self.dirty = False
            return True

    def reload(self) -> dict:
        """Discard in-memory state and read the slot again."""
        with self._lock:
            self.doc = store.load_document(self.key)
            self.dirty = False
            return self.doc

    def wipe(self, notice: str = "") -> dict:
        """Delete the slot and start over with an empty document.  Cannot be undone."""
        with self._lock:
            store.wipe_document(self.key)
            self.doc = crud.wipe_all()
            self.dirty = False
            if notice:
                self.notify(notice)
            return self.doc

    # ------------------------------------------------------------------
    # Notices
    # ------------------------------------------------------------------
    def notify(self, message: str, level: str = "info") -> None:
        with self._lock:
            self.notices.append(Notice(message=message, level=level))

    def drain_notices(self) -> list[Notice]:
        with self._lock:
            pending = list(self.notices)
            self.notices.clear()
            return pending

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------
    @property
    def active_case(self) -> dict | None:
        return crud.active_case(self.doc)
