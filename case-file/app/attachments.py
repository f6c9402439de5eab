"""Attachment encoding and size rules for incident files.

Attachments live inside the case-file document, which is plain JSON, so
their bytes are stored through a BlobStore that turns them into a text
handle.  The default DataUrlBlobStore produces the same
``data:<mime>;base64,<payload>`` string a browser FileReader yields, which
keeps documents exported from either side interchangeable.

Size is checked before any bytes are read or encoded; an oversized file
never touches the document.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote_to_bytes

import sys as _sys
_sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
from shared.config_store import get_config_number

from app.crud import add_attachment
from app.schemas import Attachment

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_MB = get_config_number("case-file", "max_attachment_mb", 2)
MAX_ATTACHMENT_BYTES = int(MAX_ATTACHMENT_MB * 1024 * 1024)

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?P<b64>;base64)?,(?P<payload>.*)$", re.DOTALL)


class AttachmentTooLargeError(ValueError):
    """The file exceeds MAX_ATTACHMENT_BYTES; nothing was read or stored."""


class BlobStore(Protocol):
    def put(self, data: bytes, mime: str) -> str:
        """Store *data* and return an opaque handle."""

    def get(self, handle: str) -> bytes:
        """Return the bytes behind *handle*."""


class DataUrlBlobStore:
    """Inline blob store: the handle is the base64 data URL itself."""

    def put(self, data: bytes, mime: str) -> str:
        encoded = base64.b64encode(data).decode("ascii")
        return f"data:{mime or 'application/octet-stream'};base64,{encoded}"

    def get(self, handle: str) -> bytes:
        match = _DATA_URL_RE.match(handle or "")
        if match is None:
            raise ValueError("Not a data URL")
        payload = match.group("payload")
        if match.group("b64"):
            try:
                return base64.b64decode(payload, validate=True)
            except binascii.Error as exc:
                raise ValueError(f"Corrupt base64 payload: {exc}") from exc
        return unquote_to_bytes(payload)


def check_attachment_size(size: int) -> None:
    """Reject files over the limit before they are read."""
    if size > MAX_ATTACHMENT_BYTES:
        raise AttachmentTooLargeError(
            f"File too large ({size} bytes); attachments are limited to {MAX_ATTACHMENT_MB:g} MB."
        )


def build_attachment(name: str, mime: str, data: bytes, blob_store: BlobStore | None = None) -> dict:
    check_attachment_size(len(data))
    store = blob_store or DataUrlBlobStore()
    return Attachment.create(
        name=name or "",
        type=mime or "",
        size=len(data),
        data_url=store.put(data, mime),
    ).to_dict()


def attach_file(
    doc: dict,
    case_id: str,
    incident_id: str,
    name: str,
    mime: str,
    data: bytes,
    blob_store: BlobStore | None = None,
) -> dict:
    """Encode *data* and prepend it to the incident's attachments.

    Raises AttachmentTooLargeError (document unchanged) for oversized files.
    """
    attachment = build_attachment(name, mime, data, blob_store)
    logger.debug("Attaching %s (%d bytes) to incident %s", name, len(data), incident_id)
    return add_attachment(doc, case_id, incident_id, attachment)


def read_attachment(attachment: dict, blob_store: BlobStore | None = None) -> bytes:
    """Decode a stored attachment back to its bytes."""
    store = blob_store or DataUrlBlobStore()
    return store.get(attachment.get("dataUrl", ""))
