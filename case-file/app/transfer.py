"""JSON export and import for case files.

Exports are pretty-printed UTF-8 JSON of either one case or the whole
document.  Imports accept either of those back:

- an object with a ``cases`` list is a full document and REPLACES the
  current one;
- an object with ``id``, ``title``, ``defects`` and ``incidents`` is a single
  case: any existing case with the same id is dropped, the imported case is
  put first and selected;
- anything else is rejected and the current document is left alone.

Imported data goes through the same migration as a stored document, so older
exports come in with every newer field defaulted.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Literal

from app.migrations import migrate_case, migrate_document

logger = logging.getLogger(__name__)

ALL_EXPORT_FILENAME = "landlord-casefile-all.json"

ImportKind = Literal["document", "case"]


class ImportRejected(ValueError):
    """Base class for imports that leave the document unchanged."""


class InvalidImportError(ImportRejected):
    """The import file is not valid JSON."""


class UnrecognizedImportError(ImportRejected):
    """Valid JSON, but neither a full document nor a single case."""


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def _dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def export_case_json(case: dict) -> str:
    return _dumps(case)


def export_document_json(doc: dict) -> str:
    return _dumps(doc)


def filename_stem(title: str | None) -> str:
    """Case title with every run of characters outside [A-Za-z0-9_-] collapsed to "-"."""
    return re.sub(r"[^A-Za-z0-9\-_]+", "-", title or "case")


def case_export_filename(case: dict) -> str:
    return f"{filename_stem(case.get('title'))}-export.json"


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def parse_import(text: str | bytes) -> Any:
    """Parse an uploaded file.  Raises InvalidImportError on bad JSON."""
    try:
        if isinstance(text, bytes):
            text = text.decode("utf-8-sig")
        return json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidImportError(f"Invalid JSON: {exc}") from exc


def _looks_like_case(payload: dict) -> bool:
    return (
        bool(payload.get("id"))
        and bool(payload.get("title"))
        and isinstance(payload.get("defects"), list)
        and isinstance(payload.get("incidents"), list)
    )


def classify_import(payload: Any) -> ImportKind:
    """Decide what an import payload is.  Raises UnrecognizedImportError otherwise."""
    if isinstance(payload, dict):
        if isinstance(payload.get("cases"), list):
            return "document"
        data = payload.get("data")
        if isinstance(data, dict) and isinstance(data.get("cases"), list):
            return "document"
        if _looks_like_case(payload):
            return "case"
    raise UnrecognizedImportError("JSON recognized, but format not supported")


def upsert_case(doc: dict, case: dict) -> dict:
    """Put *case* first (replacing any case with the same id) and select it."""
    others = [c for c in doc.get("cases", []) if c.get("id") != case["id"]]
    return {**doc, "cases": [case, *others], "activeCaseId": case["id"]}


def import_payload(doc: dict, payload: Any) -> tuple[dict, ImportKind]:
    """Apply a parsed import to *doc*.  Returns ``(new document, kind)``.

    Raises UnrecognizedImportError, in which case *doc* is untouched.
    """
    kind = classify_import(payload)
    if kind == "document":
        new_doc = migrate_document(payload)
        logger.info("Imported full document with %d case(s)", len(new_doc["cases"]))
        return new_doc, kind
    case = migrate_case(payload)
    logger.info("Imported case %s", case["id"])
    return upsert_case(doc, case), kind


def import_text(doc: dict, text: str | bytes) -> tuple[dict, ImportKind]:
    """parse_import() followed by import_payload()."""
    return import_payload(doc, parse_import(text))
