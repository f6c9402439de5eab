"""Schema versioning for the persisted case-file document.

Version 1 is the bare shape written by the first release: ``activeCaseId``,
``cases`` and ``ui`` at the top level, rent and impact percentages often
stored as the raw text typed into the form.  Version 2 wraps the same body
with a ``meta`` block (appId / version / updatedAt) and stores numbers as
numbers.

migrate_document() is applied once per load.  It unwraps whichever shape it
is given, runs the version steps in order and then normalises every case and
nested entity through the models in app.schemas, so callers always see the
current canonical shape.  Running it on its own output changes nothing.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable

from app.schemas import Case, CaseFileDocument, to_number

logger = logging.getLogger(__name__)

APP_ID = "landlord-case-file"
SCHEMA_VERSION = 2

_NESTED = {
    "defects": "defect",
    "incidents": "incident",
    "documents": "document",
    "letters": "letter",
}


def default_document() -> dict:
    """An empty document: no cases, nothing selected, snapshot tab."""
    return {"activeCaseId": None, "cases": [], "ui": {"tab": "snapshot", "query": ""}}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _parse_version(value: Any) -> int:
    """Accept 2, "2" or the "v2" tag style used by sibling apps."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        match = re.fullmatch(r"v?(\d+)", value.strip(), flags=re.IGNORECASE)
        if match:
            return int(match.group(1))
    return 1


def unwrap(payload: Any) -> tuple[dict | None, int]:
    """Strip any envelope and return ``(document body, stored schema version)``.

    Handles three shapes:
    - bare document (version 1),
    - meta-tagged document ``{"meta": {"version": ...}, "cases": [...], ...}``,
    - export envelope ``{"exportedAt": ..., "profile": ..., "data": {...}}``.
    """
    if not isinstance(payload, dict):
        return None, 0
    if "cases" not in payload and isinstance(payload.get("data"), dict):
        payload = payload["data"]
    meta = payload.get("meta")
    version = _parse_version(meta.get("version")) if isinstance(meta, dict) else 1
    body = {k: v for k, v in payload.items() if k != "meta"}
    return body, version


# ---------------------------------------------------------------------------
# Version steps
# ---------------------------------------------------------------------------


def _v1_case(case: Any) -> Any:
    if not isinstance(case, dict):
        return case
    case = {**case, "rentWarm": to_number(case.get("rentWarm"))}
    case["defects"] = [
        {**d, "impactPercent": to_number(d.get("impactPercent"))} if isinstance(d, dict) else d
        for d in _as_list(case.get("defects"))
    ]
    case["incidents"] = [
        {
            **i,
            "tags": _as_list(i.get("tags")),
            "evidence": _as_list(i.get("evidence")),
            "attachments": _as_list(i.get("attachments")),
        }
        if isinstance(i, dict)
        else i
        for i in _as_list(case.get("incidents"))
    ]
    return case


def _v1_to_v2(doc: dict) -> dict:
    return {**doc, "cases": [_v1_case(c) for c in _as_list(doc.get("cases"))]}


MIGRATIONS: dict[int, Callable[[dict], dict]] = {
    1: _v1_to_v2,
}


def _run_steps(body: dict, version: int) -> dict:
    if version > SCHEMA_VERSION:
        logger.warning(
            "Document schema v%d is newer than supported v%d; reading it as-is", version, SCHEMA_VERSION
        )
    for step_version in range(version, SCHEMA_VERSION):
        step = MIGRATIONS.get(step_version)
        if step is not None:
            logger.debug("Migrating document from schema v%d", step_version)
            body = step(body)
    return body


# ---------------------------------------------------------------------------
# Missing ids
# ---------------------------------------------------------------------------


def _with_id(entity: Any, fallback: str) -> Any:
    if isinstance(entity, dict) and not entity.get("id"):
        return {**entity, "id": fallback}
    return entity


def _fill_case_ids(case: Any, fallback: str) -> Any:
    """Give id-less entries a stable id derived from their position.

    Stable (not random) so that loading the same stored text twice yields the
    same document.
    """
    case = _with_id(case, fallback)
    if not isinstance(case, dict):
        return case
    case_id = case["id"]
    case = dict(case)
    for key, kind in _NESTED.items():
        if key in case:
            case[key] = [
                _with_id(item, f"{case_id}-{kind}-{n}") for n, item in enumerate(_as_list(case[key]))
            ]
    incidents = []
    for incident in _as_list(case.get("incidents")):
        if isinstance(incident, dict):
            incident = dict(incident)
            for key in ("evidence", "attachments"):
                if key in incident:
                    incident[key] = [
                        _with_id(item, f"{incident['id']}-{key}-{n}")
                        for n, item in enumerate(_as_list(incident[key]))
                    ]
        incidents.append(incident)
    if "incidents" in case:
        case["incidents"] = incidents
    return case


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def migrate_document(payload: Any) -> dict:
    """Bring any stored or imported document shape to the current canonical dict."""
    body, version = unwrap(payload)
    if body is None:
        logger.warning("Stored document is not a JSON object; starting empty")
        return default_document()
    body = _run_steps(body, version)
    body["cases"] = [
        _fill_case_ids(c, f"legacy-case-{n}") for n, c in enumerate(_as_list(body.get("cases")))
    ]
    doc = CaseFileDocument.model_validate(body).to_dict()
    if doc["activeCaseId"] and not any(c["id"] == doc["activeCaseId"] for c in doc["cases"]):
        logger.info("Active case %s no longer exists; clearing selection", doc["activeCaseId"])
        doc["activeCaseId"] = None
    return doc


def migrate_case(payload: dict) -> dict:
    """Normalise a single exported case (always stored without a meta block)."""
    case = _run_steps({"cases": [payload]}, 1)["cases"][0]
    return Case.model_validate(_fill_case_ids(case, "legacy-case-0")).to_dict()
