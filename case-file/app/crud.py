"""Add / update / delete for every collection in a case-file document.

Every function takes the current document and returns a new one; the input
is never modified, and sub-trees that did not change are shared between the
old and new documents.  The caller owns persisting the result (see
app.session).

Conventions shared by all collections:

- add     prepends the new entity (newest first) with a fresh id.
- update  shallow-merges a validated patch into the entity with that id.
- delete  filters the entity with that id out.

An id that matches nothing (stale UI, already deleted) makes the call a
no-op: the same document comes back and nothing is raised.  Confirmation
before a delete belongs to the caller.
"""

from __future__ import annotations

from typing import Any, Callable

from app.migrations import default_document
from app.schemas import (
    Case,
    CasePatch,
    Defect,
    DefectPatch,
    DocumentReference,
    DocumentReferencePatch,
    EvidenceLink,
    EvidenceLinkPatch,
    Incident,
    IncidentPatch,
    LetterPatch,
    build_patch,
)
from app.ids import now_local_minute


DEFAULT_DEFECT_TITLE = "Heating defect (room radiator not working)"
DEFAULT_INCIDENT_TYPE = "Heating / utilities"


# ---------------------------------------------------------------------------
# Collection primitives
# ---------------------------------------------------------------------------


def prepend(items: list[dict], entity: dict) -> list[dict]:
    return [entity, *items]


def patch_by_id(items: list[dict], entity_id: str, changes: dict) -> list[dict]:
    return [{**item, **changes} if item.get("id") == entity_id else item for item in items]


def remove_by_id(items: list[dict], entity_id: str) -> list[dict]:
    return [item for item in items if item.get("id") != entity_id]


def find_by_id(items: list[dict], entity_id: str) -> dict | None:
    for item in items:
        if item.get("id") == entity_id:
            return item
    return None


# ---------------------------------------------------------------------------
# Scoped rewrites
# ---------------------------------------------------------------------------


def get_case(doc: dict, case_id: str | None) -> dict | None:
    if not case_id:
        return None
    return find_by_id(doc.get("cases", []), case_id)


def active_case(doc: dict) -> dict | None:
    return get_case(doc, doc.get("activeCaseId"))


def _map_case(doc: dict, case_id: str, fn: Callable[[dict], dict]) -> dict:
    if get_case(doc, case_id) is None:
        return doc
    return {
        **doc,
        "cases": [fn(c) if c.get("id") == case_id else c for c in doc["cases"]],
    }


def _map_collection(doc: dict, case_id: str, key: str, fn: Callable[[list], list]) -> dict:
    return _map_case(doc, case_id, lambda c: {**c, key: fn(c.get(key, []))})


def _map_incident(doc: dict, case_id: str, incident_id: str, fn: Callable[[dict], dict]) -> dict:
    case = get_case(doc, case_id)
    if case is None or find_by_id(case.get("incidents", []), incident_id) is None:
        return doc
    return _map_collection(
        doc,
        case_id,
        "incidents",
        lambda items: [fn(i) if i.get("id") == incident_id else i for i in items],
    )


# ---------------------------------------------------------------------------
# Cases
# ---------------------------------------------------------------------------


def create_case(doc: dict, **fields: Any) -> dict:
    """Prepend a new case and make it the active one."""
    changes = build_patch(CasePatch, fields)
    if not changes.get("title"):
        changes["title"] = f"Case {len(doc.get('cases', [])) + 1}"
    case = Case.create(**changes).to_dict()
    return {**doc, "activeCaseId": case["id"], "cases": prepend(doc.get("cases", []), case)}


def update_case(doc: dict, case_id: str, patch: dict) -> dict:
    changes = build_patch(CasePatch, patch)
    return _map_case(doc, case_id, lambda c: {**c, **changes})


def delete_case(doc: dict, case_id: str) -> dict:
    """Remove a case and everything it owns.  There is no trash."""
    if get_case(doc, case_id) is None:
        return doc
    remaining = remove_by_id(doc["cases"], case_id)
    new_doc = {**doc, "cases": remaining}
    if doc.get("activeCaseId") == case_id:
        new_doc["activeCaseId"] = remaining[0]["id"] if remaining else None
        new_doc["ui"] = {**doc.get("ui", {}), "tab": "snapshot"}
    return new_doc


def select_case(doc: dict, case_id: str | None) -> dict:
    if case_id is not None and get_case(doc, case_id) is None:
        return doc
    return {**doc, "activeCaseId": case_id}


def wipe_all() -> dict:
    return default_document()


# ---------------------------------------------------------------------------
# Defects
# ---------------------------------------------------------------------------


def add_defect(doc: dict, case_id: str, **fields: Any) -> dict:
    changes = build_patch(DefectPatch, fields)
    changes.setdefault("title", DEFAULT_DEFECT_TITLE)
    defect = Defect.create(**changes).to_dict()
    return _map_collection(doc, case_id, "defects", lambda items: prepend(items, defect))


def update_defect(doc: dict, case_id: str, defect_id: str, patch: dict) -> dict:
    changes = build_patch(DefectPatch, patch)
    return _map_collection(doc, case_id, "defects", lambda items: patch_by_id(items, defect_id, changes))


def delete_defect(doc: dict, case_id: str, defect_id: str) -> dict:
    return _map_collection(doc, case_id, "defects", lambda items: remove_by_id(items, defect_id))


# ---------------------------------------------------------------------------
# Incidents
# ---------------------------------------------------------------------------


def add_incident(doc: dict, case_id: str, **fields: Any) -> dict:
    changes = build_patch(IncidentPatch, fields)
    changes.setdefault("dateTime", now_local_minute())
    changes.setdefault("type", DEFAULT_INCIDENT_TYPE)
    incident = Incident.create(**changes).to_dict()
    return _map_collection(doc, case_id, "incidents", lambda items: prepend(items, incident))


def update_incident(doc: dict, case_id: str, incident_id: str, patch: dict) -> dict:
    changes = build_patch(IncidentPatch, patch)
    return _map_collection(doc, case_id, "incidents", lambda items: patch_by_id(items, incident_id, changes))


def delete_incident(doc: dict, case_id: str, incident_id: str) -> dict:
    """Remove an incident together with its evidence links and attachments."""
    return _map_collection(doc, case_id, "incidents", lambda items: remove_by_id(items, incident_id))


# ── Evidence links ───────────────────────────────────────────────────────────


def add_evidence_link(doc: dict, case_id: str, incident_id: str, **fields: Any) -> dict:
    link = EvidenceLink.create(**build_patch(EvidenceLinkPatch, fields)).to_dict()
    return _map_incident(
        doc, case_id, incident_id, lambda i: {**i, "evidence": prepend(i.get("evidence", []), link)}
    )


def update_evidence_link(doc: dict, case_id: str, incident_id: str, link_id: str, patch: dict) -> dict:
    changes = build_patch(EvidenceLinkPatch, patch)
    return _map_incident(
        doc,
        case_id,
        incident_id,
        lambda i: {**i, "evidence": patch_by_id(i.get("evidence", []), link_id, changes)},
    )


def delete_evidence_link(doc: dict, case_id: str, incident_id: str, link_id: str) -> dict:
    return _map_incident(
        doc, case_id, incident_id, lambda i: {**i, "evidence": remove_by_id(i.get("evidence", []), link_id)}
    )


# ── Attachments ──────────────────────────────────────────────────────────────


def add_attachment(doc: dict, case_id: str, incident_id: str, attachment: dict) -> dict:
    """Prepend an already-encoded attachment (see app.attachments.attach_file)."""
    return _map_incident(
        doc,
        case_id,
        incident_id,
        lambda i: {**i, "attachments": prepend(i.get("attachments", []), attachment)},
    )


def delete_attachment(doc: dict, case_id: str, incident_id: str, attachment_id: str) -> dict:
    return _map_incident(
        doc,
        case_id,
        incident_id,
        lambda i: {**i, "attachments": remove_by_id(i.get("attachments", []), attachment_id)},
    )


# ---------------------------------------------------------------------------
# Document references
# ---------------------------------------------------------------------------


def add_document(doc: dict, case_id: str, **fields: Any) -> dict:
    reference = DocumentReference.create(**build_patch(DocumentReferencePatch, fields)).to_dict()
    return _map_collection(doc, case_id, "documents", lambda items: prepend(items, reference))


def update_document(doc: dict, case_id: str, document_id: str, patch: dict) -> dict:
    changes = build_patch(DocumentReferencePatch, patch)
    return _map_collection(doc, case_id, "documents", lambda items: patch_by_id(items, document_id, changes))


def delete_document(doc: dict, case_id: str, document_id: str) -> dict:
    return _map_collection(doc, case_id, "documents", lambda items: remove_by_id(items, document_id))


# ---------------------------------------------------------------------------
# Letters
# ---------------------------------------------------------------------------


def add_letter(doc: dict, case_id: str, letter: dict) -> dict:
    """Prepend a generated letter (see app.letters.generate_letter)."""
    return _map_collection(doc, case_id, "letters", lambda items: prepend(items, letter))


def update_letter(doc: dict, case_id: str, letter_id: str, patch: dict) -> dict:
    """Edit a letter's subject or body; everything else is fixed at generation."""
    changes = build_patch(LetterPatch, patch)
    return _map_collection(doc, case_id, "letters", lambda items: patch_by_id(items, letter_id, changes))


def delete_letter(doc: dict, case_id: str, letter_id: str) -> dict:
    return _map_collection(doc, case_id, "letters", lambda items: remove_by_id(items, letter_id))


# ---------------------------------------------------------------------------
# View state and queries
# ---------------------------------------------------------------------------

TABS = ("snapshot", "incidents", "defects", "documents", "letters", "export")


def set_tab(doc: dict, tab: str) -> dict:
    if tab not in TABS:
        return doc
    return {**doc, "ui": {**doc.get("ui", {}), "tab": tab}}


def set_query(doc: dict, query: str) -> dict:
    return {**doc, "ui": {**doc.get("ui", {}), "query": query or ""}}


def filter_cases(doc: dict, query: str | None = None) -> list[dict]:
    """Cases whose title, address, landlord or notes contain *query* (case-insensitive).

    Defaults to the query stored in the document's view state.
    """
    if query is None:
        query = doc.get("ui", {}).get("query", "")
    needle = (query or "").strip().lower()
    if not needle:
        return list(doc.get("cases", []))
    matches = []
    for case in doc.get("cases", []):
        haystack = " ".join(
            str(case.get(k)) for k in ("title", "address", "landlordName", "notes") if case.get(k)
        )
        if needle in haystack.lower():
            matches.append(case)
    return matches


def case_snapshot(case: dict) -> dict:
    """Counts shown on the case overview."""
    defects = case.get("defects", [])
    incidents = case.get("incidents", [])
    return {
        "open_defects": sum(1 for d in defects if d.get("status") == "open"),
        "resolved_defects": sum(1 for d in defects if d.get("status") == "resolved"),
        "open_incidents": sum(1 for i in incidents if i.get("urgency") != "resolved"),
        "documents": len(case.get("documents", [])),
        "letters": len(case.get("letters", [])),
    }
