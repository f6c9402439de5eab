"""FastAPI backend for the Tenant Case File tool.

Local-only REST surface over the case-file session: case, defect, incident,
evidence, attachment, document-reference and letter CRUD, letter generation
and export, JSON import/export of a single case or the whole file, and the
shared user profile.

The document itself stays in the local storage slot; this server adds no
persistence of its own.  Every mutating endpoint returns the affected case
together with any notices (e.g. a storage-full warning) raised while saving.
The session serialises transitions, so the thread-pooled endpoints cannot
lose each other's updates.
"""

from __future__ import annotations

import io
from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel

from app import crud
from app.attachments import MAX_ATTACHMENT_BYTES, AttachmentTooLargeError, attach_file, read_attachment
from app.letters import (
    UnknownTemplateError,
    generate_letter,
    letter_filename,
    letter_to_docx,
    letter_to_text,
    list_templates,
)
from app.schemas import (
    CasePatch,
    DefectPatch,
    DocumentReferencePatch,
    EvidenceLinkPatch,
    IncidentPatch,
    LetterPatch,
    PatchError,
)
from app.session import CaseFileSession
from app.store import StorageError, load_profile, save_profile
from app.transfer import (
    ALL_EXPORT_FILENAME,
    ImportRejected,
    case_export_filename,
    export_case_json,
    export_document_json,
    import_text,
)

app = FastAPI(title="Tenant Case File API", version="1.0.0")

_session: CaseFileSession | None = None


def get_session() -> CaseFileSession:
    """The process-wide session, created on first use."""
    global _session
    if _session is None:
        _session = CaseFileSession()
    return _session


# ── Request / response schemas ───────────────────────────────────────────────


class LetterRequest(BaseModel):
    template: str


class UiUpdate(BaseModel):
    tab: str | None = None
    query: str | None = None


class ProfileUpdate(BaseModel):
    org: str | None = None
    user: str | None = None
    language: str | None = None
    logo: str | None = None


# ── Helpers ──────────────────────────────────────────────────────────────────


def _require_case(session: CaseFileSession, case_id: str) -> dict:
    case = crud.get_case(session.doc, case_id)
    if case is None:
        raise HTTPException(status_code=404, detail="Case not found")
    return case


def _require_incident(session: CaseFileSession, case_id: str, incident_id: str) -> dict:
    case = _require_case(session, case_id)
    incident = crud.find_by_id(case.get("incidents", []), incident_id)
    if incident is None:
        raise HTTPException(status_code=404, detail="Incident not found")
    return incident


def _require_entity(session: CaseFileSession, case_id: str, key: str, entity_id: str, label: str) -> dict:
    case = _require_case(session, case_id)
    entity = crud.find_by_id(case.get(key, []), entity_id)
    if entity is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return entity


def _apply(session: CaseFileSession, transition, *args: Any, notice: str = "", **kwargs: Any) -> None:
    try:
        session.apply(transition, *args, notice=notice, **kwargs)
    except PatchError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _notices(session: CaseFileSession) -> list[dict]:
    return [asdict(n) for n in session.drain_notices()]


def _case_result(session: CaseFileSession, case_id: str) -> dict:
    return {
        "case": crud.get_case(session.doc, case_id),
        "notices": _notices(session),
    }


def _download(content: bytes, media_type: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── Document ─────────────────────────────────────────────────────────────────


@app.get("/api/document")
def api_get_document(session: CaseFileSession = Depends(get_session)) -> dict:
    """Return the whole case file."""
    return session.doc


@app.get("/api/document/export")
def api_export_document(session: CaseFileSession = Depends(get_session)):
    """Download the whole case file as pretty-printed JSON."""
    text = export_document_json(session.doc)
    return _download(text.encode("utf-8"), "application/json", ALL_EXPORT_FILENAME)


@app.post("/api/document/import")
async def api_import(request: Request, session: CaseFileSession = Depends(get_session)) -> dict:
    """Import a full-file or single-case export (raw JSON body)."""
    raw = await request.body()
    imported: dict = {}

    def _import(doc: dict) -> dict:
        new_doc, imported["kind"] = import_text(doc, raw)
        return new_doc

    try:
        session.apply(_import)
    except ImportRejected as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    kind = imported["kind"]
    session.notify("Imported full app data" if kind == "document" else "Imported case into your app")
    return {
        "kind": kind,
        "activeCaseId": session.doc["activeCaseId"],
        "caseCount": len(session.doc["cases"]),
        "notices": _notices(session),
    }


@app.delete("/api/document")
def api_wipe(session: CaseFileSession = Depends(get_session)) -> dict:
    """Wipe every case and delete the storage slot.  Cannot be undone."""
    try:
        session.wipe(notice="All data wiped")
    except StorageError as exc:
        raise HTTPException(status_code=507, detail=str(exc)) from exc
    return {"deleted": True, "notices": _notices(session)}


@app.post("/api/document/reload")
def api_reload(session: CaseFileSession = Depends(get_session)) -> dict:
    """Drop changes that could not be saved and re-read the storage slot."""
    session.reload()
    return session.doc


@app.get("/api/profile")
def api_get_profile() -> dict:
    return load_profile()


@app.put("/api/profile")
def api_update_profile(body: ProfileUpdate) -> dict:
    """Update the user profile shared with sibling tools."""
    try:
        return save_profile({**load_profile(), **body.model_dump(exclude_none=True)})
    except StorageError as exc:
        raise HTTPException(status_code=507, detail=str(exc)) from exc


@app.put("/api/ui")
def api_update_ui(body: UiUpdate, session: CaseFileSession = Depends(get_session)) -> dict:
    if body.tab is not None:
        session.apply(crud.set_tab, body.tab)
    if body.query is not None:
        session.apply(crud.set_query, body.query)
    return session.doc["ui"]


@app.get("/api/templates")
def api_list_templates() -> list[dict]:
    return list_templates()


# ── Cases ────────────────────────────────────────────────────────────────────


@app.get("/api/cases")
def api_list_cases(q: str | None = None, session: CaseFileSession = Depends(get_session)) -> list[dict]:
    """Case summaries, filtered by *q* (or the stored search query)."""
    return [
        {
            "id": c["id"],
            "title": c.get("title", ""),
            "address": c.get("address", ""),
            "active": c["id"] == session.doc.get("activeCaseId"),
            **crud.case_snapshot(c),
        }
        for c in crud.filter_cases(session.doc, q)
    ]


@app.post("/api/cases", status_code=201)
def api_create_case(body: CasePatch, session: CaseFileSession = Depends(get_session)) -> dict:
    _apply(session, crud.create_case, notice="New case created", **body.changes())
    return _case_result(session, session.doc["activeCaseId"])


@app.get("/api/cases/{case_id}")
def api_get_case(case_id: str, session: CaseFileSession = Depends(get_session)) -> dict:
    return _require_case(session, case_id)


@app.patch("/api/cases/{case_id}")
def api_update_case(case_id: str, body: CasePatch, session: CaseFileSession = Depends(get_session)) -> dict:
    _require_case(session, case_id)
    _apply(session, crud.update_case, case_id, body)
    return _case_result(session, case_id)


@app.delete("/api/cases/{case_id}")
def api_delete_case(case_id: str, session: CaseFileSession = Depends(get_session)) -> dict:
    _require_case(session, case_id)
    session.apply(crud.delete_case, case_id, notice="Case deleted")
    return {
        "deleted": True,
        "id": case_id,
        "activeCaseId": session.doc["activeCaseId"],
        "notices": _notices(session),
    }


@app.post("/api/cases/{case_id}/select")
def api_select_case(case_id: str, session: CaseFileSession = Depends(get_session)) -> dict:
    _require_case(session, case_id)
    session.apply(crud.select_case, case_id)
    return _case_result(session, case_id)


@app.get("/api/cases/{case_id}/export")
def api_export_case(case_id: str, session: CaseFileSession = Depends(get_session)):
    case = _require_case(session, case_id)
    return _download(export_case_json(case).encode("utf-8"), "application/json", case_export_filename(case))


# ── Defects ──────────────────────────────────────────────────────────────────


@app.post("/api/cases/{case_id}/defects", status_code=201)
def api_add_defect(case_id: str, body: DefectPatch, session: CaseFileSession = Depends(get_session)) -> dict:
    _require_case(session, case_id)
    _apply(session, crud.add_defect, case_id, notice="Defect added", **body.changes())
    return _case_result(session, case_id)


@app.patch("/api/cases/{case_id}/defects/{defect_id}")
def api_update_defect(
    case_id: str, defect_id: str, body: DefectPatch, session: CaseFileSession = Depends(get_session)
) -> dict:
    _require_entity(session, case_id, "defects", defect_id, "Defect")
    _apply(session, crud.update_defect, case_id, defect_id, body)
    return _case_result(session, case_id)


@app.delete("/api/cases/{case_id}/defects/{defect_id}")
def api_delete_defect(case_id: str, defect_id: str, session: CaseFileSession = Depends(get_session)) -> dict:
    _require_entity(session, case_id, "defects", defect_id, "Defect")
    session.apply(crud.delete_defect, case_id, defect_id, notice="Defect deleted")
    return _case_result(session, case_id)


# ── Incidents ────────────────────────────────────────────────────────────────


@app.post("/api/cases/{case_id}/incidents", status_code=201)
def api_add_incident(case_id: str, body: IncidentPatch, session: CaseFileSession = Depends(get_session)) -> dict:
    _require_case(session, case_id)
    _apply(session, crud.add_incident, case_id, notice="Incident added", **body.changes())
    return _case_result(session, case_id)


@app.patch("/api/cases/{case_id}/incidents/{incident_id}")
def api_update_incident(
    case_id: str, incident_id: str, body: IncidentPatch, session: CaseFileSession = Depends(get_session)
) -> dict:
    _require_incident(session, case_id, incident_id)
    _apply(session, crud.update_incident, case_id, incident_id, body)
    return _case_result(session, case_id)


@app.delete("/api/cases/{case_id}/incidents/{incident_id}")
def api_delete_incident(case_id: str, incident_id: str, session: CaseFileSession = Depends(get_session)) -> dict:
    _require_incident(session, case_id, incident_id)
    session.apply(crud.delete_incident, case_id, incident_id, notice="Incident deleted")
    return _case_result(session, case_id)


@app.post("/api/cases/{case_id}/incidents/{incident_id}/evidence", status_code=201)
def api_add_evidence(
    case_id: str, incident_id: str, body: EvidenceLinkPatch, session: CaseFileSession = Depends(get_session)
) -> dict:
    _require_incident(session, case_id, incident_id)
    _apply(session, crud.add_evidence_link, case_id, incident_id, **body.changes())
    return _case_result(session, case_id)


@app.patch("/api/cases/{case_id}/incidents/{incident_id}/evidence/{link_id}")
def api_update_evidence(
    case_id: str,
    incident_id: str,
    link_id: str,
    body: EvidenceLinkPatch,
    session: CaseFileSession = Depends(get_session),
) -> dict:
    incident = _require_incident(session, case_id, incident_id)
    if crud.find_by_id(incident.get("evidence", []), link_id) is None:
        raise HTTPException(status_code=404, detail="Evidence link not found")
    _apply(session, crud.update_evidence_link, case_id, incident_id, link_id, body)
    return _case_result(session, case_id)


@app.delete("/api/cases/{case_id}/incidents/{incident_id}/evidence/{link_id}")
def api_delete_evidence(
    case_id: str, incident_id: str, link_id: str, session: CaseFileSession = Depends(get_session)
) -> dict:
    incident = _require_incident(session, case_id, incident_id)
    if crud.find_by_id(incident.get("evidence", []), link_id) is None:
        raise HTTPException(status_code=404, detail="Evidence link not found")
    session.apply(crud.delete_evidence_link, case_id, incident_id, link_id)
    return _case_result(session, case_id)


# ── Attachments ──────────────────────────────────────────────────────────────


@app.post("/api/cases/{case_id}/incidents/{incident_id}/attachments", status_code=201)
async def api_add_attachment(
    case_id: str,
    incident_id: str,
    request: Request,
    name: str = "",
    mime: str = Query("", alias="type"),
    session: CaseFileSession = Depends(get_session),
) -> dict:
    """Attach the raw request body as a file (?name=...&type=...)."""
    _require_incident(session, case_id, incident_id)
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > MAX_ATTACHMENT_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    data = await request.body()
    try:
        session.apply(
            attach_file, case_id, incident_id, name, mime or request.headers.get("content-type", ""), data,
            notice="Attachment added",
        )
    except AttachmentTooLargeError as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    return _case_result(session, case_id)


@app.get("/api/cases/{case_id}/incidents/{incident_id}/attachments/{attachment_id}")
def api_get_attachment(
    case_id: str, incident_id: str, attachment_id: str, session: CaseFileSession = Depends(get_session)
):
    incident = _require_incident(session, case_id, incident_id)
    attachment = crud.find_by_id(incident.get("attachments", []), attachment_id)
    if attachment is None:
        raise HTTPException(status_code=404, detail="Attachment not found")
    try:
        data = read_attachment(attachment)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return Response(content=data, media_type=attachment.get("type") or "application/octet-stream")


@app.delete("/api/cases/{case_id}/incidents/{incident_id}/attachments/{attachment_id}")
def api_delete_attachment(
    case_id: str, incident_id: str, attachment_id: str, session: CaseFileSession = Depends(get_session)
) -> dict:
    incident = _require_incident(session, case_id, incident_id)
    if crud.find_by_id(incident.get("attachments", []), attachment_id) is None:
        raise HTTPException(status_code=404, detail="Attachment not found")
    session.apply(crud.delete_attachment, case_id, incident_id, attachment_id, notice="Attachment removed")
    return _case_result(session, case_id)


# ── Document references ──────────────────────────────────────────────────────


@app.post("/api/cases/{case_id}/documents", status_code=201)
def api_add_document(
    case_id: str, body: DocumentReferencePatch, session: CaseFileSession = Depends(get_session)
) -> dict:
    _require_case(session, case_id)
    _apply(session, crud.add_document, case_id, notice="Document reference added", **body.changes())
    return _case_result(session, case_id)


@app.patch("/api/cases/{case_id}/documents/{document_id}")
def api_update_document(
    case_id: str, document_id: str, body: DocumentReferencePatch, session: CaseFileSession = Depends(get_session)
) -> dict:
    _require_entity(session, case_id, "documents", document_id, "Document")
    _apply(session, crud.update_document, case_id, document_id, body)
    return _case_result(session, case_id)


@app.delete("/api/cases/{case_id}/documents/{document_id}")
def api_delete_document(case_id: str, document_id: str, session: CaseFileSession = Depends(get_session)) -> dict:
    _require_entity(session, case_id, "documents", document_id, "Document")
    session.apply(crud.delete_document, case_id, document_id, notice="Document removed")
    return _case_result(session, case_id)


# ── Letters ──────────────────────────────────────────────────────────────────


@app.post("/api/cases/{case_id}/letters", status_code=201)
def api_generate_letter(case_id: str, body: LetterRequest, session: CaseFileSession = Depends(get_session)) -> dict:
    """Generate a new letter draft from a template.  Never overwrites an existing draft."""
    _require_case(session, case_id)
    try:
        session.apply(generate_letter, case_id, body.template, notice="Letter generated")
    except UnknownTemplateError:
        raise HTTPException(status_code=404, detail=f"Template '{body.template}' not found") from None
    return _case_result(session, case_id)


@app.patch("/api/cases/{case_id}/letters/{letter_id}")
def api_update_letter(
    case_id: str, letter_id: str, body: LetterPatch, session: CaseFileSession = Depends(get_session)
) -> dict:
    _require_entity(session, case_id, "letters", letter_id, "Letter")
    _apply(session, crud.update_letter, case_id, letter_id, body)
    return _case_result(session, case_id)


@app.delete("/api/cases/{case_id}/letters/{letter_id}")
def api_delete_letter(case_id: str, letter_id: str, session: CaseFileSession = Depends(get_session)) -> dict:
    _require_entity(session, case_id, "letters", letter_id, "Letter")
    session.apply(crud.delete_letter, case_id, letter_id, notice="Letter deleted")
    return _case_result(session, case_id)


@app.get("/api/cases/{case_id}/letters/{letter_id}/export/txt")
def api_export_letter_txt(case_id: str, letter_id: str, session: CaseFileSession = Depends(get_session)):
    letter = _require_entity(session, case_id, "letters", letter_id, "Letter")
    case = _require_case(session, case_id)
    return _download(letter_to_text(letter).encode("utf-8"), "text/plain; charset=utf-8", letter_filename(case))


@app.get("/api/cases/{case_id}/letters/{letter_id}/export/docx")
def api_export_letter_docx(case_id: str, letter_id: str, session: CaseFileSession = Depends(get_session)):
    letter = _require_entity(session, case_id, "letters", letter_id, "Letter")
    case = _require_case(session, case_id)
    return _download(
        letter_to_docx(letter),
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        letter_filename(case, "docx"),
    )
