"""Entity models and typed partial updates for the tenant case file.

The persisted document keeps the camelCase keys used by saved files and
exports ("landlordName", "impactPercent", ...); the models below expose
snake_case attributes and dump back to camelCase.

Two families of models live here:

- Entity models (Case, Defect, Incident, ...) are lenient.  They are used to
  normalise stored data, so missing fields take their defaults, junk values
  are coerced instead of rejected, and unknown keys are carried through
  untouched.
- Patch models (CasePatch, DefectPatch, ...) are strict.  Each one lists the
  fields its entity kind may change; an unknown key or an invalid enum value
  raises PatchError.  Numeric fields are coerced to a number (default 0) on
  both sides.
"""

from __future__ import annotations

import logging
import math
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from app.ids import new_id, now_iso

logger = logging.getLogger(__name__)


class PatchError(ValueError):
    """A partial update named a field its entity does not have, or carried an invalid value."""


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def to_number(value: Any) -> Union[int, float]:
    """Coerce user input to a finite number; empty or invalid input becomes 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else 0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            number = float(text)
        except ValueError:
            return 0
        if not math.isfinite(number):
            return 0
        return int(number) if number.is_integer() else number
    return 0


def format_number(value: Union[int, float]) -> str:
    """Render a number the way it is typed: 130 -> "130", 12.5 -> "12.5"."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return format_number(value)
    return str(value)


def _to_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _objects_only(value: Any) -> list:
    items = _to_list(value)
    kept = [item for item in items if isinstance(item, (dict, BaseModel))]
    if len(kept) != len(items):
        logger.warning("Dropped %d malformed entries", len(items) - len(kept))
    return kept


def _one_of(*allowed: str):
    def coerce(value: Any) -> str:
        return value if value in allowed else allowed[0]

    return coerce


Text = Annotated[str, BeforeValidator(to_text)]
Number = Annotated[Union[int, float], BeforeValidator(to_number)]
TextList = Annotated[list[Text], BeforeValidator(_to_list)]

DefectStatus = Literal["open", "resolved"]
Urgency = Literal["open", "urgent", "resolved"]


# ---------------------------------------------------------------------------
# Entity models
# ---------------------------------------------------------------------------


class _Entity(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Text = ""

    @classmethod
    def create(cls, **fields: Any):
        """Build a brand-new entity with a fresh id (and creation time, if the kind has one)."""
        fields["id"] = new_id()
        if "created_at" in cls.model_fields and "created_at" not in fields:
            fields["created_at"] = now_iso()
        return cls(**fields)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class EvidenceLink(_Entity):
    """Labelled pointer to proof stored elsewhere.  The URL is not validated."""

    label: Text = ""
    url: Text = ""


class Attachment(_Entity):
    name: Text = ""
    type: Text = ""
    size: Number = 0
    data_url: Text = ""


class Defect(_Entity):
    title: Text = ""
    room: Text = ""
    start_date: Text = ""
    status: Annotated[DefectStatus, BeforeValidator(_one_of("open", "resolved"))] = "open"
    impact_percent: Number = 0
    notes: Text = ""
    created_at: Text = ""


class Incident(_Entity):
    date_time: Text = ""
    type: Text = ""
    summary: Text = ""
    details: Text = ""
    tags: TextList = Field(default_factory=list)
    urgency: Annotated[Urgency, BeforeValidator(_one_of("open", "urgent", "resolved"))] = "open"
    evidence: Annotated[list[EvidenceLink], BeforeValidator(_objects_only)] = Field(default_factory=list)
    attachments: Annotated[list[Attachment], BeforeValidator(_objects_only)] = Field(default_factory=list)
    created_at: Text = ""


class DocumentReference(_Entity):
    name: Text = ""
    url: Text = ""
    notes: Text = ""
    created_at: Text = ""


class Letter(_Entity):
    type: Text = ""
    title: Text = ""
    subject: Text = ""
    body: Text = ""
    created_at: Text = ""


class Case(_Entity):
    title: Text = ""
    address: Text = ""
    landlord_name: Text = ""
    tenant_name: Text = ""
    rent_warm: Number = 0
    notes: Text = ""
    created_at: Text = ""
    defects: Annotated[list[Defect], BeforeValidator(_objects_only)] = Field(default_factory=list)
    incidents: Annotated[list[Incident], BeforeValidator(_objects_only)] = Field(default_factory=list)
    documents: Annotated[list[DocumentReference], BeforeValidator(_objects_only)] = Field(default_factory=list)
    letters: Annotated[list[Letter], BeforeValidator(_objects_only)] = Field(default_factory=list)


class UiState(BaseModel):
    model_config = ConfigDict(extra="allow")

    tab: Text = "snapshot"
    query: Text = ""


class CaseFileDocument(BaseModel):
    """The whole application state: every case plus the selected one."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    active_case_id: Annotated[Optional[str], BeforeValidator(lambda v: v if isinstance(v, str) and v else None)] = None
    cases: Annotated[list[Case], BeforeValidator(_objects_only)] = Field(default_factory=list)
    ui: Annotated[UiState, BeforeValidator(lambda v: v if isinstance(v, (dict, UiState)) else {})] = Field(
        default_factory=UiState
    )

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Patch models
# ---------------------------------------------------------------------------


class _Patch(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def changes(self) -> dict:
        """Only the fields the caller actually supplied, in persisted (camelCase) spelling."""
        return self.model_dump(by_alias=True, exclude_unset=True)


class CasePatch(_Patch):
    title: Text = ""
    address: Text = ""
    landlord_name: Text = ""
    tenant_name: Text = ""
    rent_warm: Number = 0
    notes: Text = ""


class DefectPatch(_Patch):
    title: Text = ""
    room: Text = ""
    start_date: Text = ""
    status: DefectStatus = "open"
    impact_percent: Number = 0
    notes: Text = ""


class IncidentPatch(_Patch):
    date_time: Text = ""
    type: Text = ""
    summary: Text = ""
    details: Text = ""
    tags: list[Text] = Field(default_factory=list)
    urgency: Urgency = "open"


class EvidenceLinkPatch(_Patch):
    label: Text = ""
    url: Text = ""


class DocumentReferencePatch(_Patch):
    name: Text = ""
    url: Text = ""
    notes: Text = ""


class LetterPatch(_Patch):
    """Letters are fixed at generation time apart from free-text edits."""

    subject: Text = ""
    body: Text = ""


def build_patch(model: type[_Patch], patch: Union[dict, _Patch]) -> dict:
    """Validate *patch* against *model* and return the camelCase changes.

    Raises PatchError for unknown fields or invalid values.
    """
    if isinstance(patch, model):
        return patch.changes()
    if not isinstance(patch, dict):
        raise PatchError(f"{model.__name__} expects a mapping, got {type(patch).__name__}")
    try:
        return model.model_validate(patch).changes()
    except ValidationError as exc:
        raise PatchError(str(exc)) from exc
