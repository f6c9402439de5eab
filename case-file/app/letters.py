"""Letter template engine for tenant case files.

Each template turns the current state of a case into a draft letter with a
subject line and a bilingual body: the English text, a divider line, then
the German text.  Rendering is a pure read of the case at call time; a
generated letter is stored as its own entity, so later edits to defects do
not change letters that already exist.

Templates
---------
- repair_request: asks the landlord to remedy every open defect.
- rent_reduction_notice: the same defect list with each defect's proposed
  reduction, the combined percentage, and the resulting warm-rent payment.

Any field the letter refers to may be empty.  Missing values are replaced by
a bracketed prompt in the matching language (``[address]`` / ``[Adresse]``)
so a draft never contains "None" or blank gaps.
"""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Callable

from app.crud import add_letter, get_case
from app.schemas import Letter, format_number, to_number
from app.transfer import filename_stem

logger = logging.getLogger(__name__)

DIVIDER = "— — —"


# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------

PLACEHOLDERS: dict[str, dict[str, str]] = {
    "en": {
        "address": "[address]",
        "landlord": "[Landlord/Representative]",
        "tenant": "[Your name]",
        "defects": "[List defects here]",
        "amount": "[amount]",
    },
    "de": {
        "address": "[Adresse]",
        "landlord": "[Vermieter/Bevollmächtigte/r]",
        "tenant": "[Ihr Name]",
        "defects": "[Mängel hier auflisten]",
        "amount": "[Betrag]",
    },
}
DATE_PLACEHOLDER = "[date]"
DEFECT_PLACEHOLDER = "[defect]"


class UnknownTemplateError(KeyError):
    """No letter template is registered under the requested key."""


@dataclass
class RentReduction:
    """Figures quoted in a rent reduction notice."""

    total_percent: float
    warm_rent: float
    reduced_amount: float | None  # None when no warm rent is recorded


def _text(value, placeholder: str) -> str:
    if value is None:
        return placeholder
    text = str(value)
    return text if text.strip() else placeholder


def _euro(amount: float | None, placeholder: str) -> str:
    return f"€{format_number(amount)}" if amount is not None else placeholder


def round_half_up(value: float, places: int = 2) -> float:
    """Round like a calculator (2.345 -> 2.35), not banker's rounding.

    Infinities and NaN come back unchanged.
    """
    if not math.isfinite(value):
        return value
    number = Decimal(str(value))
    context = Context(prec=max(28, number.adjusted() + places + 2))
    quantum = Decimal(1).scaleb(-places)
    return float(number.quantize(quantum, rounding=ROUND_HALF_UP, context=context))


def open_defects(case: dict) -> list[dict]:
    return [d for d in case.get("defects") or [] if d.get("status") == "open"]


def defect_line(number: int, defect: dict, with_reduction: bool = False) -> str:
    """``"1. Mould (Room: Bathroom) — since 2024-01-10"``, optionally with the proposed reduction."""
    line = f"{number}. {_text(defect.get('title'), DEFECT_PLACEHOLDER)}"
    room = defect.get("room")
    if room:
        line += f" (Room: {room})"
    line += f" — since {_text(defect.get('startDate'), DATE_PLACEHOLDER)}"
    if with_reduction:
        line += f" — proposed reduction: {format_number(to_number(defect.get('impactPercent')))}%"
    return line


def compute_rent_reduction(case: dict) -> RentReduction:
    """Sum the open defects' percentages and apply them to the warm rent.

    The total is reported as entered, even above 100 %, but the payment is
    computed with the total capped at 100 % so it never goes negative.
    A payment too large to represent is left out, like a missing rent.
    """
    total = sum(to_number(d.get("impactPercent")) for d in open_defects(case))
    warm = to_number(case.get("rentWarm"))
    if not warm:
        return RentReduction(total_percent=total, warm_rent=0, reduced_amount=None)
    try:
        raw = warm * (1 - min(total, 100) / 100)
    except OverflowError:
        raw = math.inf
    if not math.isfinite(raw):
        logger.warning("Rent reduction for case %s is out of range; amount left blank", case.get("id"))
        return RentReduction(total_percent=total, warm_rent=warm, reduced_amount=None)
    return RentReduction(total_percent=total, warm_rent=warm, reduced_amount=round_half_up(raw))


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def _repair_request(case: dict) -> dict:
    lines = "\n".join(defect_line(n, d) for n, d in enumerate(open_defects(case), start=1))
    en, de = PLACEHOLDERS["en"], PLACEHOLDERS["de"]
    address = case.get("address")
    landlord = case.get("landlordName")
    tenant = case.get("tenantName")

    english = (
        f"Subject: Request to remedy defects – {_text(address, en['address'])}\n\n"
        f"Dear {_text(landlord, en['landlord'])},\n\n"
        "I am requesting that the following defects in my rented accommodation "
        "be remedied without delay:\n\n"
        f"{lines or en['defects']}\n\n"
        "Please confirm a repair appointment date and the responsible company/technician.\n\n"
        f"Kind regards,\n{_text(tenant, en['tenant'])}"
    )
    german = (
        f"Betreff: Aufforderung zur Mängelbeseitigung – {_text(address, de['address'])}\n\n"
        f"Sehr geehrte/r {_text(landlord, de['landlord'])},\n\n"
        "hiermit fordere ich Sie auf, die folgenden Mängel in meinem Mietobjekt "
        "unverzüglich zu beseitigen:\n\n"
        f"{lines or de['defects']}\n\n"
        "Bitte bestätigen Sie mir einen Reparaturtermin sowie die zuständige Firma/den Techniker.\n\n"
        f"Mit freundlichen Grüßen\n{_text(tenant, de['tenant'])}"
    )
    return {
        "subject": f"Repair request – {_text(address, en['address'])}",
        "body": f"{english}\n\n{DIVIDER}\n\n{german}",
    }


def _rent_reduction_notice(case: dict) -> dict:
    lines = "\n".join(
        defect_line(n, d, with_reduction=True) for n, d in enumerate(open_defects(case), start=1)
    )
    figures = compute_rent_reduction(case)
    warm = figures.warm_rent or None
    total = format_number(figures.total_percent)
    en, de = PLACEHOLDERS["en"], PLACEHOLDERS["de"]
    address = case.get("address")
    landlord = case.get("landlordName")
    tenant = case.get("tenantName")

    english = (
        f"Subject: Notice of rent reduction due to defects – {_text(address, en['address'])}\n\n"
        f"Dear {_text(landlord, en['landlord'])},\n\n"
        "Due to the ongoing defects listed below, I am exercising my right to a rent "
        "reduction for the period in which the defects persist.\n\n"
        f"Defects:\n{lines or en['defects']}\n\n"
        f"Proposed total reduction: {total}%\n"
        f"Warm rent (current): {_euro(warm, en['amount'])}\n"
        f"Reduced payment (proposal): {_euro(figures.reduced_amount, en['amount'])}\n\n"
        "I request immediate remedy of the defects. Please confirm next steps and a "
        "repair timeline in writing.\n\n"
        f"Kind regards,\n{_text(tenant, en['tenant'])}"
    )
    german = (
        f"Betreff: Anzeige der Mietminderung wegen Mängeln – {_text(address, de['address'])}\n\n"
        f"Sehr geehrte/r {_text(landlord, de['landlord'])},\n\n"
        "aufgrund der nachfolgend aufgeführten, fortbestehenden Mängel mache ich eine "
        "Mietminderung für den Zeitraum geltend, in dem die Mängel bestehen.\n\n"
        f"Mängel:\n{lines or de['defects']}\n\n"
        f"Vorgeschlagene Gesamtsumme der Mietminderung: {total}%\n"
        f"Warmmiete (aktuell): {_euro(warm, de['amount'])}\n"
        f"Zahlbetrag (Vorschlag): {_euro(figures.reduced_amount, de['amount'])}\n\n"
        "Ich bitte um umgehende Mängelbeseitigung. Bitte bestätigen Sie das weitere "
        "Vorgehen sowie einen Reparaturzeitplan schriftlich.\n\n"
        f"Mit freundlichen Grüßen\n{_text(tenant, de['tenant'])}"
    )
    return {
        "subject": f"Rent reduction notice – {_text(address, en['address'])}",
        "body": f"{english}\n\n{DIVIDER}\n\n{german}",
    }


LETTER_TEMPLATES: dict[str, dict] = {
    "repair_request": {
        "name": "Repair Request (German/English – rough draft)",
        "description": "Asks the landlord to remedy all open defects and confirm a repair date.",
        "build": _repair_request,
    },
    "rent_reduction_notice": {
        "name": "Rent Reduction Notice (German/English – rough draft)",
        "description": "Announces a rent reduction for open defects with the proposed payment.",
        "build": _rent_reduction_notice,
    },
}


def list_templates() -> list[dict]:
    """Template metadata without the builder, for menus and the API."""
    return [
        {"key": key, "name": tpl["name"], "description": tpl["description"]}
        for key, tpl in LETTER_TEMPLATES.items()
    ]


def _template(template_key: str) -> dict:
    template = LETTER_TEMPLATES.get(template_key)
    if template is None:
        raise UnknownTemplateError(template_key)
    return template


def render(template_key: str, case: dict) -> dict:
    """Render *template_key* for *case*.  Returns ``{"subject": ..., "body": ...}``."""
    build: Callable[[dict], dict] = _template(template_key)["build"]
    return build(case)


def generate_letter(doc: dict, case_id: str, template_key: str) -> dict:
    """Render a template for a case and prepend the result as a new letter.

    Each call adds another letter; existing drafts are never overwritten.
    An unknown case id leaves the document unchanged.
    """
    template = _template(template_key)
    case = get_case(doc, case_id)
    if case is None:
        return doc
    built = template["build"](case)
    letter = Letter.create(
        type=template_key,
        title=template["name"],
        subject=built["subject"],
        body=built["body"],
    ).to_dict()
    return add_letter(doc, case_id, letter)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def letter_to_text(letter: dict) -> str:
    """Plain-text form used for copy and .txt download."""
    subject = letter.get("subject") or ""
    prefix = f"Subject: {subject}\n\n" if subject else ""
    return prefix + (letter.get("body") or "")


def letter_filename(case: dict, extension: str = "txt") -> str:
    return f"{filename_stem(case.get('title'))}-letter.{extension}"


def letter_to_docx(letter: dict) -> bytes:
    """Render a letter into a Word document (1-inch margins, Times New Roman 12pt)."""
    from docx import Document
    from docx.shared import Inches, Pt

    doc = Document()
    for section in doc.sections:
        section.top_margin = Inches(1)
        section.bottom_margin = Inches(1)
        section.left_margin = Inches(1)
        section.right_margin = Inches(1)

    def _run(para, text: str, size: int = 12, bold: bool = False):
        r = para.add_run(text)
        r.font.name = "Times New Roman"
        r.font.size = Pt(size)
        r.bold = bold
        return r

    subject = letter.get("subject") or ""
    if subject:
        _run(doc.add_paragraph(), f"Subject: {subject}", bold=True)
        doc.add_paragraph()

    for line in (letter.get("body") or "").split("\n"):
        _run(doc.add_paragraph(), line)

    buf = io.BytesIO()
    doc.save(buf)
    buf.seek(0)
    return buf.read()
