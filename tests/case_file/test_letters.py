"""Tests for case-file/app/letters.py — template rendering, rent reduction and export."""

from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent / "case-file"))

from app import crud
from app.letters import (
    DIVIDER,
    LETTER_TEMPLATES,
    UnknownTemplateError,
    compute_rent_reduction,
    defect_line,
    generate_letter,
    letter_filename,
    letter_to_docx,
    letter_to_text,
    list_templates,
    render,
    round_half_up,
)
from app.migrations import migrate_document


@pytest.fixture()
def doc(sample_case):
    return migrate_document({"cases": [sample_case], "activeCaseId": sample_case["id"]})


@pytest.fixture()
def empty_case():
    return migrate_document({"cases": [{"id": "c0", "title": "Blank"}]})["cases"][0]


# ── Templates ────────────────────────────────────────────────────────────


class TestTemplateRegistry:
    def test_list_templates(self):
        keys = [t["key"] for t in list_templates()]
        assert keys == ["repair_request", "rent_reduction_notice"]
        assert all(t["name"] and t["description"] for t in list_templates())

    def test_unknown_template(self, sample_case):
        with pytest.raises(UnknownTemplateError):
            render("eviction_notice", sample_case)


class TestRepairRequest:
    def test_subject(self, sample_case):
        assert render("repair_request", sample_case)["subject"] == "Repair request – Hauptstr. 1, 10115 Berlin"

    def test_lists_open_defects_only(self, sample_case):
        body = render("repair_request", sample_case)["body"]
        assert "1. Mould (Room: Bathroom) — since 2024-01-10" in body
        assert "2. Heating — since 2024-02-01" in body
        assert "Leaking tap" not in body

    def test_bilingual_with_divider(self, sample_case):
        body = render("repair_request", sample_case)["body"]
        english, german = body.split(f"\n\n{DIVIDER}\n\n")
        assert english.startswith("Subject: Request to remedy defects")
        assert "Dear Herr Schmidt," in english
        assert english.endswith("Kind regards,\nAnna Weber")
        assert german.startswith("Betreff: Aufforderung zur Mängelbeseitigung")
        assert german.endswith("Mit freundlichen Grüßen\nAnna Weber")

    def test_placeholders_for_empty_case(self, empty_case):
        letter = render("repair_request", empty_case)
        body = letter["body"]
        for placeholder in (
            "[address]", "[Adresse]",
            "[Landlord/Representative]", "[Vermieter/Bevollmächtigte/r]",
            "[Your name]", "[Ihr Name]",
            "[List defects here]", "[Mängel hier auflisten]",
        ):
            assert placeholder in body
        assert "None" not in body
        assert letter["subject"] == "Repair request – [address]"

    def test_whitespace_only_field_uses_placeholder(self, sample_case):
        body = render("repair_request", {**sample_case, "tenantName": "   "})["body"]
        assert "Kind regards,\n[Your name]" in body


class TestDefectLine:
    def test_missing_start_date(self):
        assert defect_line(1, {"title": "Noise", "room": "", "startDate": ""}) == "1. Noise — since [date]"

    def test_missing_title(self):
        assert defect_line(3, {"startDate": "2024-01-01"}).startswith("3. [defect]")

    def test_with_reduction(self):
        line = defect_line(2, {"title": "Mould", "room": "Bath", "startDate": "2024-01-10", "impactPercent": 12.5}, True)
        assert line == "2. Mould (Room: Bath) — since 2024-01-10 — proposed reduction: 12.5%"


class TestRentReduction:
    def test_sums_open_defects(self, sample_case):
        figures = compute_rent_reduction(sample_case)
        assert figures.total_percent == 25
        assert figures.warm_rent == 1000
        assert figures.reduced_amount == 750

    def test_total_above_100_reported_but_payment_capped(self, sample_case):
        sample_case["defects"][0]["impactPercent"] = 70
        sample_case["defects"][1]["impactPercent"] = 60
        figures = compute_rent_reduction(sample_case)
        assert figures.total_percent == 130
        assert figures.reduced_amount == 0

    def test_no_warm_rent(self, sample_case):
        sample_case["rentWarm"] = 0
        assert compute_rent_reduction(sample_case).reduced_amount is None

    def test_rounds_half_up_to_cents(self, sample_case):
        sample_case["rentWarm"] = 833.33
        sample_case["defects"] = [{"status": "open", "impactPercent": 15}]
        assert compute_rent_reduction(sample_case).reduced_amount == 708.33

    def test_text_percentages(self, sample_case):
        sample_case["defects"] = [{"status": "open", "impactPercent": "7.5"}]
        assert compute_rent_reduction(sample_case).total_percent == 7.5

    def test_overflowing_payment_left_blank(self, sample_case):
        sample_case["defects"][0]["impactPercent"] = -1e308
        sample_case["defects"][1]["impactPercent"] = -1e308
        figures = compute_rent_reduction(sample_case)
        assert figures.warm_rent == 1000
        assert figures.reduced_amount is None

    def test_round_half_up_large_and_infinite(self):
        assert round_half_up(1e308) == 1e308
        assert round_half_up(float("inf")) == float("inf")

    @pytest.mark.parametrize("value, expected", [(2.345, 2.35), (2.344, 2.34), (0.125, 0.13), (708.3305, 708.33)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected


class TestRentReductionNotice:
    def test_figures_in_body(self, sample_case):
        letter = render("rent_reduction_notice", sample_case)
        body = letter["body"]
        assert letter["subject"] == "Rent reduction notice – Hauptstr. 1, 10115 Berlin"
        assert "1. Mould (Room: Bathroom) — since 2024-01-10 — proposed reduction: 10%" in body
        assert "Proposed total reduction: 25%" in body
        assert "Warm rent (current): €1000" in body
        assert "Reduced payment (proposal): €750" in body
        assert "Vorgeschlagene Gesamtsumme der Mietminderung: 25%" in body
        assert "Zahlbetrag (Vorschlag): €750" in body

    def test_capped_payment(self, sample_case):
        sample_case["defects"][0]["impactPercent"] = 70
        sample_case["defects"][1]["impactPercent"] = 60
        body = render("rent_reduction_notice", sample_case)["body"]
        assert "Proposed total reduction: 130%" in body
        assert "Reduced payment (proposal): €0" in body

    def test_amount_placeholders_without_rent(self, empty_case):
        body = render("rent_reduction_notice", empty_case)["body"]
        assert "Warm rent (current): [amount]" in body
        assert "Reduced payment (proposal): [amount]" in body
        assert "Warmmiete (aktuell): [Betrag]" in body
        assert "Proposed total reduction: 0%" in body

    def test_amount_placeholder_when_payment_overflows(self, sample_case):
        sample_case["defects"][0]["impactPercent"] = -1e308
        sample_case["defects"][1]["impactPercent"] = -1e308
        body = render("rent_reduction_notice", sample_case)["body"]
        assert "Reduced payment (proposal): [amount]" in body
        assert "Zahlbetrag (Vorschlag): [Betrag]" in body


# ── Generation ───────────────────────────────────────────────────────────


class TestGenerateLetter:
    def test_prepends_letter(self, doc):
        new_doc = generate_letter(doc, "case-1", "repair_request")
        letter = crud.get_case(new_doc, "case-1")["letters"][0]
        assert letter["type"] == "repair_request"
        assert letter["title"] == LETTER_TEMPLATES["repair_request"]["name"]
        assert letter["subject"].startswith("Repair request")
        assert letter["id"]
        assert letter["createdAt"]

    def test_repeated_generation_adds_drafts(self, doc):
        new_doc = generate_letter(doc, "case-1", "repair_request")
        new_doc = generate_letter(new_doc, "case-1", "repair_request")
        letters = crud.get_case(new_doc, "case-1")["letters"]
        assert len(letters) == 2
        assert letters[0]["id"] != letters[1]["id"]

    def test_letter_is_a_snapshot(self, doc):
        new_doc = generate_letter(doc, "case-1", "repair_request")
        new_doc = crud.update_defect(new_doc, "case-1", "def-1", {"title": "Black mould"})
        assert "Black mould" not in crud.get_case(new_doc, "case-1")["letters"][0]["body"]

    def test_out_of_range_figures_still_generate(self, sample_case):
        sample_case["defects"][0]["impactPercent"] = 1e308
        sample_case["defects"][1]["impactPercent"] = -1e308
        sample_case["rentWarm"] = 1e308
        doc = migrate_document({"cases": [sample_case], "activeCaseId": sample_case["id"]})
        new_doc = generate_letter(doc, sample_case["id"], "rent_reduction_notice")
        assert "[amount]" not in crud.get_case(new_doc, sample_case["id"])["letters"][0]["body"]

    def test_unknown_case_is_noop(self, doc):
        assert generate_letter(doc, "nope", "repair_request") is doc

    def test_unknown_template_raises(self, doc):
        with pytest.raises(UnknownTemplateError):
            generate_letter(doc, "case-1", "eviction_notice")


# ── Export ───────────────────────────────────────────────────────────────


class TestExport:
    def test_text_with_subject(self):
        assert letter_to_text({"subject": "Hello", "body": "Line 1\nLine 2"}) == "Subject: Hello\n\nLine 1\nLine 2"

    def test_text_without_subject(self):
        assert letter_to_text({"subject": "", "body": "Only body"}) == "Only body"

    def test_filename(self):
        assert letter_filename({"title": "Flat 3B / Berlin"}) == "Flat-3B-Berlin-letter.txt"
        assert letter_filename({"title": ""}, "docx") == "case-letter.docx"

    def test_docx(self, sample_case):
        from docx import Document

        letter = render("repair_request", sample_case)
        data = letter_to_docx(letter)
        assert data[:2] == b"PK"
        paragraphs = [p.text for p in Document(io.BytesIO(data)).paragraphs]
        assert paragraphs[0] == f"Subject: {letter['subject']}"
        assert DIVIDER in paragraphs
