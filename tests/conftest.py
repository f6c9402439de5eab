"""Shared fixtures for all tests."""

from __future__ import annotations

import sys

import pytest


def pytest_collect_file(parent, file_path):
    """Drop cached app.* modules before each test file is collected.

    Test files put case-file/ on sys.path and import `app.*` at module level,
    then patch DATA_DIR on the modules they imported.  A fresh import per
    file keeps one file's patches from leaking into another's modules.
    """
    if file_path.suffix == ".py" and file_path.name.startswith("test_"):
        for key in list(sys.modules.keys()):
            if key == "app" or key.startswith("app."):
                del sys.modules[key]
    return None


@pytest.fixture()
def sample_case():
    """A tenant case with two open defects, one resolved defect and one incident."""
    return {
        "id": "case-1",
        "title": "Flat 3B",
        "address": "Hauptstr. 1, 10115 Berlin",
        "landlordName": "Herr Schmidt",
        "tenantName": "Anna Weber",
        "rentWarm": 1000,
        "notes": "Ground floor, north side",
        "createdAt": "2024-01-05T09:00:00.000Z",
        "defects": [
            {
                "id": "def-1",
                "title": "Mould",
                "room": "Bathroom",
                "startDate": "2024-01-10",
                "status": "open",
                "impactPercent": 10,
                "notes": "",
                "createdAt": "2024-01-10T08:00:00.000Z",
            },
            {
                "id": "def-2",
                "title": "Heating",
                "room": "",
                "startDate": "2024-02-01",
                "status": "open",
                "impactPercent": 15,
                "notes": "",
                "createdAt": "2024-02-01T08:00:00.000Z",
            },
            {
                "id": "def-3",
                "title": "Leaking tap",
                "room": "Kitchen",
                "startDate": "2023-11-01",
                "status": "resolved",
                "impactPercent": 20,
                "notes": "Fixed by plumber",
                "createdAt": "2023-11-01T08:00:00.000Z",
            },
        ],
        "incidents": [
            {
                "id": "inc-1",
                "dateTime": "2024-02-03T19:30",
                "type": "Heating / utilities",
                "summary": "No heating all evening",
                "details": "Radiators cold in every room.",
                "tags": ["heating"],
                "urgency": "urgent",
                "evidence": [{"id": "ev-1", "label": "Thermometer photo", "url": "https://example.com/p.jpg"}],
                "attachments": [],
                "createdAt": "2024-02-03T19:45:00.000Z",
            },
        ],
        "documents": [],
        "letters": [],
    }
