"""Tests for the typed EAV value codec."""

import pytest

from formengine.services.submission_values import (
    SLOT_ARRAY,
    SLOT_BOOLEAN,
    SLOT_DATE,
    SLOT_FILE_IDS,
    SLOT_NUMBER,
    SLOT_TEXT,
    decode,
    encode,
    populated_slot,
    storage_slot,
)
from tests.factories import make_field, make_form


@pytest.fixture
def mixed_form():
    return make_form(
        [
            make_field("short_text", "name"),
            make_field("currency", "budget"),
            make_field("checkbox", "agree"),
            make_field("multi_select", "tags", options=[{"label": "A", "value": "a"}, {"label": "B", "value": "b"}]),
            make_field("date", "start"),
            make_field("file_upload", "resume"),
            make_field("matrix", "grid"),
            make_field("section_header", "intro"),
        ]
    )


def test_each_answer_lands_in_exactly_one_slot(mixed_form):
    answers = {
        "name": "Jo",
        "budget": 1500,
        "agree": True,
        "tags": ["a", "b"],
        "start": "2024-05-01",
        "resume": "file-1",
        "grid": {"speed": "good"},
    }

    records = encode(mixed_form, "sub-1", answers)

    slots = {record.field_id: populated_slot(record) for record in records}
    assert slots == {
        "name": SLOT_TEXT,
        "budget": SLOT_NUMBER,
        "agree": SLOT_BOOLEAN,
        "tags": SLOT_ARRAY,
        "start": SLOT_DATE,
        "resume": SLOT_FILE_IDS,
        "grid": SLOT_TEXT,
    }
    for record in records:
        populated = [slot for slot in ("value_text", "value_number", "value_boolean", "value_date", "value_array", "value_file_ids") if getattr(record, slot) is not None]
        assert len(populated) == 1
        assert record.submission_id == "sub-1"
        assert record.company_id == mixed_form.company_id


def test_decode_restores_answers(mixed_form):
    answers = {
        "name": "Jo",
        "budget": 1500.5,
        "agree": True,
        "tags": ["a"],
        "start": "2024-05-01",
        "resume": ["file-1", "file-2"],
        "grid": {"speed": "good"},
    }

    assert decode(encode(mixed_form, "sub-1", answers)) == answers


def test_empty_unknown_and_display_answers_are_skipped(mixed_form):
    records = encode(
        mixed_form,
        "sub-1",
        {"name": "  ", "tags": [], "intro": "x", "ghost": "boo", "agree": False},
    )
    assert records == []


def test_numeric_slot_rejects_non_numbers(mixed_form):
    with pytest.raises(ValueError):
        encode(mixed_form, "sub-1", {"budget": "lots"})


def test_checkbox_slot_depends_on_value():
    assert storage_slot("checkbox", True) == SLOT_BOOLEAN
    assert storage_slot("checkbox", ["a"]) == SLOT_ARRAY
    assert storage_slot("divider") is None
    assert storage_slot("date_range") == SLOT_ARRAY
    assert storage_slot("some_future_type") == SLOT_TEXT
