# tests/test_validators.py
from datetime import date

import pytest

from ordertrack.errors import ValidationFailed
from ordertrack.validators import edit_target, record_from_form, today_iso, validate_order_form


@pytest.mark.parametrize("order_number", ["ORD-1", "123", "a-b-C"])
def test_valid_order_numbers(order_number):
    validate_order_form({"orderNumber": order_number, "date": "2024-03-01"})


@pytest.mark.parametrize("order_number", ["ORD 1", "ORD_1", "ORD/1", "ЗАК-1"])
def test_invalid_order_numbers(order_number):
    with pytest.raises(ValidationFailed):
        validate_order_form({"orderNumber": order_number, "date": "2024-03-01"})


@pytest.mark.parametrize("form", [{}, {"orderNumber": "ORD-1"}, {"date": "2024-03-01"}])
def test_required_fields(form):
    with pytest.raises(ValidationFailed):
        validate_order_form(form)


def test_record_from_new_form():
    form = {
        "recordId": "",
        "orderNumber": "ORD-1",
        "date": "2024-03-01",
        "material": "steel",
        "executor1": "Ivanov",
        "date1": "2024-03-02",
        "executor6": "Petrov",
    }
    record = record_from_form(form, new_id=lambda: "fresh")

    assert record["id"] == "fresh"
    assert record["material"] == "steel"
    assert record["diameter"] == ""
    assert record["executors"][0] == {"name": "Ivanov", "date": "2024-03-02"}
    assert record["executors"][5] == {"name": "Petrov", "date": ""}
    assert len(record["executors"]) == 6
    assert "createdAt" not in record


def test_record_from_edit_form_keeps_id():
    record = record_from_form({"recordId": "abc", "orderNumber": "ORD-1", "date": "2024-03-01"})
    assert record["id"] == "abc"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("?id=abc", "abc"),
        ("id=abc&x=1", "abc"),
        ("http://localhost/form.html?id=abc", "abc"),
        ("http://localhost/form.html", None),
        ("?id=", None),
        ("", None),
    ],
)
def test_edit_target(value, expected):
    assert edit_target(value) == expected


def test_today_iso():
    assert today_iso(date(2024, 3, 9)) == "2024-03-09"
