# ordertrack/validators.py

import re
from datetime import date
from typing import Any, Callable, Mapping
from urllib.parse import parse_qs, urlsplit

from ordertrack.entities import EXECUTOR_SLOTS, KEY_PATH, STRING_FIELDS, Record
from ordertrack.errors import ValidationFailed
from ordertrack.identity import generate_id

ORDER_NUMBER_PATTERN = re.compile(r"^[A-Za-z0-9\-]+$")


def validate_order_form(form: Mapping[str, Any]) -> None:
    """
    Primary-form rules only; imports and restores do not go through here.
    Raises ValidationFailed.
    """
    order_number = str(form.get("orderNumber") or "")
    order_date = str(form.get("date") or "")

    if not order_number or not order_date:
        raise ValidationFailed("Required fields are missing: order number and date")

    if not ORDER_NUMBER_PATTERN.match(order_number):
        raise ValidationFailed("Order number may contain only letters, digits and hyphens")


def record_from_form(form: Mapping[str, Any], new_id: Callable[[], str] = generate_id) -> Record:
    """
    Build a full record from flat form fields: ``recordId`` (empty for a new order),
    the string fields, and ``executor1..6`` / ``date1..6``. Timestamps are left to the store.
    """
    record_id = str(form.get("recordId") or "")
    record: Record = {KEY_PATH: record_id or new_id()}
    for field in STRING_FIELDS:
        record[field] = str(form.get(field) or "")
    record["executors"] = [
        {
            "name": str(form.get(f"executor{i}") or ""),
            "date": str(form.get(f"date{i}") or ""),
        }
        for i in range(1, EXECUTOR_SLOTS + 1)
    ]
    return record


def edit_target(url_or_query: str) -> str | None:
    """
    The record id addressed by ``?id=...``; None means "new record" mode.
    Accepts a full URL or a bare query string.
    """
    text = url_or_query or ""
    query = urlsplit(text).query if ("?" in text or "://" in text) else text
    values = parse_qs(query).get("id")
    return values[0] if values and values[0] else None


def today_iso(today: date | None = None) -> str:
    return (today or date.today()).strftime("%Y-%m-%d")
