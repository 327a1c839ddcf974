# ordertrack/query.py

from typing import Iterable

from ordertrack.entities import KEY_PATH, Record
from ordertrack.store import RecordStore

ASC = "asc"
DESC = "desc"


def _sort_value(record: Record, field: str) -> str:
    value = record.get(field)
    return str(value) if value else ""


def sort_records(records: Iterable[Record], field: str = "createdAt", direction: str = DESC) -> list[Record]:
    """
    Stable sort on the stringified field value; missing/empty values sort as "".

    NOTE: this compares strings, also for diameter/thickness/dates. "100" < "20".
    """
    direction = (direction or "").lower()
    if direction not in (ASC, DESC):
        raise ValueError(f"Unknown sort direction: {direction!r}")
    return sorted(records, key=lambda r: _sort_value(r, field), reverse=(direction == DESC))


async def list_sorted(store: RecordStore, field: str = "createdAt", direction: str = DESC) -> list[Record]:
    return sort_records(await store.list_all(), field, direction)


async def search(store: RecordStore, term: str, field: str = "orderNumber") -> list[Record]:
    """
    Exact-match lookup. By id -> zero or one record; by any other field -> the store
    index (equality only, no substring match even for bottomNumber).
    """
    if field == KEY_PATH:
        record = await store.get(term)
        return [record] if record else []
    return await store.find_by_index(field, term)


def filter_snapshot(records: Iterable[Record], term: str) -> list[Record]:
    """
    Client-side filter used by the list view: case-insensitive substring match on the
    order number or the bottom number. Works on a snapshot, never on the store.
    """
    needle = (term or "").lower()
    if not needle:
        return list(records)
    return [
        r for r in records
        if needle in str(r.get("orderNumber") or "").lower()
        or needle in str(r.get("bottomNumber") or "").lower()
    ]
