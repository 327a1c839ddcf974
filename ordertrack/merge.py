# ordertrack/merge.py

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from ordertrack.csv_codec import (
    BOTTOM_NUMBER_KEY,
    EXECUTOR_COLUMNS,
    FIELD_COLUMNS,
    ORDER_NUMBER_KEY,
    column_key,
)
from ordertrack.entities import KEY_PATH, Record
from ordertrack.errors import OrderStoreError, StoreUnavailable
from ordertrack.identity import generate_id
from ordertrack.query import search
from ordertrack.store import RecordStore, utc_now_iso

logger = logging.getLogger("ordertrack.merge")


class MatchField(str, Enum):
    ORDER_NUMBER = "orderNumber"
    BOTTOM_NUMBER = "bottomNumber"


_MATCH_COLUMN_KEYS = {
    MatchField.ORDER_NUMBER: ORDER_NUMBER_KEY,
    MatchField.BOTTOM_NUMBER: BOTTOM_NUMBER_KEY,
}


@dataclass
class ImportSummary:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.errored

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _cell(row: Mapping[str, Any], key: str, field: str | None = None) -> str:
    """
    Rows come keyed by lower-cased CSV header; a camelCase field name is accepted as a
    fallback so JSON callers can send records directly.
    """
    value = row.get(key)
    if not value and field:
        value = row.get(field)
    return "" if not value else str(value)


def normalize_row(
    row: Mapping[str, Any],
    existing: Record | None,
    *,
    now: str,
    new_id: Callable[[], str] = generate_id,
) -> Record:
    record: Record = {KEY_PATH: existing[KEY_PATH] if existing else new_id()}

    # the CSV "ID" column is ignored: identity comes from the match or a fresh id
    for header, field in FIELD_COLUMNS:
        if field == KEY_PATH:
            continue
        record[field] = _cell(row, column_key(header), field)

    record["executors"] = [
        {"name": _cell(row, column_key(name_header)), "date": _cell(row, column_key(date_header))}
        for name_header, date_header in EXECUTOR_COLUMNS
    ]
    record["createdAt"] = (existing or {}).get("createdAt") or now
    record["updatedAt"] = now
    return record


async def _find_existing(store: RecordStore, match_field: MatchField, key: str) -> Record | None:
    try:
        matches = await search(store, key, match_field.value)
    except OrderStoreError as e:
        # lookup failure: row is treated as new
        logger.error("Import lookup %s=%r failed: %s", match_field.value, key, e)
        return None

    if len(matches) > 1:
        # FIXME: ambiguous key; only the first record in index order gets reconciled
        logger.warning(
            "Import key %s=%r matches %d records; reconciling against id=%s only",
            match_field.value, key, len(matches), matches[0].get(KEY_PATH),
        )
    return matches[0] if matches else None


async def import_batch(
    store: RecordStore,
    rows: Iterable[Mapping[str, Any]],
    match_field: MatchField | str = MatchField.ORDER_NUMBER,
    overwrite: bool = False,
    *,
    new_id: Callable[[], str] = generate_id,
) -> ImportSummary:
    """
    Reconcile candidate rows against the store, one transaction per row.

    A row whose match key hits an existing record is skipped unless ``overwrite``;
    with ``overwrite`` the record keeps its id and createdAt. A row that fails for any
    reason is counted as errored and the batch goes on, so a batch can end half applied.
    """
    if not store.is_open:
        raise StoreUnavailable(f"Store '{store.name}' is not initialized")

    match_field = MatchField(match_field)
    key_column = _MATCH_COLUMN_KEYS[match_field]
    summary = ImportSummary()

    for index, row in enumerate(rows):
        try:
            search_key = _cell(row, key_column, match_field.value)
            existing = await _find_existing(store, match_field, search_key) if search_key else None

            if existing and not overwrite:
                summary.skipped += 1
                continue

            record = normalize_row(row, existing, now=utc_now_iso(), new_id=new_id)
            await store.put(record)
        except Exception as e:
            logger.error("Import row %d failed: %s", index, e)
            summary.errored += 1
            continue

        if existing:
            summary.updated += 1
        else:
            summary.created += 1

    logger.info(
        "Import finished (match=%s overwrite=%s): created=%d updated=%d skipped=%d errored=%d",
        match_field.value, overwrite, summary.created, summary.updated, summary.skipped, summary.errored,
    )
    return summary


async def restore_backup(store: RecordStore, records: Iterable[Record]) -> int:
    """Wipe the table and write the backup records verbatim. Irreversible."""
    total = await store.replace_all(records)
    logger.info("Backup restored into '%s': %d records", store.name, total)
    return total


async def clear_all_data(store: RecordStore) -> int:
    removed = await store.clear()
    logger.info("All data cleared from '%s': %d records removed", store.name, removed)
    return removed
