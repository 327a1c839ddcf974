# ordertrack/csv_codec.py

import csv
import io
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable

import chardet

from ordertrack.entities import EXECUTOR_SLOTS, Record

logger = logging.getLogger("ordertrack.csv")

# (header, record field) in export order
FIELD_COLUMNS = (
    ("ID", "id"),
    ("Дата заказа", "date"),
    ("Номер заказа", "orderNumber"),
    ("Диаметр (мм)", "diameter"),
    ("Толщина (мм)", "thickness"),
    ("Типоразмер", "typeSize"),
    ("Раскрой", "cutting"),
    ("Номер днища", "bottomNumber"),
    ("Материал", "material"),
    ("Режим ТО", "heatTreatment"),
    ("Дата ТО", "treatmentDate"),
)

# (name header, date header) per executor slot, same order as EXECUTOR_ROLES
EXECUTOR_COLUMNS = (
    ("Сварщик", "Дата сварки"),
    ("Штамповка", "Дата штамповки"),
    ("Отбортовка", "Дата отбортовки"),
    ("Калибровка", "Дата калибровки"),
    ("Сварщик (заглушки)", "Дата сварки заглушек"),
    ("Резчик", "Дата резки"),
)

TIMESTAMP_COLUMNS = (
    ("Дата создания", "createdAt"),
    ("Дата обновления", "updatedAt"),
)

CSV_HEADERS = (
    [header for header, _ in FIELD_COLUMNS]
    + [header for pair in EXECUTOR_COLUMNS for header in pair]
    + [header for header, _ in TIMESTAMP_COLUMNS]
)


def column_key(header: str) -> str:
    """Imported rows are keyed by the trimmed, lower-cased header."""
    return (header or "").strip().lower()


ORDER_NUMBER_KEY = column_key("Номер заказа")
ORDER_DATE_KEY = column_key("Дата заказа")
BOTTOM_NUMBER_KEY = column_key("Номер днища")


def _text(value) -> str:
    return "" if not value else str(value)


def record_to_csv_row(record: Record) -> list[str]:
    values = [_text(record.get(field)) for _, field in FIELD_COLUMNS]

    executors = record.get("executors") or []
    for i in range(EXECUTOR_SLOTS):
        slot = executors[i] if i < len(executors) and isinstance(executors[i], dict) else {}
        values.append(_text(slot.get("name")))
        values.append(_text(slot.get("date")))

    values += [_text(record.get(field)) for _, field in TIMESTAMP_COLUMNS]
    return values


def export_csv(records: Iterable[Record]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for record in records:
        writer.writerow(record_to_csv_row(record))
    return buffer.getvalue()


def export_filename(now: datetime | None = None) -> str:
    return f"orders_export_{(now or datetime.now()).strftime('%Y-%m-%d')}.csv"


def parse_csv(text: str) -> list[dict[str, str]]:
    """
    Parse an export-style CSV into rows keyed by lower-cased header.

    Column order is free. Rows whose cell count differs from the header's are dropped,
    and so are rows without an order number or an order date.
    """
    reader = csv.reader(io.StringIO((text or "").lstrip("\ufeff"), newline=""))
    lines = [values for values in reader if any(cell.strip() for cell in values)]
    if len(lines) < 2:
        return []

    headers = [column_key(h) for h in lines[0]]
    orders: list[dict[str, str]] = []
    dropped = 0

    for values in lines[1:]:
        if len(values) != len(headers):
            dropped += 1
            continue
        order = {header: value.strip() for header, value in zip(headers, values)}
        if order.get(ORDER_NUMBER_KEY) and order.get(ORDER_DATE_KEY):
            orders.append(order)
        else:
            dropped += 1

    if dropped:
        logger.info("CSV import: %d rows parsed, %d rows dropped", len(orders), dropped)
    return orders


# Exports come out of Windows Excel; chardet often mistakes cp1251 for another
# single-byte code page, and none of these ever fails to decode.
_CP1251_LOOKALIKES = {
    "ascii",
    "iso-8859-1",
    "iso-8859-5",
    "windows-1252",
    "maccyrillic",
    "koi8-r",
    "ibm866",
    "ibm855",
}


def detect_encoding(raw: bytes) -> str | None:
    encoding = chardet.detect(raw[:4096]).get("encoding")
    if encoding is None:
        return None
    if encoding.lower() in _CP1251_LOOKALIKES:
        return "cp1251"
    return encoding


def decode_bytes(raw: bytes) -> str:
    """UTF-8 first (it validates itself), then the detected encoding, then cp1251."""
    for encoding in ("utf-8-sig", detect_encoding(raw), "cp1251"):
        if not encoding:
            continue
        try:
            return raw.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            logger.debug("CSV decode with %s failed, trying next", encoding)
    return raw.decode("utf-8", errors="replace")


def read_csv_file(path: str | Path) -> list[dict[str, str]]:
    return parse_csv(decode_bytes(Path(path).read_bytes()))
