# ordertrack/entities.py
from dataclasses import dataclass
from typing import Any, TypeAlias

from sqlalchemy import (
    JSON,
    Column,
    Index,
    MetaData,
    String,
    Table,
    Text,
)

Record: TypeAlias = dict[str, Any]

KEY_PATH = "id"

# Free-form string attributes of an order, in form order.
STRING_FIELDS = (
    "date",
    "orderNumber",
    "diameter",
    "thickness",
    "typeSize",
    "cutting",
    "bottomNumber",
    "material",
    "heatTreatment",
    "treatmentDate",
)

# Slot position is the role; executors[i] always means EXECUTOR_ROLES[i].
EXECUTOR_ROLES = (
    "welder",
    "stamping",
    "flanging",
    "calibration",
    "plugWelder",
    "cutter",
)
EXECUTOR_SLOTS = len(EXECUTOR_ROLES)

TIMESTAMP_FIELDS = ("createdAt", "updatedAt")

KNOWN_FIELDS = (KEY_PATH, *STRING_FIELDS, "executors", *TIMESTAMP_FIELDS)

DEFAULT_INDEXES = (
    "orderNumber",
    "date",
    "material",
    "bottomNumber",
    "diameter",
    "thickness",
    "createdAt",
)

# Column holding keys the fixed schema does not know about (restored backups may carry them).
EXTRA_COLUMN = "extra"

SCHEMA_VERSION_KEY = "schema_version"


@dataclass(frozen=True)
class StoreSchema:
    table_name: str = "orders"
    indexes: tuple[str, ...] = DEFAULT_INDEXES

    def __post_init__(self) -> None:
        indexable = set(STRING_FIELDS) | set(TIMESTAMP_FIELDS)
        unknown = [name for name in self.indexes if name not in indexable]
        if unknown:
            raise ValueError(f"Cannot index unknown fields: {unknown}")


def empty_executors() -> list[dict[str, str]]:
    return [{"name": "", "date": ""} for _ in range(EXECUTOR_SLOTS)]


def build_order_table(metadata: MetaData, schema: StoreSchema) -> Table:
    columns = [Column(KEY_PATH, String, primary_key=True)]
    columns += [Column(name, Text) for name in STRING_FIELDS]
    columns.append(Column("executors", JSON))
    columns += [Column(name, String(32)) for name in TIMESTAMP_FIELDS]
    columns.append(Column(EXTRA_COLUMN, JSON))

    # none of these are unique: two orders may share a number, a date, a bottom number...
    indexes = [Index(f"ix_{schema.table_name}_{name}", name) for name in schema.indexes]
    return Table(schema.table_name, metadata, *columns, *indexes)


def build_meta_table(metadata: MetaData) -> Table:
    return Table(
        "meta",
        metadata,
        Column("key", String(64), primary_key=True),
        Column("value", Text, nullable=False),
    )


def _column_value(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def record_to_row(record: Record) -> dict[str, Any]:
    """
    Flatten a record into table columns. Every column is present in the result so an
    UPDATE replaces the whole row (no partial patch).
    """
    row: dict[str, Any] = {name: None for name in KNOWN_FIELDS}
    extra: dict[str, Any] = {}
    for key, value in record.items():
        if key == "executors":
            row[key] = value
        elif key in KNOWN_FIELDS:
            row[key] = _column_value(value)
        else:
            extra[key] = value
    row[EXTRA_COLUMN] = extra or None
    return row


def row_to_record(row: Any) -> Record:
    data = dict(row._mapping) if hasattr(row, "_mapping") else dict(row)
    extra = data.pop(EXTRA_COLUMN, None) or {}
    record: Record = {k: v for k, v in data.items() if v is not None}
    for key, value in extra.items():
        record.setdefault(key, value)
    return record
