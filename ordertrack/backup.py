# ordertrack/backup.py

import json
from datetime import datetime
from typing import Any, Iterable

from pydantic import BaseModel, Field, ValidationError

from ordertrack.entities import Record
from ordertrack.errors import ValidationFailed
from ordertrack.store import utc_now_iso


class Backup(BaseModel):
    timestamp: str = ""
    totalRecords: int = 0
    data: list[dict[str, Any]] = Field(default_factory=list)


def make_backup(records: Iterable[Record], timestamp: str | None = None) -> dict:
    data = list(records)
    return Backup(timestamp=timestamp or utc_now_iso(), totalRecords=len(data), data=data).model_dump()


def dump_backup(backup: dict) -> str:
    return json.dumps(backup, indent=2, ensure_ascii=False)


def load_backup(text: str) -> list[Record]:
    """
    Returns the records of a backup file. Only ``data`` is required; timestamp and
    totalRecords are informational.
    """
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as e:
        raise ValidationFailed(f"Invalid backup file format: {e}") from e

    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        raise ValidationFailed("Invalid backup file format")

    try:
        return Backup.model_validate(payload).data
    except ValidationError as e:
        raise ValidationFailed(f"Invalid backup file format: {e}") from e


def backup_filename(now: datetime | None = None) -> str:
    return f"orders_backup_{(now or datetime.now()).strftime('%Y-%m-%d')}.json"
