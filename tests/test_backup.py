# tests/test_backup.py
import json

import pytest

from ordertrack.backup import backup_filename, dump_backup, load_backup, make_backup
from ordertrack.errors import ValidationFailed


def test_make_backup_shape():
    backup = make_backup([{"id": "r1"}, {"id": "r2"}], timestamp="2024-03-01T00:00:00.000Z")
    assert backup == {
        "timestamp": "2024-03-01T00:00:00.000Z",
        "totalRecords": 2,
        "data": [{"id": "r1"}, {"id": "r2"}],
    }


def test_dump_keeps_cyrillic_readable():
    text = dump_backup(make_backup([{"id": "r1", "material": "Сталь"}]))
    assert "Сталь" in text
    assert json.loads(text)["data"][0]["material"] == "Сталь"


def test_load_backup_returns_data_only():
    text = json.dumps({"timestamp": "x", "totalRecords": 99, "data": [{"id": "r1", "note": [1, 2]}]})
    assert load_backup(text) == [{"id": "r1", "note": [1, 2]}]


def test_load_backup_needs_only_data():
    assert load_backup('{"data": []}') == []


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "[]",
        '{"timestamp": "x"}',
        '{"data": {"id": "r1"}}',
        '{"data": ["r1"]}',
    ],
)
def test_load_backup_rejects_bad_files(text):
    with pytest.raises(ValidationFailed):
        load_backup(text)


def test_backup_filename():
    from datetime import datetime

    assert backup_filename(datetime(2024, 12, 31)) == "orders_backup_2024-12-31.json"
