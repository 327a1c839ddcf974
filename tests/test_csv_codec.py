# tests/test_csv_codec.py
import csv
import io

from ordertrack.csv_codec import (
    CSV_HEADERS,
    decode_bytes,
    export_csv,
    export_filename,
    parse_csv,
    read_csv_file,
    record_to_csv_row,
)
from ordertrack.entities import empty_executors


def _record(**fields):
    record = {
        "id": "r1",
        "date": "2024-03-01",
        "orderNumber": "ORD-1",
        "bottomNumber": "B-1",
        "executors": empty_executors(),
        "createdAt": "2024-03-01T08:00:00.000Z",
        "updatedAt": "2024-03-02T08:00:00.000Z",
    }
    record.update(fields)
    return record


def test_header_row_has_25_fixed_columns():
    assert len(CSV_HEADERS) == 25
    assert CSV_HEADERS[:3] == ["ID", "Дата заказа", "Номер заказа"]
    assert CSV_HEADERS[-2:] == ["Дата создания", "Дата обновления"]
    assert export_csv([]).splitlines() == [",".join(CSV_HEADERS)]


def test_export_row_layout():
    executors = empty_executors()
    executors[2] = {"name": "Sidorov", "date": "2024-03-04"}
    values = record_to_csv_row(_record(executors=executors, material=None))

    assert len(values) == 25
    assert values[0] == "r1"
    assert values[8] == ""  # material
    # executor slot 3 occupies columns 16 and 17
    assert values[15:17] == ["Sidorov", "2024-03-04"]
    assert values[-1] == "2024-03-02T08:00:00.000Z"


def test_short_executor_list_pads_with_empty_cells():
    values = record_to_csv_row(_record(executors=[{"name": "Ivanov", "date": "d"}]))
    assert values[11:13] == ["Ivanov", "d"]
    assert values[13:23] == [""] * 10


def test_export_quotes_cells_with_commas_quotes_and_newlines():
    text = export_csv([_record(material='steel, "hot"', heatTreatment="line1\nline2")])
    rows = list(csv.reader(io.StringIO(text, newline="")))
    assert rows[1][8] == 'steel, "hot"'
    assert rows[1][9] == "line1\nline2"
    assert '"steel, ""hot"""' in text


def test_exported_file_parses_back_into_rows():
    rows = parse_csv(export_csv([_record(material="steel, hot")]))
    assert len(rows) == 1
    assert rows[0]["номер заказа"] == "ORD-1"
    assert rows[0]["материал"] == "steel, hot"
    assert rows[0]["id"] == "r1"


def test_parse_accepts_any_column_order_and_header_case():
    text = "номер ЗАКАЗА,Материал, Дата заказа \nORD-1, steel ,2024-03-01\n"
    assert parse_csv(text) == [{"номер заказа": "ORD-1", "материал": "steel", "дата заказа": "2024-03-01"}]


def test_parse_drops_bad_rows():
    text = (
        "Номер заказа,Дата заказа,Материал\n"
        "ORD-1,2024-03-01,steel\n"
        "ORD-2,2024-03-01\n"  # wrong cell count
        ",2024-03-01,steel\n"  # no order number
        "ORD-4,,steel\n"  # no order date
        "\n"
        "ORD-5,2024-03-05,\n"
    )
    rows = parse_csv(text)
    assert [r["номер заказа"] for r in rows] == ["ORD-1", "ORD-5"]


def test_parse_needs_header_and_one_row():
    assert parse_csv("") == []
    assert parse_csv("Номер заказа,Дата заказа\n") == []


def test_parse_strips_byte_order_mark():
    rows = parse_csv("\ufeffНомер заказа,Дата заказа\nORD-1,2024-03-01\n")
    assert rows == [{"номер заказа": "ORD-1", "дата заказа": "2024-03-01"}]


def test_decode_prefers_utf8():
    raw = "\ufeffНомер заказа".encode("utf-8")
    assert decode_bytes(raw) == "Номер заказа"


def test_read_csv_file(tmp_path):
    path = tmp_path / "orders.csv"
    path.write_text(export_csv([_record()]), encoding="utf-8-sig")
    rows = read_csv_file(path)
    assert len(rows) == 1
    assert rows[0]["дата заказа"] == "2024-03-01"


def test_export_filename():
    from datetime import datetime

    assert export_filename(datetime(2024, 3, 9, 15, 0)) == "orders_export_2024-03-09.csv"


def test_decode_cp1251_export():
    records = [
        _record(
            id=f"r{i}",
            orderNumber=f"ORD-{i}",
            material="Сталь нержавеющая",
            typeSize="Эллиптическое днище",
            heatTreatment="Нормализация",
            executors=[{"name": "Иванов Пётр", "date": "2024-03-02"}] + empty_executors()[1:],
        )
        for i in range(20)
    ]
    text = export_csv(records)
    decoded = decode_bytes(text.encode("cp1251"))

    assert decoded == text
    rows = parse_csv(decoded)
    assert len(rows) == 20
    assert rows[0]["материал"] == "Сталь нержавеющая"
    assert rows[0]["сварщик"] == "Иванов Пётр"
