# tests/conftest.py
import pytest

from ordertrack.service import store_opener


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{(tmp_path / 'OrdersDB.sqlite3').as_posix()}"


@pytest.fixture
def open_store(db_url):
    return store_opener("OrdersDB", 3, url=db_url)


def make_order(order_id, order_number="ORD-1", **fields):
    record = {
        "id": order_id,
        "orderNumber": order_number,
        "date": "2024-03-01",
        "diameter": "1200",
        "thickness": "12",
        "typeSize": "ЭЛЛ",
        "cutting": "yes",
        "bottomNumber": f"B-{order_id}",
        "material": "09Г2С",
        "heatTreatment": "",
        "treatmentDate": "",
        "executors": [{"name": "", "date": ""} for _ in range(6)],
    }
    record.update(fields)
    return record

