# tests/test_service.py
import asyncio

import pytest

from conftest import make_order
from ordertrack.errors import NotFound, StoreUnavailable, ValidationFailed
from ordertrack.service import OrdersService, store_opener
from ordertrack.store import RecordStore
from ordertrack.sync import MessageBus, SyncHost


def test_calls_before_init_fail(open_store):
    service = OrdersService(open_store)
    assert not service.ready
    with pytest.raises(StoreUnavailable):
        asyncio.run(service.load_by_id("r1"))


def test_failed_init_leaves_service_unusable(db_url):
    async def scenario():
        store = await RecordStore.open("OrdersDB", 3, url=db_url)
        await store.close()
        service = OrdersService(store_opener("OrdersDB", 2, url=db_url))
        with pytest.raises(StoreUnavailable):
            await service.init()
        return service

    service = asyncio.run(scenario())
    assert not service.ready
    with pytest.raises(StoreUnavailable):
        asyncio.run(service.list_sorted())


def test_form_save_load_and_delete(open_store):
    async def scenario():
        service = await OrdersService(open_store).init()
        try:
            order_id = await service.save_form(
                {"recordId": "", "orderNumber": "ORD-1", "date": "2024-03-01", "executor2": "Sidorov"}
            )
            loaded = await service.load_by_id(order_id)
            found = await service.search_exact("ORD-1")
            deleted = await service.delete_by_id(order_id)
            missing_ok = await service.delete_by_id(order_id)
            with pytest.raises(NotFound):
                await service.delete_by_id(order_id, missing_ok=False)
            return loaded, found, deleted, missing_ok
        finally:
            await service.close()

    loaded, found, deleted, missing_ok = asyncio.run(scenario())
    assert loaded["orderNumber"] == "ORD-1"
    assert loaded["executors"][1]["name"] == "Sidorov"
    assert loaded["createdAt"]
    assert [r["id"] for r in found] == [loaded["id"]]
    assert deleted is True
    assert missing_ok is False


def test_invalid_form_is_not_saved(open_store):
    async def scenario():
        service = await OrdersService(open_store).init()
        try:
            with pytest.raises(ValidationFailed):
                await service.save_form({"orderNumber": "ORD 1", "date": "2024-03-01"})
            return await service.list_sorted()
        finally:
            await service.close()

    assert asyncio.run(scenario()) == []


def test_export_backup_and_clear(open_store):
    async def scenario():
        service = await OrdersService(open_store).init()
        try:
            await service.save(make_order("r1", order_number="ORD-1"))
            await service.save(make_order("r2", order_number="ORD-2"))
            csv_text = await service.export_csv()
            backup = await service.backup()
            removed = await service.clear_all()
            return csv_text, backup, removed, await service.list_sorted()
        finally:
            await service.close()

    csv_text, backup, removed, remaining = asyncio.run(scenario())
    assert len(csv_text.strip().splitlines()) == 3
    assert backup["totalRecords"] == 2
    assert {r["id"] for r in backup["data"]} == {"r1", "r2"}
    assert removed == 2
    assert remaining == []


def test_open_snapshot_sees_deletes_from_the_primary(open_store):
    async def scenario():
        service = await OrdersService(open_store).init()
        try:
            await service.save(make_order("r1"))
            await service.save(make_order("r2"))
            bus = MessageBus()
            host = SyncHost(bus, open_store)
            view = await service.open_snapshot(bus, "list")
            await view.delete_order("r2")
            await host.drain()
            return view.records, await service.list_sorted()
        finally:
            await service.close()

    snapshot, stored = asyncio.run(scenario())
    assert [r["id"] for r in snapshot] == ["r1"]
    assert [r["id"] for r in stored] == ["r1"]


def test_restore_all_overwrites_everything(open_store):
    async def scenario():
        service = await OrdersService(open_store).init()
        try:
            await service.save(make_order("old"))
            total = await service.restore_all([{"id": "r1", "createdAt": "2020-01-01T00:00:00.000Z"}])
            return total, await service.list_sorted()
        finally:
            await service.close()

    total, stored = asyncio.run(scenario())
    assert total == 1
    assert stored == [{"id": "r1", "createdAt": "2020-01-01T00:00:00.000Z"}]
