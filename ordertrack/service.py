# ordertrack/service.py

import logging
from typing import Any, Iterable, Mapping

from ordertrack import settings
from ordertrack.backup import make_backup
from ordertrack.csv_codec import export_csv
from ordertrack.entities import Record, StoreSchema
from ordertrack.errors import NotFound, StoreUnavailable
from ordertrack.merge import ImportSummary, MatchField, clear_all_data, import_batch, restore_backup
from ordertrack.query import DESC, list_sorted, search
from ordertrack.store import RecordStore
from ordertrack.sync import MessageBus, SnapshotView, StoreOpener
from ordertrack.validators import record_from_form, validate_order_form

logger = logging.getLogger("ordertrack.service")


def store_opener(
    name: str = settings.DB_NAME,
    version: int = settings.DB_VERSION,
    schema: StoreSchema | None = None,
    *,
    url: str | None = None,
) -> StoreOpener:
    """Factory handing out fresh connections to the same store."""
    schema = schema or StoreSchema(table_name=settings.TABLE_NAME)

    async def _open() -> RecordStore:
        return await RecordStore.open(name, version, schema, url=url)

    return _open


class OrdersService:
    """
    Operations the form / list view / admin console call.

    The service owns exactly one store handle between ``init()`` and ``close()``; the
    caller owns the service. If ``init()`` fails the service stays unusable and every
    call raises StoreUnavailable: build a new service and init again.
    """

    def __init__(self, open_store: StoreOpener | None = None):
        self.open_store = open_store or store_opener()
        self.store: RecordStore | None = None

    async def init(self) -> "OrdersService":
        if self.store is not None and self.store.is_open:
            return self
        try:
            self.store = await self.open_store()
        except StoreUnavailable:
            logger.error("Store initialization failed", exc_info=True)
            raise
        return self

    async def close(self) -> None:
        if self.store is not None:
            await self.store.close()
        self.store = None

    @property
    def ready(self) -> bool:
        return self.store is not None and self.store.is_open

    def _handle(self) -> RecordStore:
        if not self.ready:
            raise StoreUnavailable("Orders store is not initialized")
        return self.store

    # -----------------------
    # CRUD
    # -----------------------

    async def load_by_id(self, order_id: str) -> Record | None:
        return await self._handle().get(order_id)

    async def save(self, record: Record) -> str:
        return await self._handle().put(record)

    async def save_form(self, form: Mapping[str, Any]) -> str:
        validate_order_form(form)
        return await self.save(record_from_form(form))

    async def delete_by_id(self, order_id: str, *, missing_ok: bool = True) -> bool:
        deleted = await self._handle().delete(order_id)
        if not deleted and not missing_ok:
            raise NotFound(f"Order not found: {order_id}")
        return deleted

    # -----------------------
    # Queries
    # -----------------------

    async def list_sorted(self, field: str = "createdAt", direction: str = DESC) -> list[Record]:
        return await list_sorted(self._handle(), field, direction)

    async def search_exact(self, term: str, field: str = "orderNumber") -> list[Record]:
        return await search(self._handle(), term, field)

    # -----------------------
    # Batches
    # -----------------------

    async def import_batch(
        self,
        rows: Iterable[Mapping[str, Any]],
        match_field: MatchField | str = MatchField.ORDER_NUMBER,
        overwrite: bool = False,
    ) -> ImportSummary:
        return await import_batch(self._handle(), rows, match_field, overwrite)

    async def restore_all(self, records: Iterable[Record]) -> int:
        return await restore_backup(self._handle(), records)

    async def clear_all(self) -> int:
        return await clear_all_data(self._handle())

    # -----------------------
    # Export / views
    # -----------------------

    async def export_csv(self) -> str:
        return export_csv(await self.list_sorted("createdAt", DESC))

    async def backup(self) -> dict:
        return make_backup(await self.list_sorted("createdAt", DESC))

    async def open_snapshot(self, bus: MessageBus, address: str) -> SnapshotView:
        return SnapshotView(bus, address, await self.list_sorted("createdAt", DESC))
