# ordertrack/sync.py
"""
Cross-context request/reply channel.

The primary context (the form) owns the store. Secondary contexts (list view, admin
console) only hold a snapshot of records and never touch the table: every mutation is
a request message to the primary, which answers with exactly one reply.

Addressing
----------
Every context is an Endpoint registered on a MessageBus under an address string.
The bus keeps endpoints by weak reference only, so neither side owns the other:
a secondary that goes away simply stops receiving, and replies to it are dropped.

Request handling (primary)
--------------------------
- open a fresh store connection
- run one operation, or one import / restore / clear batch
- reply with the acknowledgement, or Error{message} on any failure
- close the connection
The primary never sends anything that was not asked for.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable
from uuid import uuid4

from pydantic import BaseModel

from ordertrack.entities import KEY_PATH, Record
from ordertrack.errors import StoreUnavailable
from ordertrack.merge import clear_all_data, import_batch, restore_backup
from ordertrack.messages import (
    BackupRestored,
    ClearAllData,
    DataCleared,
    DeleteOrder,
    Error,
    ImportOrders,
    OrderDeleted,
    OrdersImported,
    RestoreBackup,
    parse_request,
)
from ordertrack.query import filter_snapshot
from ordertrack.store import RecordStore

logger = logging.getLogger("ordertrack.sync")

PRIMARY_ADDRESS = "primary"

StoreOpener = Callable[[], Awaitable[RecordStore]]


@dataclass
class Envelope:
    sender: str
    receiver: str
    message: Any
    correlation_id: str = field(default_factory=lambda: uuid4().hex)
    reply_to: str | None = None


class MessageBus:
    def __init__(self) -> None:
        self._endpoints: "weakref.WeakValueDictionary[str, Endpoint]" = weakref.WeakValueDictionary()

    def attach(self, endpoint: "Endpoint") -> None:
        current = self._endpoints.get(endpoint.address)
        if current is not None and current is not endpoint:
            raise ValueError(f"Address already in use: {endpoint.address}")
        self._endpoints[endpoint.address] = endpoint

    def detach(self, address: str) -> None:
        self._endpoints.pop(address, None)

    def is_attached(self, address: str) -> bool:
        return self._endpoints.get(address) is not None

    async def send(self, envelope: Envelope) -> bool:
        endpoint = self._endpoints.get(envelope.receiver)
        if endpoint is None:
            logger.warning(
                "No context at '%s'; dropping %s from '%s'",
                envelope.receiver, getattr(envelope.message, "type", "message"), envelope.sender,
            )
            return False
        await endpoint.deliver(envelope)
        return True


class Endpoint:
    def __init__(self, bus: MessageBus, address: str):
        self.bus = bus
        self.address = address
        self._pending: dict[str, asyncio.Future] = {}
        bus.attach(self)

    async def request(self, receiver: str, message: BaseModel) -> BaseModel:
        """Send one message and wait for its reply."""
        envelope = Envelope(sender=self.address, receiver=receiver, message=message)
        future = asyncio.get_running_loop().create_future()
        self._pending[envelope.correlation_id] = future
        try:
            if not await self.bus.send(envelope):
                raise StoreUnavailable(f"No context listening at '{receiver}'")
            return await future
        finally:
            self._pending.pop(envelope.correlation_id, None)

    async def reply(self, request: Envelope, message: BaseModel) -> bool:
        return await self.bus.send(
            Envelope(
                sender=self.address,
                receiver=request.sender,
                message=message,
                reply_to=request.correlation_id,
            )
        )

    async def deliver(self, envelope: Envelope) -> None:
        await self.on_message(envelope)
        future = self._pending.get(envelope.reply_to) if envelope.reply_to else None
        if future is not None and not future.done():
            future.set_result(envelope.message)

    async def on_message(self, envelope: Envelope) -> None:
        pass

    def close(self) -> None:
        self.bus.detach(self.address)


class SyncHost(Endpoint):
    """Primary side of the protocol."""

    def __init__(self, bus: MessageBus, open_store: StoreOpener, address: str = PRIMARY_ADDRESS):
        super().__init__(bus, address)
        self.open_store = open_store
        self._in_flight: set[asyncio.Task] = set()

    async def on_message(self, envelope: Envelope) -> None:
        if envelope.reply_to:
            return
        task = asyncio.create_task(self._process(envelope))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def drain(self) -> None:
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight))

    async def _process(self, envelope: Envelope) -> None:
        reply = await self.handle_request(envelope.message)
        if not await self.reply(envelope, reply):
            logger.info("Reply %s to '%s' dropped: context is gone", reply.type, envelope.sender)

    async def handle_request(self, message: Any) -> BaseModel:
        """Run one request. Always returns a reply; failures become Error."""
        msg_type = getattr(message, "type", None) or (message.get("type") if isinstance(message, dict) else None)
        try:
            request = parse_request(message)
            logger.debug("Processing %s", request.type)
            return await self.dispatch(request)
        except Exception as e:
            logger.error("Error processing message type=%s: %s", msg_type or "unknown", e, exc_info=True)
            return Error(message=str(e))

    async def dispatch(self, request: BaseModel) -> BaseModel:
        store = await self.open_store()
        try:
            if isinstance(request, DeleteOrder):
                await store.delete(request.id)
                return OrderDeleted(id=request.id)

            if isinstance(request, ImportOrders):
                summary = await import_batch(store, request.rows, request.matchField, request.overwrite)
                return OrdersImported.from_summary(summary)

            if isinstance(request, RestoreBackup):
                total = await restore_backup(store, request.records)
                return BackupRestored(total=total)

            if isinstance(request, ClearAllData):
                await clear_all_data(store)
                return DataCleared()

            raise ValueError(f"Unknown request type: {getattr(request, 'type', request)}")
        finally:
            await store.close()


class SnapshotView(Endpoint):
    """
    Secondary context (list view or admin console).

    ``records`` is a point-in-time copy. It is pruned when the primary acknowledges a
    delete and emptied on a clear acknowledgement; after an import or a restore it is
    marked stale and the owner should open a fresh snapshot.
    """

    def __init__(
        self,
        bus: MessageBus,
        address: str,
        records: Iterable[Record],
        primary: str = PRIMARY_ADDRESS,
    ):
        super().__init__(bus, address)
        self.primary = primary
        self.records: list[Record] = [dict(r) for r in records]
        self.stale = False
        self.errors: list[str] = []

    async def on_message(self, envelope: Envelope) -> None:
        message = envelope.message
        if isinstance(message, OrderDeleted):
            self.records = [r for r in self.records if r.get(KEY_PATH) != message.id]
        elif isinstance(message, DataCleared):
            self.records = []
        elif isinstance(message, (OrdersImported, BackupRestored)):
            self.stale = True
        elif isinstance(message, Error):
            logger.warning("'%s' received error from primary: %s", self.address, message.message)
            self.errors.append(message.message)

    def filter(self, term: str) -> list[Record]:
        return filter_snapshot(self.records, term)

    async def delete_order(self, order_id: str) -> BaseModel:
        return await self.request(self.primary, DeleteOrder(id=order_id))

    async def import_orders(self, rows: list[dict], overwrite: bool = False, match_field: str = "orderNumber") -> BaseModel:
        return await self.request(
            self.primary,
            ImportOrders(rows=rows, overwrite=overwrite, matchField=match_field),
        )

    async def restore_backup(self, records: list[Record]) -> BaseModel:
        return await self.request(self.primary, RestoreBackup(records=records))

    async def clear_all_data(self) -> BaseModel:
        return await self.request(self.primary, ClearAllData())
