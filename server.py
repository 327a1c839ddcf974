import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from ordertrack import settings
from ordertrack.backup import backup_filename, load_backup
from ordertrack.csv_codec import decode_bytes, export_filename, parse_csv
from ordertrack.errors import NotFound, OrderStoreError, StoreUnavailable, ValidationFailed
from ordertrack.merge import MatchField
from ordertrack.service import OrdersService, store_opener
from ordertrack.sync import MessageBus, StoreOpener, SyncHost

settings.configure_logging()
logger = logging.getLogger("ordertrack.server")

_STATUS_BY_ERROR = (
    (NotFound, 404),
    (ValidationFailed, 422),
    (StoreUnavailable, 503),
)


def create_app(open_store: StoreOpener | None = None) -> FastAPI:
    opener = open_store or store_opener()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service = OrdersService(opener)
        await service.init()
        bus = MessageBus()
        app.state.service = service
        app.state.bus = bus
        app.state.host = SyncHost(bus, opener)
        try:
            yield
        finally:
            await app.state.host.drain()
            await service.close()

    app = FastAPI(title="ordertrack", lifespan=lifespan)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins for dev
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(OrderStoreError)
    async def _store_error(request: Request, exc: OrderStoreError):
        status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
        logger.info("%s %s -> %d: %s", request.method, request.url.path, status, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    def _service(request: Request) -> OrdersService:
        return request.app.state.service

    # -----------------------
    # Records
    # -----------------------

    @app.get("/orders")
    async def list_orders(request: Request, sort: str = "createdAt", direction: str = "desc"):
        try:
            return await _service(request).list_sorted(sort, direction)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.get("/orders/search")
    async def search_orders(request: Request, term: str, field: str = "orderNumber"):
        return await _service(request).search_exact(term, field)

    @app.get("/orders/{order_id}")
    async def get_order(request: Request, order_id: str):
        record = await _service(request).load_by_id(order_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Order not found: {order_id}")
        return record

    @app.put("/orders")
    async def save_order(request: Request, record: dict[str, Any] = Body(...)):
        order_id = await _service(request).save(record)
        return {"status": "success", "id": order_id}

    @app.post("/orders/form")
    async def submit_form(request: Request, form: dict[str, Any] = Body(...)):
        order_id = await _service(request).save_form(form)
        return {"status": "success", "id": order_id}

    @app.delete("/orders/{order_id}")
    async def delete_order(request: Request, order_id: str):
        await _service(request).delete_by_id(order_id, missing_ok=False)
        return {"status": "success", "id": order_id}

    # -----------------------
    # Data management
    # -----------------------

    @app.get("/export.csv")
    async def export_orders(request: Request):
        content = await _service(request).export_csv()
        return Response(
            content=content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
        )

    @app.post("/import")
    async def import_orders(
        request: Request,
        match_field: MatchField = MatchField.ORDER_NUMBER,
        overwrite: bool = False,
    ):
        rows = parse_csv(decode_bytes(await request.body()))
        if not rows:
            raise ValidationFailed("The file has no rows to import")
        summary = await _service(request).import_batch(rows, match_field, overwrite)
        return summary.as_dict()

    @app.get("/backup")
    async def backup_orders(request: Request):
        return JSONResponse(
            content=await _service(request).backup(),
            headers={"Content-Disposition": f'attachment; filename="{backup_filename()}"'},
        )

    @app.post("/restore")
    async def restore_orders(request: Request):
        records = load_backup(decode_bytes(await request.body()))
        total = await _service(request).restore_all(records)
        return {"status": "success", "total": total}

    @app.post("/clear")
    async def clear_orders(request: Request):
        removed = await _service(request).clear_all()
        return {"status": "success", "removed": removed}

    # -----------------------
    # Cross-context messages
    # -----------------------

    @app.post("/events")
    async def send_event(request: Request, message: dict[str, Any] = Body(...)):
        reply = await request.app.state.host.handle_request(message)
        return reply.model_dump(mode="json")

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
