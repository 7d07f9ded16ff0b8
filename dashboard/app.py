"""
Outstanding Inventory — FastAPI backend.

Exposes the inventory core to the board UI.  All state lives in the two
collection files managed by the record store; this module holds no
records of its own.

Endpoints
---------
  GET    /api/health                         → liveness check
  GET    /api/setup                          → data files, sources, backups
  GET    /api/items                          → all items, defaults filled in
  PUT    /api/items                          → replace the items collection, leased items kept
  GET    /api/items/summary                  → counts for the board header
  GET    /api/items/stream                   → server-sent events: items on start and on change
  POST   /api/items/export                   → copy items to a JSON file
  POST   /api/items/{uid}/lock               → acquire the edit lease
  DELETE /api/items/{uid}/lock               → release the edit lease
  PATCH  /api/items/{uid}                    → apply an edit under a live lease
  POST   /api/items/{uid}/move               → reassign the item's bubble
  GET    /api/orders                         → all orders
  PUT    /api/orders                         → replace the orders collection
  GET    /api/orders/pending-invoice         → orders still missing an invoice number
  PUT    /api/orders/{reference}/invoice     → record an invoice number
  POST   /api/orders/add-to-outstanding      → derive items from unconsumed lines
  GET    /api/sources                        → registered source names
  POST   /api/sources/{name}/fetch           → run one source and merge its orders
  GET    /api/paths                          → resolved collection paths
  PUT    /api/paths/{collection}             → move a collection to another file
  DELETE /api/paths/{collection}             → reset a collection to its default file
  GET    /api/settings                       → settings document
  PUT    /api/settings                       → replace the settings document
"""
import asyncio
import json
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from config import DEFAULT_BUBBLES
from dashboard.models import (
    InvoiceEntry, ItemEdit, ItemsUpdate, MoveRequest, OrdersUpdate, PathUpdate, SettingsUpdate,
)
from models.result import (
    INVALID, LOCK_EXPIRED, LOCKED, NOT_FOUND, PARSE_CORRUPTION, SOURCE_UNAVAILABLE, UNKNOWN_SOURCE,
    OperationResult,
)
from stockflow.service import InventoryService

logger = logging.getLogger(__name__)

# Result reason -> HTTP status
_STATUS_FOR_REASON = {
    NOT_FOUND:          404,
    UNKNOWN_SOURCE:     404,
    LOCKED:             409,
    LOCK_EXPIRED:       409,
    SOURCE_UNAVAILABLE: 502,
    INVALID:            400,
    PARSE_CORRUPTION:   503,
}

# Seconds between keep-alive comments on an idle event stream
_STREAM_KEEPALIVE = 15

# ---------------------------------------------------------------------------
# Service, built on first request.  Importing the app does not touch the
# data directory.
# ---------------------------------------------------------------------------
_service: Optional[InventoryService] = None


def get_service() -> InventoryService:
    global _service
    if _service is None:
        _service = InventoryService()
    return _service


def _check(result: OperationResult) -> OperationResult:
    if not result.ok:
        status = _STATUS_FOR_REASON.get(result.reason, 400)
        raise HTTPException(status_code=status, detail={"reason": result.reason, "message": result.message})
    return result


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="Outstanding Inventory", docs_url=None, redoc_url=None)


# ── Health ────────────────────────────────────────────────────────────────────

@app.get("/api/health")
def health():
    service = get_service()
    return {
        "status":  "ok",
        "paths":   service.paths(),
        "sources": sorted(service.sources),
        "bubbles": DEFAULT_BUBBLES,
    }


@app.get("/api/setup")
def setup():
    return get_service().check_setup()


# ── Items ─────────────────────────────────────────────────────────────────────

@app.get("/api/items")
def list_items():
    return get_service().read_items()


@app.put("/api/items")
def replace_items(body: ItemsUpdate):
    """Items under another session's live lease keep their stored version; see "held"."""
    return get_service().write_items(body.items)


@app.get("/api/items/summary")
def items_summary():
    return get_service().summary()


@app.get("/api/items/stream")
async def stream_items(request: Request):
    """
    Server-sent events.  Each "items" event carries the full items array;
    the first one is sent immediately.  Bursts of changes may arrive as a
    single event with the latest state.
    """
    service = get_service()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def _push(items: list) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, items)

    service.store.start_watching()
    unsubscribe = service.subscribe_items(_push, emit_initial=True)

    async def _events():
        try:
            while not await request.is_disconnected():
                try:
                    items = await asyncio.wait_for(queue.get(), timeout=_STREAM_KEEPALIVE)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                while not queue.empty():
                    items = queue.get_nowait()
                yield f"event: items\ndata: {json.dumps(items, ensure_ascii=False)}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-store", "X-Accel-Buffering": "no"},
    )


@app.post("/api/items/export")
def export_items(body: PathUpdate):
    count = get_service().export_items(body.path)
    return {"ok": True, "path": body.path, "count": count}


@app.post("/api/items/{uid}/lock")
def lock_item(uid: str):
    return _check(get_service().lock_item(uid))


@app.delete("/api/items/{uid}/lock")
def release_item(uid: str):
    return _check(get_service().release_lock(uid))


@app.patch("/api/items/{uid}")
def edit_item(uid: str, body: ItemEdit):
    return _check(get_service().apply_edit(uid, body.patch))


@app.post("/api/items/{uid}/move")
def move_item(uid: str, body: MoveRequest):
    return _check(get_service().move_item(uid, body.bubble))


# ── Orders ────────────────────────────────────────────────────────────────────

@app.get("/api/orders")
def list_orders():
    return get_service().read_orders()


@app.put("/api/orders")
def replace_orders(body: OrdersUpdate):
    try:
        synced = get_service().write_orders(body.orders)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return {"ok": True, "count": len(body.orders), "invoices_synced": synced}


@app.get("/api/orders/pending-invoice")
def pending_invoice_orders():
    return get_service().pending_invoice_orders()


@app.put("/api/orders/{reference}/invoice")
def set_order_invoice(reference: str, body: InvoiceEntry):
    return _check(get_service().set_order_invoice(reference, body.invoice))


@app.post("/api/orders/add-to-outstanding")
def add_to_outstanding():
    return _check(get_service().add_orders_to_outstanding())


# ── Sources ───────────────────────────────────────────────────────────────────

@app.get("/api/sources")
def list_sources():
    return sorted(get_service().sources)


@app.post("/api/sources/{name}/fetch")
def fetch_source(name: str):
    return _check(get_service().ingest(name))


# ── Paths & settings ──────────────────────────────────────────────────────────

@app.get("/api/paths")
def get_paths():
    return get_service().paths()


@app.put("/api/paths/{collection}")
def set_path(collection: str, body: PathUpdate):
    try:
        path = get_service().set_collection_path(collection, body.path)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return {"ok": True, "collection": collection, "path": str(path)}


@app.delete("/api/paths/{collection}")
def reset_path(collection: str):
    try:
        path = get_service().reset_collection_path(collection)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return {"ok": True, "collection": collection, "path": str(path)}


@app.get("/api/settings")
def get_settings():
    return get_service().config.settings.read()


@app.put("/api/settings")
def put_settings(body: SettingsUpdate):
    get_service().config.settings.write(body.values)
    logger.info("Settings replaced via API")
    return {"ok": True}
