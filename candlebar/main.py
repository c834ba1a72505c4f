"""FastAPI application — local control API for the host shell.

The tray / widget process talks to this API to read the rendered
dashboard and to edit the configuration. Polling starts with the app.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from candlebar.config import settings
from candlebar.services.dashboard import DashboardService
from candlebar.utils.errors import (
    ExtractionError,
    ImportFailure,
    TransportFailure,
    ValidationFailure,
)
from candlebar.utils.logger import logger

# ── Singleton service ───────────────────────────────────────────────
_service = DashboardService()


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    result = _service.start()
    logger.info("[Boot] Dashboard started: %s", result)
    yield
    await _service.stop()


app = FastAPI(
    title="Candlebar",
    description="Status-bar dashboard for stock quotes and JSON APIs",
    version="0.1.0",
    lifespan=_lifespan,
)

# CORS: the host shell's webview calls from its own origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Models ──────────────────────────────────────────────────────────
class StockAddRequest(BaseModel):
    symbol: str
    alias: str | None = None


class StockOrderRequest(BaseModel):
    symbols: list[str]


class AliasRequest(BaseModel):
    alias: str | None = None


class SourceTestRequest(BaseModel):
    url: str
    path: str


class EntryOverridesRequest(BaseModel):
    """Only the keys present in the body are applied; null clears."""

    model_config = ConfigDict(populate_by_name=True)

    value_display: str | None = Field(default=None, alias="valueDisplay")
    decimals: int | None = None


# ── Error mapping ───────────────────────────────────────────────────
@app.exception_handler(ValidationFailure)
async def _validation_failure(_request: Request, exc: ValidationFailure) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(ImportFailure)
async def _import_failure(_request: Request, exc: ImportFailure) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": exc.message})


def _found(result: dict) -> dict:
    """Turn a store's not_found result into a 404."""
    if result.get("error") == "not_found":
        ident = result.get("symbol") or result.get("name") or result.get("id")
        raise HTTPException(status_code=404, detail=f"{ident} not found")
    return result


# ══════════════════════════════════════════════════════════════════════
# DASHBOARD
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/health")
async def health() -> dict:
    status = _service.poller.get_status()
    return {
        "api": "ok",
        "poller": "running" if status["is_running"] else "stopped",
        "url": settings.server_url,
    }


@app.get("/api/dashboard")
async def dashboard() -> dict:
    """Rendered items, summary line and refresh timing."""
    return _service.view()


@app.get("/api/summary")
async def summary() -> dict:
    return {"summary": _service.view()["summary"]}


@app.post("/api/refresh")
async def refresh() -> dict:
    """Manual refresh. Joins an in-flight cycle instead of starting another."""
    return await _service.poller.refresh()


@app.get("/api/scheduler/status")
async def scheduler_status() -> dict:
    return _service.poller.get_status()


# ══════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/config")
async def export_config() -> dict:
    return _service.store.export_config()


@app.put("/api/config")
async def import_config(doc: Any = Body(...)) -> dict:
    """Replace the whole configuration. Missing fields take defaults."""
    return _service.store.import_config(doc)


@app.patch("/api/settings")
async def update_settings(changes: dict[str, Any] = Body(...)) -> dict:
    """Update global display settings (camelCase document keys)."""
    result = _service.update_settings(changes)
    return {**result, "config": _service.store.export_config()}


@app.put("/api/entries/{entry_id}/overrides")
async def set_entry_overrides(entry_id: str, req: EntryOverridesRequest) -> dict:
    store = _service.store
    result: dict = {"status": "unchanged", "id": entry_id}
    if "value_display" in req.model_fields_set:
        result = _found(store.set_entry_value_display(entry_id, req.value_display))
    if "decimals" in req.model_fields_set:
        result = _found(store.set_entry_decimals(entry_id, req.decimals))
    return result


# ── Stocks ─────────────────────────────────────────────────────────


@app.post("/api/stocks")
async def add_stock(req: StockAddRequest) -> dict:
    return _service.store.add_stock(req.symbol, alias=req.alias)


@app.delete("/api/stocks/{symbol}")
async def remove_stock(symbol: str) -> dict:
    return _found(_service.store.remove_stock(symbol))


@app.put("/api/stocks/order")
async def reorder_stocks(req: StockOrderRequest) -> dict:
    return _service.store.reorder_stocks(req.symbols)


@app.put("/api/stocks/{symbol}/alias")
async def update_alias(symbol: str, req: AliasRequest) -> dict:
    return _found(_service.store.update_alias(symbol, req.alias))


# ── Custom sources ─────────────────────────────────────────────────


@app.post("/api/sources")
async def add_source(source: dict[str, Any] = Body(...)) -> dict:
    return _service.store.add_custom_source(source)


@app.post("/api/sources/test")
async def test_source(req: SourceTestRequest) -> dict:
    """Try a URL + path once without saving anything."""
    try:
        value = await _service.fetcher.test_source(req.url, req.path)
    except TransportFailure as e:
        raise HTTPException(status_code=502, detail=e.message) from e
    except ExtractionError as e:
        raise HTTPException(status_code=422, detail=e.message) from e
    return {"status": "ok", "value": value}


@app.put("/api/sources/{name}")
async def update_source(name: str, source: dict[str, Any] = Body(...)) -> dict:
    return _found(_service.store.update_custom_source(name, source))


@app.delete("/api/sources/{name}")
async def remove_source(name: str) -> dict:
    return _found(_service.store.remove_custom_source(name))


def run() -> None:
    """Console entry point: serve the API and start polling."""
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level="warning")


if __name__ == "__main__":
    run()
