from __future__ import annotations

import asyncio
import json
import logging
import os
import traceback
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from src.research.prompts import get_prompt_templates
from src.trader.runner import TradingLoop
from src.trader.state import AppState
from src.utils.config_loader import load_config

logger = logging.getLogger(__name__)

_state: AppState | None = None
_loop: TradingLoop | None = None

_TRUTHY = {"1", "true", "TRUE", "yes", "YES"}


def get_state() -> AppState:
    """Process-wide application state, created from the YAML config on first use."""
    global _state
    if _state is None:
        _state = AppState(load_config())
    return _state


app = FastAPI(
    title="AutoTrader API",
    version="0.2.0",
)


@app.on_event("startup")
async def startup_event():
    global _loop
    state = get_state()
    if str(os.environ.get("AUTOTRADER_DISABLE_TRADER", "")).strip() in _TRUTHY:
        logger.info("Trading loop startup skipped (AUTOTRADER_DISABLE_TRADER set).")
        _loop = None
        return

    _loop = TradingLoop(state)
    _loop.start()
    state.log_event("INFO", "System initialised, waiting for instructions...")
    logger.info("Trading loop thread started")


@app.on_event("shutdown")
async def shutdown_event():
    global _loop
    if _loop:
        _loop.stop()
        _loop = None
        logger.info("Trading loop stopped")


# Local dev defaults.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler to catch unhandled errors and return a clean JSON response.
    """
    logger.error(f"Unhandled exception: {type(exc).__name__}: {exc}")
    logger.debug(traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {type(exc).__name__}",
            "message": str(exc)[:200],  # Truncate long error messages
        },
    )


@app.get("/api/health")
async def health() -> dict[str, Any]:
    state = get_state()
    return {
        "status": "ok",
        "running": state.running,
        "trader_thread": _loop is not None,
        "last_log_id": state.logs[-1].id if state.logs else None,
    }


@app.get("/api/status")
async def status() -> dict[str, Any]:
    """Running flag, masked config, latest snapshots, latest decision and the rolling log."""
    return jsonable_encoder(get_state().status())


@app.post("/api/config")
async def config_update(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Partial config update. Secrets sent back as "***" keep their stored value.
    """
    state = get_state()
    try:
        state.update_config(payload)
    except ValueError as e:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid config update: {str(e)[:200]}",
        ) from e
    return {"success": True, "config": state.status()["config"]}


@app.post("/api/toggle")
async def toggle(payload: dict[str, Any]) -> dict[str, Any]:
    running = payload.get("running")
    if not isinstance(running, bool):
        raise HTTPException(status_code=400, detail="running must be boolean")
    state = get_state()
    state.set_running(running)
    return {"success": True, "running": state.running}


@app.get("/api/config/prompt-template")
async def config_prompt_template() -> dict[str, Any]:
    """
    Built-in decision prompt (strategy instructions only; the output schema is enforced by code).
    """
    return jsonable_encoder(get_prompt_templates())


@app.get("/api/events")
async def events(limit: int = Query(default=200, ge=1, le=2000)) -> list[dict[str, Any]]:
    return get_state().log_tail(limit)


@app.get("/api/events/stream")
async def events_stream(
    request: Request,
    after_id: int = Query(default=0, ge=0),
    poll_seconds: float = Query(default=1.0, ge=0.2, le=10.0),
):
    """
    Server-Sent Events feed of the rolling log.
    """
    state = get_state()

    async def _gen():
        last_id = int(after_id)
        # Hint to clients how long to wait before reconnecting (milliseconds).
        yield "retry: 1000\n\n"
        while True:
            if await request.is_disconnected():
                break
            rows = [e for e in state.log_tail() if e["id"] > last_id]
            if rows:
                for payload in rows:
                    last_id = int(payload["id"])
                    yield f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"
            else:
                yield ": keep-alive\n\n"
            await asyncio.sleep(float(poll_seconds))

    return StreamingResponse(
        _gen(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
