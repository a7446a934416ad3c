from __future__ import annotations

import asyncio
import logging
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lnscheduler.db.repository import SqlRepository
from lnscheduler.domain.errors import ConcurrentUpdateError, InvalidStatusTransition, NotFoundError
from lnscheduler.domain.models import TradeStatus
from lnscheduler.engine.management import ScheduleManager
from lnscheduler.engine.market import refresh_market_data
from lnscheduler.scheduler.service import SchedulerService
from lnscheduler.scheduler.settings import RECONCILIATION_SCOPES, load_scheduler_settings, scheduler_disabled
from lnscheduler.scheduler.ticks import SchedulerContext, build_context, run_reconciliation_tick, run_trigger_tick
from lnscheduler.utils.config_loader import load_config
from lnscheduler.utils.database import close_repository, get_repository
from lnscheduler.venue.errors import VenueAuthError, VenueRejectedError, VenueTransientError
from lnscheduler.venue.lnmarkets import load_venue_settings, make_venue_factory

logger = logging.getLogger(__name__)

_repo: SqlRepository | None = None
_ctx: SchedulerContext | None = None
_service: SchedulerService | None = None
_init_lock = threading.Lock()

# Thread pool for blocking DB and venue calls so they don't freeze the event loop.
_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix="api")

_READ_TIMEOUT = 5.0
_WRITE_TIMEOUT = 30.0


def _get_repo() -> SqlRepository:
    global _repo
    with _init_lock:
        if _repo is None:
            repo = get_repository()
            repo.init_schema()
            _repo = repo
        return _repo


def _get_context() -> SchedulerContext:
    global _ctx
    repo = _get_repo()
    with _init_lock:
        if _ctx is None:
            config = load_config()
            _ctx = build_context(
                repo,
                make_venue_factory(load_venue_settings(config)),
                load_scheduler_settings(config),
            )
        return _ctx


def _manager() -> ScheduleManager:
    return ScheduleManager(_get_repo(), symbol=_get_context().settings.symbol)


app = FastAPI(
    title="LN Markets Scheduler API",
    version="0.1.0",
)


@app.on_event("startup")
async def startup_event():
    global _service
    if scheduler_disabled():
        logger.info("SchedulerService startup skipped (LNSCHED_DISABLE_SCHEDULER set).")
        _service = None
        return
    _service = SchedulerService(_get_context())
    _service.start()


@app.on_event("shutdown")
async def shutdown_event():
    global _service
    if _service:
        _service.stop()
        _service = None
    if _repo is not None:
        close_repository(_repo)


# Local dev defaults.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)[:500], "error": type(exc).__name__})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(404, exc)


@app.exception_handler(InvalidStatusTransition)
async def invalid_transition_handler(request: Request, exc: InvalidStatusTransition):
    return _error(409, exc)


@app.exception_handler(ConcurrentUpdateError)
async def concurrent_update_handler(request: Request, exc: ConcurrentUpdateError):
    return _error(409, exc)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    # InvalidScheduleError and bad payload values.
    return _error(400, exc)


@app.exception_handler(VenueAuthError)
async def venue_auth_handler(request: Request, exc: VenueAuthError):
    return _error(502, exc)


@app.exception_handler(VenueRejectedError)
async def venue_rejected_handler(request: Request, exc: VenueRejectedError):
    return _error(400, exc)


@app.exception_handler(VenueTransientError)
async def venue_transient_handler(request: Request, exc: VenueTransientError):
    return _error(503, exc)


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
            "message": str(exc)[:200],
        },
    )


async def _run_in_executor(func, *args, timeout_seconds: float = _READ_TIMEOUT, **kwargs):
    """
    Run a blocking call in the thread pool with a timeout.

    A timeout becomes a 503; any other exception propagates to the handlers above so
    domain errors keep their status codes.
    """
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(_executor, lambda: func(*args, **kwargs)),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        logger.warning(f"Call timed out after {timeout_seconds}s: {func.__name__}")
        raise HTTPException(status_code=503, detail=f"Timed out: {func.__name__}") from e


def _records(items) -> list[dict[str, Any]]:
    return jsonable_encoder([i.to_dict() for i in items])


@app.get("/api/health")
async def health() -> dict[str, Any]:
    repo = _get_repo()
    db_ok = await _run_in_executor(repo.ping)
    return {
        "status": "ok" if db_ok else "degraded",
        "db_backend": repo.backend,
        "db": repo.describe(),
        "db_ok": db_ok,
        "scheduler": _service.status() if _service is not None else {"running": False},
    }


@app.get("/api/events")
async def events(limit: int = Query(default=200, ge=1, le=2000)) -> list[dict[str, Any]]:
    rows = await _run_in_executor(_get_repo().list_events, limit)
    return jsonable_encoder(rows)


# ---------------------------------------------------------------------------
# Scheduled trades
# ---------------------------------------------------------------------------


@app.get("/api/users/{user_id}/scheduled-trades")
async def list_scheduled_trades(user_id: int) -> list[dict[str, Any]]:
    return _records(await _run_in_executor(_get_repo().list_scheduled_trades, user_id))


@app.post("/api/users/{user_id}/scheduled-trades", status_code=201)
async def create_scheduled_trade(user_id: int, payload: dict[str, Any]) -> dict[str, Any]:
    st = await _run_in_executor(_manager().create_scheduled_trade, user_id, payload)
    return jsonable_encoder(st.to_dict())


@app.put("/api/scheduled-trades/{scheduled_trade_id}")
async def update_scheduled_trade(scheduled_trade_id: int, payload: dict[str, Any]) -> dict[str, Any]:
    st = await _run_in_executor(_manager().update_scheduled_trade, scheduled_trade_id, payload)
    return jsonable_encoder(st.to_dict())


@app.delete("/api/scheduled-trades/{scheduled_trade_id}")
async def cancel_scheduled_trade(scheduled_trade_id: int) -> dict[str, Any]:
    st = await _run_in_executor(_manager().cancel_scheduled_trade, scheduled_trade_id)
    return jsonable_encoder(st.to_dict())


# ---------------------------------------------------------------------------
# Scheduled swaps
# ---------------------------------------------------------------------------


@app.get("/api/users/{user_id}/scheduled-swaps")
async def list_scheduled_swaps(user_id: int) -> list[dict[str, Any]]:
    return _records(await _run_in_executor(_get_repo().list_scheduled_swaps, user_id))


@app.post("/api/users/{user_id}/scheduled-swaps", status_code=201)
async def create_scheduled_swap(user_id: int, payload: dict[str, Any]) -> dict[str, Any]:
    ss = await _run_in_executor(_manager().create_scheduled_swap, user_id, payload)
    return jsonable_encoder(ss.to_dict())


@app.put("/api/scheduled-swaps/{scheduled_swap_id}")
async def update_scheduled_swap(scheduled_swap_id: int, payload: dict[str, Any]) -> dict[str, Any]:
    ss = await _run_in_executor(_manager().update_scheduled_swap, scheduled_swap_id, payload)
    return jsonable_encoder(ss.to_dict())


@app.delete("/api/scheduled-swaps/{scheduled_swap_id}")
async def cancel_scheduled_swap(scheduled_swap_id: int) -> dict[str, Any]:
    ss = await _run_in_executor(_manager().cancel_scheduled_swap, scheduled_swap_id)
    return jsonable_encoder(ss.to_dict())


@app.post("/api/scheduled-swaps/{scheduled_swap_id}/pause")
async def pause_scheduled_swap(scheduled_swap_id: int) -> dict[str, Any]:
    ss = await _run_in_executor(_manager().pause_scheduled_swap, scheduled_swap_id)
    return jsonable_encoder(ss.to_dict())


@app.post("/api/scheduled-swaps/{scheduled_swap_id}/resume")
async def resume_scheduled_swap(scheduled_swap_id: int) -> dict[str, Any]:
    ss = await _run_in_executor(_manager().resume_scheduled_swap, scheduled_swap_id)
    return jsonable_encoder(ss.to_dict())


@app.get("/api/scheduled-swaps/{scheduled_swap_id}/executions")
async def scheduled_swap_executions(scheduled_swap_id: int) -> list[dict[str, Any]]:
    return _records(await _run_in_executor(_manager().list_swap_executions, scheduled_swap_id))


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------


@app.get("/api/users/{user_id}/trades")
async def list_trades(user_id: int, status: list[str] | None = Query(default=None)) -> list[dict[str, Any]]:
    statuses = [TradeStatus(s) for s in status] if status else None
    return _records(await _run_in_executor(_get_repo().list_trades, user_id, statuses))


@app.post("/api/trades/sync")
async def sync_trades(payload: dict[str, Any]) -> dict[str, Any]:
    """Reconcile one user's trades (and balance) against the venue right now."""
    if payload.get("user_id") is None:
        raise HTTPException(status_code=400, detail="user_id is required")
    user_id = int(payload["user_id"])
    scope = str(payload.get("scope") or "all")
    sync = _get_context().reconciliation
    result = await _run_in_executor(sync.sync_user, user_id, scope, timeout_seconds=_WRITE_TIMEOUT)
    await _run_in_executor(sync.sync_balance, user_id, timeout_seconds=_WRITE_TIMEOUT)
    return {"user_id": user_id, "scope": scope, **result.to_dict()}


@app.post("/api/trades/{trade_id}/close")
async def close_trade(trade_id: int) -> dict[str, Any]:
    trade = await _run_in_executor(_get_context().orchestrator.close_trade, trade_id, timeout_seconds=_WRITE_TIMEOUT)
    return jsonable_encoder(trade.to_dict())


@app.post("/api/trades/{trade_id}/cancel")
async def cancel_trade(trade_id: int) -> dict[str, Any]:
    trade = await _run_in_executor(_get_context().orchestrator.cancel_trade, trade_id, timeout_seconds=_WRITE_TIMEOUT)
    return jsonable_encoder(trade.to_dict())


@app.put("/api/trades/{trade_id}/targets")
async def update_trade_targets(trade_id: int, payload: dict[str, Any]) -> dict[str, Any]:
    trade = await _run_in_executor(
        _get_context().orchestrator.update_trade_targets,
        trade_id,
        take_profit=payload.get("take_profit"),
        stop_loss=payload.get("stop_loss"),
        timeout_seconds=_WRITE_TIMEOUT,
    )
    return jsonable_encoder(trade.to_dict())


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------


@app.get("/api/market/ticker")
async def market_ticker() -> dict[str, Any]:
    ctx = _get_context()
    md = await _run_in_executor(ctx.repo.get_market_data, ctx.settings.symbol)
    if md is None:
        raise NotFoundError(f"No market data for {ctx.settings.symbol}")
    return jsonable_encoder(md.to_dict())


@app.post("/api/market/update")
async def market_update() -> dict[str, Any]:
    ctx = _get_context()
    md = await _run_in_executor(
        refresh_market_data, ctx.repo, ctx.venue_factory, ctx.settings.symbol, timeout_seconds=_WRITE_TIMEOUT
    )
    if md is None:
        raise HTTPException(status_code=503, detail="Ticker unavailable from the venue")
    return jsonable_encoder(md.to_dict())


# ---------------------------------------------------------------------------
# Manual ticks
# ---------------------------------------------------------------------------


@app.post("/api/scheduler/trigger-tick")
async def trigger_tick() -> dict[str, Any]:
    ctx = _get_context()
    report = await _run_in_executor(run_trigger_tick, ctx, timeout_seconds=ctx.settings.tick_timeout_seconds + 5)
    return report.to_dict()


@app.post("/api/scheduler/reconciliation-tick")
async def reconciliation_tick(scope: str | None = Query(default=None)) -> dict[str, Any]:
    if scope is not None and scope not in RECONCILIATION_SCOPES:
        raise ValueError(f"Unknown sync scope {scope!r}; expected one of {RECONCILIATION_SCOPES}")
    ctx = _get_context()
    report = await _run_in_executor(
        run_reconciliation_tick, ctx, scope, timeout_seconds=ctx.settings.tick_timeout_seconds + 5
    )
    return report.to_dict()
