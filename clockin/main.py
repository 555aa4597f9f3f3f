import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clockin.db import engine
from clockin.errors import ApiError, error_response
from clockin.logging_utils import setup_json_logging
from clockin.routers import admin, attendance
from clockin.services.scheduler import ScheduledJob, plan_next_jobs, run_due_jobs
from clockin.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from clockin.settings import get_settings

settings = get_settings()
setup_json_logging(settings.log_level, settings.app_name.lower())
logger = logging.getLogger("clockin.request")
scheduler_logger = logging.getLogger("clockin.scheduler")

app = FastAPI(title=settings.app_name, version="0.1.0")


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
                "record_id": getattr(request.state, "record_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(
        request,
        status_code=exc.status_code,
        code="HTTP_ERROR",
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(attendance.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


async def _scheduler_loop(stop_event: asyncio.Event) -> None:
    idle_seconds = max(15, int(settings.scheduler_idle_seconds))
    pending: list[ScheduledJob] = []
    while not stop_event.is_set():
        timeout = float(idle_seconds)
        try:
            now_utc = datetime.now(timezone.utc)
            if pending and now_utc >= pending[0].fire_at:
                due, pending = pending, []
                await asyncio.to_thread(run_due_jobs, due)
                timeout = 0.0
            else:
                pending = await asyncio.to_thread(plan_next_jobs, now_utc)
                if pending:
                    timeout = max(0.0, min(timeout, (pending[0].fire_at - now_utc).total_seconds()))
        except Exception:
            pending = []
            scheduler_logger.exception("scheduler_tick_failed")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        scheduler_logger.info(
            "schema_guard_ok",
            extra=result.to_dict(),
        )
        return

    scheduler_logger.error(
        "schema_guard_failed",
        extra=result.to_dict(),
    )
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_scheduler() -> None:
    if not settings.scheduler_enabled:
        return
    if getattr(app.state, "scheduler_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_scheduler_loop(stop_event))
    app.state.scheduler_stop_event = stop_event
    app.state.scheduler_task = task
    scheduler_logger.info(
        "scheduler_started",
        extra={"idle_seconds": max(15, int(settings.scheduler_idle_seconds))},
    )


@app.on_event("shutdown")
async def stop_scheduler() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "scheduler_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "scheduler_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.scheduler_stop_event = None
    app.state.scheduler_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "scheduler_running": getattr(app.state, "scheduler_task", None) is not None,
    }
