import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hrms.errors import ApiError, error_response
from hrms.logging_utils import setup_json_logging
from hrms.routers import attendance, employees, requests
from hrms.services.scheduler import run_reconciliation_cycle
from hrms.settings import get_cors_origins, get_settings

setup_json_logging()
logger = logging.getLogger("hrms.request")
worker_logger = logging.getLogger("hrms.reconciliation_worker")
settings = get_settings()

MIN_WORKER_INTERVAL_SECONDS = 60

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "anonymous")
    request.state.actor_id = getattr(request.state, "actor_id", None)

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
                "actor": getattr(request.state, "actor", "anonymous"),
                "actor_id": getattr(request.state, "actor_id", None),
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
    status_code = exc.status_code
    code_map = {
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
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


app.include_router(requests.router)
app.include_router(attendance.router)
app.include_router(employees.router)


async def _reconciliation_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(MIN_WORKER_INTERVAL_SECONDS, int(settings.reconciliation_worker_interval_seconds))
    ingestion_interval_seconds = max(interval_seconds, int(settings.ingestion_worker_interval_seconds))
    last_ingestion: float | None = None
    while not stop_event.is_set():
        now_utc = datetime.now(timezone.utc)
        include_punches = last_ingestion is None or time.monotonic() - last_ingestion >= ingestion_interval_seconds
        try:
            report = await asyncio.to_thread(
                run_reconciliation_cycle,
                now_utc,
                include_punches=include_punches,
            )
        except Exception:
            worker_logger.exception("reconciliation_worker_tick_failed")
        else:
            if include_punches:
                last_ingestion = time.monotonic()
            if report.failed_steps:
                worker_logger.error(
                    "reconciliation_worker_tick_degraded",
                    extra={"failed_steps": report.failed_steps},
                )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def start_reconciliation_worker() -> None:
    if not settings.reconciliation_worker_enabled:
        return
    if getattr(app.state, "reconciliation_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_reconciliation_worker_loop(stop_event))
    app.state.reconciliation_worker_stop_event = stop_event
    app.state.reconciliation_worker_task = task
    worker_logger.info(
        "reconciliation_worker_started",
        extra={
            "interval_seconds": max(MIN_WORKER_INTERVAL_SECONDS, int(settings.reconciliation_worker_interval_seconds)),
            "ingestion_interval_seconds": int(settings.ingestion_worker_interval_seconds),
        },
    )


@app.on_event("shutdown")
async def stop_reconciliation_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "reconciliation_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "reconciliation_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.reconciliation_worker_stop_event = None
    app.state.reconciliation_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    task = getattr(app.state, "reconciliation_worker_task", None)
    return {
        "status": "ok",
        "reconciliation_worker": {
            "enabled": settings.reconciliation_worker_enabled,
            "running": task is not None and not task.done(),
        },
    }
