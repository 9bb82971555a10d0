import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clockapp.context import KioskContext, build_kiosk_context
from clockapp.errors import ApiError, error_response
from clockapp.logging_utils import setup_json_logging
from clockapp.routers import kiosk
from clockapp.routers.kiosk import get_kiosk_context
from clockapp.schemas import HealthResponse
from clockapp.services.schema_guard import SchemaGuardResult, verify_local_schema, verify_runtime_schema
from clockapp.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level, static_fields={"kiosk_id": settings.kiosk_id})
logger = logging.getLogger("clockapp.request")
startup_logger = logging.getLogger("clockapp.startup")


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
                "employee_id": getattr(request.state, "employee_id", None),
                "event_id": getattr(request.state, "event_id", None),
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


app.include_router(kiosk.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def _run_schema_guards(context: KioskContext) -> dict[str, SchemaGuardResult]:
    results: dict[str, SchemaGuardResult] = {}
    if context.local_engine is not None:
        results["local"] = verify_local_schema(context.local_engine)
    if context.remote_engine is not None:
        results["remote"] = verify_runtime_schema(context.remote_engine)
    return results


@app.on_event("startup")
async def start_kiosk() -> None:
    if getattr(app.state, "kiosk_context", None) is not None:
        return

    context = await asyncio.to_thread(build_kiosk_context, settings)
    await asyncio.to_thread(context.pending_store.create_schema)
    app.state.kiosk_context = context

    guard_results = await asyncio.to_thread(_run_schema_guards, context)
    app.state.schema_guard_results = guard_results
    failed = {name: result for name, result in guard_results.items() if not result.ok}
    for name, result in guard_results.items():
        startup_logger.info(
            "schema_guard_ok" if result.ok else "schema_guard_failed",
            extra={"database": name, **result.to_dict()},
        )
    if failed and settings.schema_guard_strict:
        joined_issues = "; ".join(f"{name}:{issue}" for name, result in failed.items() for issue in result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")

    if context.sync_trigger is not None:
        await context.sync_trigger.start()


@app.on_event("shutdown")
async def stop_kiosk() -> None:
    context: KioskContext | None = getattr(app.state, "kiosk_context", None)
    if context is None:
        return
    if context.sync_trigger is not None:
        await context.sync_trigger.stop()
    await asyncio.to_thread(context.dispose)
    app.state.kiosk_context = None


@app.get("/health", response_model=HealthResponse)
async def health(context: KioskContext = Depends(get_kiosk_context)) -> dict[str, Any]:
    guard_results: dict[str, SchemaGuardResult] = getattr(app.state, "schema_guard_results", None) or {
        "local": _default_schema_guard_result()
    }
    stats = await asyncio.to_thread(context.pending_store.stats)
    return {
        "status": "ok",
        "kiosk_id": context.settings.kiosk_id,
        "pending": stats.to_dict(),
        "sync_worker": context.sync_trigger.status() if context.sync_trigger is not None else None,
        "schema_guard": {name: result.to_dict() for name, result in guard_results.items()},
    }
