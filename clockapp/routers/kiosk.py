import asyncio
import base64
import binascii

from fastapi import APIRouter, Depends, Request

from clockapp.context import KioskContext
from clockapp.errors import ApiError, SyncRunError
from clockapp.schemas import (
    CleanupResponse,
    ClockCaptureRequest,
    ClockCaptureResponse,
    PendingEventRead,
    SyncRunRead,
)
from clockapp.services.sync_trigger import REASON_CAPTURE, REASON_MANUAL
from clockapp.services.synchronizer import SyncRunResult

router = APIRouter(prefix="/api/kiosk", tags=["kiosk"])


def get_kiosk_context(request: Request) -> KioskContext:
    context = getattr(request.app.state, "kiosk_context", None)
    if context is None:
        raise ApiError(status_code=503, code="KIOSK_NOT_READY", message="Kiosk is still starting.")
    return context


def _decode_photo(photo_base64: str | None) -> bytes | None:
    if not photo_base64:
        return None
    raw = photo_base64.strip()
    # Accept data URLs straight from a browser canvas.
    if raw.startswith("data:") and "," in raw:
        raw = raw.split(",", 1)[1]
    # Some clients wrap base64 at 76 columns.
    raw = "".join(raw.split())
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ApiError(status_code=422, code="INVALID_PHOTO", message="Photo is not valid base64.") from exc


def _sync_run_read(result: SyncRunResult) -> SyncRunRead:
    return SyncRunRead.model_validate(result.to_dict())


@router.post("/clock", response_model=ClockCaptureResponse)
async def clock(
    payload: ClockCaptureRequest,
    request: Request,
    context: KioskContext = Depends(get_kiosk_context),
) -> ClockCaptureResponse:
    photo_bytes = _decode_photo(payload.photo_base64)
    result = await asyncio.to_thread(
        context.capture_service.capture,
        pin=payload.pin,
        photo_bytes=photo_bytes,
    )
    request.state.employee_id = result.employee_id
    request.state.event_id = result.event_id

    sync_requested = False
    if context.sync_trigger is not None:
        sync_requested = context.sync_trigger.request(REASON_CAPTURE)

    return ClockCaptureResponse(
        event_id=result.event_id,
        employee_id=result.employee_id,
        employee_name=result.employee_name,
        action=result.action,
        captured_at_utc=result.captured_at_utc,
        has_photo=result.has_photo,
        sync_requested=sync_requested,
    )


@router.post("/sync", response_model=SyncRunRead)
async def sync_now(context: KioskContext = Depends(get_kiosk_context)) -> SyncRunRead:
    try:
        if context.sync_trigger is not None and context.sync_trigger.is_started:
            result = await context.sync_trigger.run_now(REASON_MANUAL)
        else:
            result = await asyncio.to_thread(context.synchronizer.run)
    except SyncRunError as exc:
        raise ApiError(status_code=503, code="SYNC_RUN_FAILED", message=str(exc) or "Sync run failed.") from exc
    return _sync_run_read(result)


@router.get("/pending", response_model=list[PendingEventRead])
async def list_pending(context: KioskContext = Depends(get_kiosk_context)) -> list[PendingEventRead]:
    events = await asyncio.to_thread(context.pending_store.list_unsynced)
    return [PendingEventRead.model_validate(item) for item in events]


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(context: KioskContext = Depends(get_kiosk_context)) -> CleanupResponse:
    purged_count = await asyncio.to_thread(context.pending_store.purge_synced)
    return CleanupResponse(purged_count=purged_count)
