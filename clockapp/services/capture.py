from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from clockapp.errors import ActionResolutionError, ApiError, PhotoStagingError, RemoteStoreError
from clockapp.models import ClockAction
from clockapp.services.action_resolver import ActionResolver
from clockapp.services.media import MediaStager
from clockapp.services.pending_events import PendingEventStore
from clockapp.services.remote_store import DocumentStore, EmployeeProfile
from clockapp.timeutils import normalize_utc, to_epoch_ms

logger = logging.getLogger("clockapp.capture")

PIN_PATTERN = re.compile(r"^\d{6}$")


@dataclass(frozen=True, slots=True)
class CaptureResult:
    event_id: int
    employee_id: str
    employee_name: str
    action: ClockAction
    captured_at_utc: datetime
    has_photo: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "employee_id": self.employee_id,
            "employee_name": self.employee_name,
            "action": self.action.value,
            "captured_at_utc": self.captured_at_utc.isoformat(),
            "has_photo": self.has_photo,
        }


class CaptureService:
    """PIN entry to durable pending event.

    Nothing is written locally unless the employee lookup and the next-action
    lookup both succeed against the remote store.
    """

    def __init__(
        self,
        *,
        document_store: DocumentStore,
        resolver: ActionResolver,
        store: PendingEventStore,
        stager: MediaStager,
        photo_required: bool = False,
    ) -> None:
        self._document_store = document_store
        self._resolver = resolver
        self._store = store
        self._stager = stager
        self._photo_required = photo_required

    def capture(
        self,
        *,
        pin: str,
        photo_bytes: bytes | None = None,
        now_utc: datetime | None = None,
    ) -> CaptureResult:
        normalized_pin = (pin or "").strip()
        if not PIN_PATTERN.match(normalized_pin):
            raise ApiError(status_code=422, code="INVALID_PIN_FORMAT", message="Enter 6-digit PIN.")

        employee = self._lookup_employee(normalized_pin)

        if self._photo_required and not photo_bytes:
            raise ApiError(status_code=422, code="PHOTO_REQUIRED", message="A photo is required to clock in or out.")

        captured_at = normalize_utc(now_utc)
        try:
            action = self._resolver.resolve(employee.employee_id, now_utc=captured_at)
        except ActionResolutionError as exc:
            raise ApiError(
                status_code=503,
                code="ACTION_RESOLUTION_FAILED",
                message="Could not read the last clock action. Check the connection and try again.",
            ) from exc

        staged_path = None
        if photo_bytes:
            try:
                staged_path = self._stager.stage(
                    employee_id=employee.employee_id,
                    captured_at_ms=to_epoch_ms(captured_at),
                    image_bytes=photo_bytes,
                )
            except PhotoStagingError as exc:
                raise ApiError(status_code=422, code="INVALID_PHOTO", message=str(exc)) from exc

        try:
            event = self._store.insert(
                employee_id=employee.employee_id,
                action=action,
                captured_at=captured_at,
                local_photo_path=str(staged_path) if staged_path is not None else None,
            )
        except Exception as exc:
            logger.exception("capture_insert_failed", extra={"employee_id": employee.employee_id})
            self._stager.discard(staged_path)
            raise ApiError(
                status_code=500,
                code="LOCAL_STORE_FAILED",
                message="Clock event could not be saved on this device.",
            ) from exc

        logger.info(
            "capture_recorded",
            extra={
                "event_id": event.id,
                "employee_id": employee.employee_id,
                "action": action.value,
                "has_photo": staged_path is not None,
            },
        )
        return CaptureResult(
            event_id=event.id,
            employee_id=employee.employee_id,
            employee_name=employee.display_name,
            action=action,
            captured_at_utc=captured_at,
            has_photo=staged_path is not None,
        )

    def _lookup_employee(self, pin: str) -> EmployeeProfile:
        try:
            employee = self._document_store.find_employee_by_pin(pin)
        except RemoteStoreError as exc:
            logger.warning("capture_employee_lookup_failed", extra={"error": str(exc)})
            raise ApiError(
                status_code=503,
                code="REMOTE_UNAVAILABLE",
                message="Employee lookup failed. Check the connection and try again.",
            ) from exc

        if employee is None:
            raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Invalid PIN.")
        if not employee.employed_status:
            raise ApiError(status_code=403, code="EMPLOYEE_INACTIVE", message="Inactive employee.")
        return employee
