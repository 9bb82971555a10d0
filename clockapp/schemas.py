from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from clockapp.models import ClockAction
from clockapp.timeutils import from_epoch_ms


class ClockCaptureRequest(BaseModel):
    pin: str = Field(min_length=1, max_length=32)
    photo_base64: str | None = Field(default=None, max_length=20_000_000)


class ClockCaptureResponse(BaseModel):
    event_id: int
    employee_id: str
    employee_name: str
    action: ClockAction
    captured_at_utc: datetime
    has_photo: bool
    sync_requested: bool


class PendingEventRead(BaseModel):
    id: int
    employee_id: str
    action: ClockAction
    captured_at_ms: int
    local_photo_path: str | None
    synced: bool
    attempt_count: int
    last_error: str | None

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def captured_at_utc(self) -> datetime:
        return from_epoch_ms(self.captured_at_ms)


class EventSyncOutcomeRead(BaseModel):
    event_id: int
    employee_id: str
    status: str
    photo_url: str | None = None
    error: str | None = None


class SyncRunRead(BaseModel):
    started_at_utc: datetime
    finished_at_utc: datetime | None
    attempted_count: int
    synced_count: int
    failed_count: int
    outcomes: list[EventSyncOutcomeRead]


class CleanupResponse(BaseModel):
    purged_count: int


class HealthResponse(BaseModel):
    status: str
    kiosk_id: str
    pending: dict[str, Any]
    sync_worker: dict[str, Any] | None
    schema_guard: dict[str, Any]
