from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from clockapp.errors import SyncRunError
from clockapp.models import ClockAction, PendingEvent
from clockapp.services.blob_sink import BlobSink
from clockapp.services.media import MediaStager, build_photo_key, content_type_for
from clockapp.services.pending_events import PendingEventStore
from clockapp.services.remote_store import DocumentStore, RemoteEventRecord
from clockapp.timeutils import from_epoch_ms

logger = logging.getLogger("clockapp.sync")

STATUS_SYNCED = "synced"
STATUS_SYNCED_WITHOUT_PHOTO = "synced_without_photo"
STATUS_PHOTO_UPLOAD_FAILED = "photo_upload_failed"
STATUS_RECORD_WRITE_FAILED = "record_write_failed"
STATUS_MARK_FAILED = "mark_failed"
STATUS_UNEXPECTED_ERROR = "unexpected_error"
SUCCESS_STATUSES = {STATUS_SYNCED, STATUS_SYNCED_WITHOUT_PHOTO}


@dataclass(frozen=True, slots=True)
class UploadedPhoto:
    key: str
    url: str


@dataclass(frozen=True, slots=True)
class EventSyncOutcome:
    event_id: int
    employee_id: str
    status: str
    photo_url: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in SUCCESS_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "employee_id": self.employee_id,
            "status": self.status,
            "photo_url": self.photo_url,
            "error": self.error,
        }


@dataclass(slots=True)
class SyncRunResult:
    started_at_utc: datetime
    finished_at_utc: datetime | None = None
    outcomes: list[EventSyncOutcome] = field(default_factory=list)

    @property
    def synced_count(self) -> int:
        return sum(1 for item in self.outcomes if item.ok)

    @property
    def failed_count(self) -> int:
        return sum(1 for item in self.outcomes if not item.ok)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at_utc": self.started_at_utc.isoformat(),
            "finished_at_utc": self.finished_at_utc.isoformat() if self.finished_at_utc else None,
            "attempted_count": len(self.outcomes),
            "synced_count": self.synced_count,
            "failed_count": self.failed_count,
            "outcomes": [item.to_dict() for item in self.outcomes],
        }


def build_remote_record(
    event: PendingEvent,
    *,
    photo: UploadedPhoto | None,
    timestamp_mode: str,
    kiosk_id: str | None,
) -> RemoteEventRecord:
    captured_at_utc = from_epoch_ms(event.captured_at_ms)
    photo_fields: dict[str, str | None] = {}
    if photo is not None:
        if event.action is ClockAction.CLOCK_IN:
            photo_fields = {"photo_reference_in": photo.url, "photo_path_in": photo.key}
        else:
            photo_fields = {"photo_reference_out": photo.url, "photo_path_out": photo.key}

    return RemoteEventRecord(
        employee_id=event.employee_id,
        action=event.action,
        captured_at_utc=captured_at_utc,
        timestamp_utc=captured_at_utc if timestamp_mode == "device" else None,
        kiosk_id=kiosk_id,
        source_event_key=event.event_key,
        **photo_fields,
    )


class Synchronizer:
    """Drains the pending event store into the remote blob sink and document store.

    Per event: upload the staged photo (if any), append the remote record, then
    mark the local row synced. Each step commits before the next one starts, so
    an interrupted run leaves every event in its last durable state. A failing
    event never stops its siblings; only a failure to list pending events fails
    the run.
    """

    def __init__(
        self,
        *,
        store: PendingEventStore,
        document_store: DocumentStore,
        blob_sink: BlobSink,
        tz: ZoneInfo,
        timestamp_mode: str = "device",
        kiosk_id: str | None = None,
        delete_local_photo: bool = True,
    ) -> None:
        self._store = store
        self._document_store = document_store
        self._blob_sink = blob_sink
        self._tz = tz
        self._timestamp_mode = timestamp_mode
        self._kiosk_id = kiosk_id
        self._delete_local_photo = delete_local_photo

    def run(self) -> SyncRunResult:
        result = SyncRunResult(started_at_utc=datetime.now(timezone.utc))
        try:
            pending_events = self._store.list_unsynced()
        except Exception as exc:
            logger.exception("sync_list_pending_failed")
            raise SyncRunError(f"listing pending events failed: {exc.__class__.__name__}") from exc

        pending_events.sort(key=lambda item: (item.captured_at_ms, item.id))
        for event in pending_events:
            try:
                outcome = self.sync_event(event)
            except Exception as exc:
                logger.exception(
                    "sync_event_unexpected_error",
                    extra={"event_id": event.id, "employee_id": event.employee_id},
                )
                outcome = self._failed(event, STATUS_UNEXPECTED_ERROR, exc)
            result.outcomes.append(outcome)

        result.finished_at_utc = datetime.now(timezone.utc)
        logger.info(
            "sync_run_complete",
            extra={
                "attempted_count": len(result.outcomes),
                "synced_count": result.synced_count,
                "failed_count": result.failed_count,
            },
        )
        return result

    def sync_event(self, event: PendingEvent) -> EventSyncOutcome:
        log_fields = {"event_id": event.id, "employee_id": event.employee_id, "action": event.action.value}
        photo: UploadedPhoto | None = None
        photo_missing = False

        if event.local_photo_path:
            photo_path = Path(event.local_photo_path)
            if not _is_readable_file(photo_path):
                photo_missing = True
                logger.warning("sync_photo_missing", extra={**log_fields, "path": event.local_photo_path})
            else:
                key = build_photo_key(
                    employee_id=event.employee_id,
                    captured_at_ms=event.captured_at_ms,
                    tz=self._tz,
                    local_photo_path=event.local_photo_path,
                )
                try:
                    url = self._blob_sink.upload(key, photo_path, content_type=content_type_for(photo_path))
                except Exception as exc:
                    logger.warning("sync_photo_upload_failed", extra={**log_fields, "key": key}, exc_info=True)
                    return self._failed(event, STATUS_PHOTO_UPLOAD_FAILED, exc)
                photo = UploadedPhoto(key=key, url=url)

        record = build_remote_record(
            event,
            photo=photo,
            timestamp_mode=self._timestamp_mode,
            kiosk_id=self._kiosk_id,
        )
        try:
            record_id = self._document_store.add_record(record)
        except Exception as exc:
            logger.warning("sync_record_write_failed", extra=log_fields, exc_info=True)
            return self._failed(event, STATUS_RECORD_WRITE_FAILED, exc, photo=photo)

        try:
            self._store.mark_synced(event.id)
        except Exception as exc:
            # The remote record exists; the retry is absorbed by the source event key.
            logger.warning("sync_mark_synced_failed", extra={**log_fields, "record_id": record_id}, exc_info=True)
            return EventSyncOutcome(
                event_id=event.id,
                employee_id=event.employee_id,
                status=STATUS_MARK_FAILED,
                photo_url=photo.url if photo else None,
                error=_describe(exc),
            )

        if photo is not None and self._delete_local_photo:
            self._discard_local_photo(event, log_fields)

        status = STATUS_SYNCED_WITHOUT_PHOTO if photo_missing else STATUS_SYNCED
        logger.info("sync_event_synced", extra={**log_fields, "record_id": record_id, "status": status})
        return EventSyncOutcome(
            event_id=event.id,
            employee_id=event.employee_id,
            status=status,
            photo_url=photo.url if photo else None,
        )

    def _failed(
        self,
        event: PendingEvent,
        status: str,
        exc: Exception,
        *,
        photo: UploadedPhoto | None = None,
    ) -> EventSyncOutcome:
        error = _describe(exc)
        try:
            self._store.record_failure(event.id, f"{status}: {error}")
        except Exception:
            logger.warning("sync_record_failure_failed", extra={"event_id": event.id}, exc_info=True)
        return EventSyncOutcome(
            event_id=event.id,
            employee_id=event.employee_id,
            status=status,
            photo_url=photo.url if photo else None,
            error=error,
        )

    @staticmethod
    def _discard_local_photo(event: PendingEvent, log_fields: dict[str, Any]) -> None:
        try:
            MediaStager.discard(event.local_photo_path)
        except OSError:
            logger.warning("sync_local_photo_delete_failed", extra=log_fields, exc_info=True)


def _is_readable_file(path: Path) -> bool:
    # An unusable path (too long, no permission) is treated the same as a missing file.
    try:
        return path.is_file()
    except OSError:
        logger.warning("sync_photo_path_unusable", extra={"path": str(path)}, exc_info=True)
        return False


def _describe(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return f"{exc.__class__.__name__}: {message}"
    return exc.__class__.__name__
