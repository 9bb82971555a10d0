from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch
from zoneinfo import ZoneInfo

from sqlalchemy.exc import OperationalError

from clockapp.db import create_db_engine, create_session_factory
from clockapp.errors import ApiError, RemoteStoreError
from clockapp.models import ClockAction
from clockapp.services.action_resolver import ActionResolver
from clockapp.services.capture import CaptureService
from clockapp.services.media import MediaStager
from clockapp.services.pending_events import PendingEventStore
from clockapp.services.remote_store import EmployeeProfile, LoggedAction

MANILA = ZoneInfo("Asia/Manila")
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 16


class _FakeRemote:
    def __init__(self) -> None:
        self.employees: dict[str, EmployeeProfile] = {
            "123456": EmployeeProfile(
                employee_id="E1",
                first_name="Ana",
                last_name="Reyes",
                store="StoreA",
                employed_status=True,
            ),
            "654321": EmployeeProfile(
                employee_id="E9",
                first_name="Former",
                last_name="Staff",
                store="StoreA",
                employed_status=False,
            ),
        }
        self.last_actions: dict[str, LoggedAction] = {}
        self.lookup_fails = False
        self.history_fails = False

    def find_employee_by_pin(self, pin: str) -> EmployeeProfile | None:
        if self.lookup_fails:
            raise RemoteStoreError("offline")
        return self.employees.get(pin)

    def latest_action(self, employee_id: str, *, since_utc: datetime) -> LoggedAction | None:
        if self.history_fails:
            raise RemoteStoreError("offline")
        return self.last_actions.get(employee_id)


class CaptureServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        tmp_path = Path(self._tmp.name)
        engine = create_db_engine(f"sqlite:///{tmp_path / 'kiosk.db'}")
        self.store = PendingEventStore(engine, create_session_factory(engine))
        self.store.create_schema()
        self.media_root = tmp_path / "pending"
        self.remote = _FakeRemote()
        self.now = datetime(2026, 10, 19, 1, 0, tzinfo=timezone.utc)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _service(self, *, photo_required: bool = False) -> CaptureService:
        return CaptureService(
            document_store=self.remote,
            resolver=ActionResolver(self.remote, tz=MANILA),
            store=self.store,
            stager=MediaStager(self.media_root),
            photo_required=photo_required,
        )

    def _staged_files(self) -> list[Path]:
        if not self.media_root.exists():
            return []
        return list(self.media_root.iterdir())

    def test_first_capture_is_clock_in(self) -> None:
        result = self._service().capture(pin="123456", now_utc=self.now)

        self.assertEqual(result.action, ClockAction.CLOCK_IN)
        self.assertEqual(result.employee_id, "E1")
        self.assertEqual(result.employee_name, "Ana Reyes")
        self.assertFalse(result.has_photo)
        pending = self.store.list_unsynced()
        self.assertEqual(len(pending), 1)
        self.assertEqual(pending[0].id, result.event_id)
        self.assertEqual(pending[0].action, ClockAction.CLOCK_IN)
        self.assertFalse(pending[0].synced)

    def test_open_clock_in_resolves_clock_out(self) -> None:
        self.remote.last_actions["E1"] = LoggedAction(
            record_id=1,
            employee_id="E1",
            action=ClockAction.CLOCK_IN,
            timestamp_utc=self.now - timedelta(hours=8),
        )

        result = self._service().capture(pin="123456", now_utc=self.now)

        self.assertEqual(result.action, ClockAction.CLOCK_OUT)

    def test_photo_is_staged_before_insert(self) -> None:
        result = self._service(photo_required=True).capture(pin="123456", photo_bytes=JPEG_BYTES, now_utc=self.now)

        self.assertTrue(result.has_photo)
        pending = self.store.get(result.event_id)
        assert pending is not None and pending.local_photo_path is not None
        self.assertEqual(Path(pending.local_photo_path).read_bytes(), JPEG_BYTES)

    def test_rejections_leave_no_local_state(self) -> None:
        cases = [
            ("12345", None, False, "INVALID_PIN_FORMAT", 422),
            ("12a456", None, False, "INVALID_PIN_FORMAT", 422),
            ("000000", None, False, "EMPLOYEE_NOT_FOUND", 404),
            ("654321", None, False, "EMPLOYEE_INACTIVE", 403),
            ("123456", None, True, "PHOTO_REQUIRED", 422),
            ("123456", b"not-an-image", False, "INVALID_PHOTO", 422),
        ]
        for pin, photo, photo_required, code, status_code in cases:
            with self.subTest(code=code, pin=pin):
                with self.assertRaises(ApiError) as exc:
                    self._service(photo_required=photo_required).capture(
                        pin=pin,
                        photo_bytes=photo,
                        now_utc=self.now,
                    )
                self.assertEqual(exc.exception.code, code)
                self.assertEqual(exc.exception.status_code, status_code)

        self.assertEqual(self.store.list_unsynced(), [])
        self.assertEqual(self._staged_files(), [])

    def test_employee_lookup_failure_is_surfaced(self) -> None:
        self.remote.lookup_fails = True

        with self.assertRaises(ApiError) as exc:
            self._service().capture(pin="123456", now_utc=self.now)

        self.assertEqual(exc.exception.code, "REMOTE_UNAVAILABLE")
        self.assertEqual(self.store.list_unsynced(), [])

    def test_history_failure_aborts_capture_without_guessing(self) -> None:
        self.remote.history_fails = True

        with self.assertRaises(ApiError) as exc:
            self._service().capture(pin="123456", photo_bytes=JPEG_BYTES, now_utc=self.now)

        self.assertEqual(exc.exception.code, "ACTION_RESOLUTION_FAILED")
        self.assertEqual(exc.exception.status_code, 503)
        self.assertEqual(self.store.list_unsynced(), [])
        self.assertEqual(self._staged_files(), [])

    def test_local_history_failure_maps_to_resolution_error(self) -> None:
        service = CaptureService(
            document_store=self.remote,
            resolver=ActionResolver(self.remote, tz=MANILA, pending_store=self.store),
            store=self.store,
            stager=MediaStager(self.media_root),
        )

        with patch.object(
            self.store,
            "list_unsynced_for_employee",
            side_effect=OperationalError("SELECT", {}, Exception("database is locked")),
        ):
            with self.assertRaises(ApiError) as exc:
                service.capture(pin="123456", photo_bytes=JPEG_BYTES, now_utc=self.now)

        self.assertEqual(exc.exception.code, "ACTION_RESOLUTION_FAILED")
        self.assertEqual(self.store.list_unsynced(), [])
        self.assertEqual(self._staged_files(), [])

    def test_insert_failure_discards_staged_photo(self) -> None:
        with patch.object(self.store, "insert", side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
            with self.assertRaises(ApiError) as exc:
                self._service().capture(pin="123456", photo_bytes=JPEG_BYTES, now_utc=self.now)

        self.assertEqual(exc.exception.code, "LOCAL_STORE_FAILED")
        self.assertEqual(self._staged_files(), [])


if __name__ == "__main__":
    unittest.main()
