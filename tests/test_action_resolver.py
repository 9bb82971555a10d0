from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch
from zoneinfo import ZoneInfo

from sqlalchemy.exc import OperationalError

from clockapp.db import create_db_engine, create_session_factory
from clockapp.errors import ActionResolutionError, RemoteStoreError
from clockapp.models import ClockAction
from clockapp.services.action_resolver import ActionResolver, next_action_after
from clockapp.services.pending_events import PendingEventStore
from clockapp.services.remote_store import LoggedAction
from clockapp.timeutils import lookback_start_utc

MANILA = ZoneInfo("Asia/Manila")


class _HistoryStore:
    def __init__(self, history: list[tuple[ClockAction, datetime]] | None = None, *, fail: bool = False):
        self._history = history or []
        self._fail = fail
        self.queries: list[tuple[str, datetime]] = []

    def latest_action(self, employee_id: str, *, since_utc: datetime) -> LoggedAction | None:
        self.queries.append((employee_id, since_utc))
        if self._fail:
            raise RemoteStoreError("network unreachable")
        in_window = [item for item in self._history if item[1] >= since_utc]
        if not in_window:
            return None
        action, ts = max(in_window, key=lambda item: item[1])
        return LoggedAction(record_id=1, employee_id=employee_id, action=action, timestamp_utc=ts)


class ActionResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.now = datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc)

    def test_no_history_resolves_clock_in(self) -> None:
        resolver = ActionResolver(_HistoryStore(), tz=MANILA)
        self.assertEqual(resolver.resolve("E1", now_utc=self.now), ClockAction.CLOCK_IN)

    def test_open_clock_in_resolves_clock_out(self) -> None:
        store = _HistoryStore([(ClockAction.CLOCK_IN, self.now - timedelta(hours=3))])
        resolver = ActionResolver(store, tz=MANILA)
        self.assertEqual(resolver.resolve("E1", now_utc=self.now), ClockAction.CLOCK_OUT)

    def test_most_recent_record_wins(self) -> None:
        store = _HistoryStore(
            [
                (ClockAction.CLOCK_OUT, self.now - timedelta(hours=5)),
                (ClockAction.CLOCK_IN, self.now - timedelta(hours=1)),
            ]
        )
        resolver = ActionResolver(store, tz=MANILA)
        self.assertEqual(resolver.resolve("E1", now_utc=self.now), ClockAction.CLOCK_OUT)

    def test_closed_cycle_resolves_clock_in(self) -> None:
        store = _HistoryStore(
            [
                (ClockAction.CLOCK_IN, self.now - timedelta(hours=9)),
                (ClockAction.CLOCK_OUT, self.now - timedelta(hours=1)),
            ]
        )
        resolver = ActionResolver(store, tz=MANILA)
        self.assertEqual(resolver.resolve("E1", now_utc=self.now), ClockAction.CLOCK_IN)

    def test_clock_in_outside_window_is_ignored(self) -> None:
        store = _HistoryStore([(ClockAction.CLOCK_IN, self.now - timedelta(days=3))])
        resolver = ActionResolver(store, tz=MANILA)
        self.assertEqual(resolver.resolve("E1", now_utc=self.now), ClockAction.CLOCK_IN)

    def test_window_covers_today_and_yesterday_in_local_time(self) -> None:
        store = _HistoryStore()
        resolver = ActionResolver(store, tz=MANILA, lookback_days=2)

        resolver.resolve("E1", now_utc=self.now)

        # 2026-10-19 11:00 in Manila -> window opens 2026-10-18 00:00 Manila.
        self.assertEqual(store.queries, [("E1", datetime(2026, 10, 17, 16, 0, tzinfo=timezone.utc))])

    def test_remote_failure_aborts_resolution(self) -> None:
        resolver = ActionResolver(_HistoryStore(fail=True), tz=MANILA)
        with self.assertRaises(ActionResolutionError):
            resolver.resolve("E1", now_utc=self.now)

    def test_next_action_after_alternates(self) -> None:
        self.assertEqual(next_action_after(None), ClockAction.CLOCK_IN)
        self.assertEqual(next_action_after(ClockAction.CLOCK_OUT), ClockAction.CLOCK_IN)
        self.assertEqual(next_action_after(ClockAction.CLOCK_IN), ClockAction.CLOCK_OUT)

    def test_lookback_start_single_day_is_local_midnight(self) -> None:
        start = lookback_start_utc(self.now, MANILA, 1)
        self.assertEqual(start, datetime(2026, 10, 18, 16, 0, tzinfo=timezone.utc))


class ActionResolverPendingHistoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        engine = create_db_engine(f"sqlite:///{Path(self._tmp.name) / 'kiosk.db'}")
        self.pending_store = PendingEventStore(engine, create_session_factory(engine))
        self.pending_store.create_schema()
        self.now = datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_unsynced_local_clock_in_counts_when_enabled(self) -> None:
        self.pending_store.insert(
            employee_id="E1",
            action=ClockAction.CLOCK_IN,
            captured_at=self.now - timedelta(minutes=2),
        )
        resolver = ActionResolver(_HistoryStore(), tz=MANILA, pending_store=self.pending_store)

        self.assertEqual(resolver.resolve("E1", now_utc=self.now), ClockAction.CLOCK_OUT)

    def test_unsynced_local_events_ignored_by_default(self) -> None:
        self.pending_store.insert(
            employee_id="E1",
            action=ClockAction.CLOCK_IN,
            captured_at=self.now - timedelta(minutes=2),
        )
        resolver = ActionResolver(_HistoryStore(), tz=MANILA)

        self.assertEqual(resolver.resolve("E1", now_utc=self.now), ClockAction.CLOCK_IN)

    def test_newer_remote_record_beats_older_local_event(self) -> None:
        self.pending_store.insert(
            employee_id="E1",
            action=ClockAction.CLOCK_IN,
            captured_at=self.now - timedelta(hours=4),
        )
        store = _HistoryStore([(ClockAction.CLOCK_OUT, self.now - timedelta(hours=1))])
        resolver = ActionResolver(store, tz=MANILA, pending_store=self.pending_store)

        self.assertEqual(resolver.resolve("E1", now_utc=self.now), ClockAction.CLOCK_IN)

    def test_local_store_failure_aborts_resolution(self) -> None:
        resolver = ActionResolver(_HistoryStore(), tz=MANILA, pending_store=self.pending_store)

        with patch.object(
            self.pending_store,
            "list_unsynced_for_employee",
            side_effect=OperationalError("SELECT", {}, Exception("database is locked")),
        ):
            with self.assertRaises(ActionResolutionError):
                resolver.resolve("E1", now_utc=self.now)


if __name__ == "__main__":
    unittest.main()
