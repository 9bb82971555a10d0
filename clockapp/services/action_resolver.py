from __future__ import annotations

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from clockapp.errors import ActionResolutionError, RemoteStoreError
from clockapp.models import ClockAction
from clockapp.services.pending_events import PendingEventStore
from clockapp.services.remote_store import DocumentStore
from clockapp.timeutils import lookback_start_utc, normalize_utc, to_epoch_ms

logger = logging.getLogger("clockapp.action_resolver")

DEFAULT_LOOKBACK_DAYS = 2


def next_action_after(last_action: ClockAction | None) -> ClockAction:
    if last_action is ClockAction.CLOCK_IN:
        return ClockAction.CLOCK_OUT
    return ClockAction.CLOCK_IN


class ActionResolver:
    def __init__(
        self,
        document_store: DocumentStore,
        *,
        tz: ZoneInfo,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        pending_store: PendingEventStore | None = None,
    ) -> None:
        self._document_store = document_store
        self._tz = tz
        self._lookback_days = max(1, int(lookback_days))
        # Only set when unsynced local captures should count as history.
        self._pending_store = pending_store

    def resolve(self, employee_id: str, *, now_utc: datetime | None = None) -> ClockAction:
        reference = normalize_utc(now_utc)
        window_start = lookback_start_utc(reference, self._tz, self._lookback_days)
        try:
            latest = self._document_store.latest_action(employee_id, since_utc=window_start)
        except RemoteStoreError as exc:
            logger.warning(
                "action_resolution_failed",
                extra={"employee_id": employee_id, "error": str(exc)},
            )
            raise ActionResolutionError(str(exc)) from exc

        last_action = latest.action if latest is not None else None
        last_ms = to_epoch_ms(latest.timestamp_utc) if latest is not None else None

        if self._pending_store is not None:
            try:
                pending = self._pending_store.list_unsynced_for_employee(
                    employee_id,
                    since_ms=to_epoch_ms(window_start),
                )
            except SQLAlchemyError as exc:
                logger.warning(
                    "action_resolution_local_failed",
                    extra={"employee_id": employee_id, "error": exc.__class__.__name__},
                )
                raise ActionResolutionError(f"pending event lookup failed: {exc.__class__.__name__}") from exc
            if pending and (last_ms is None or pending[0].captured_at_ms >= last_ms):
                last_action = pending[0].action

        return next_action_after(last_action)
