from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from clockapp.db import Base
from clockapp.models import ClockAction, PendingEvent
from clockapp.timeutils import from_epoch_ms, to_epoch_ms

LAST_ERROR_MAX_LENGTH = 500


@dataclass(frozen=True, slots=True)
class PendingEventStats:
    pending_count: int
    synced_count: int
    oldest_pending_captured_at_ms: int | None

    def to_dict(self) -> dict[str, Any]:
        oldest = self.oldest_pending_captured_at_ms
        return {
            "pending_count": self.pending_count,
            "synced_count": self.synced_count,
            "oldest_pending_captured_at_utc": from_epoch_ms(oldest).isoformat() if oldest is not None else None,
        }


def new_event_key() -> str:
    return secrets.token_hex(16)


class PendingEventStore:
    """Durable queue of captured clock events that are not yet confirmed remotely.

    Every operation opens its own short transaction, so capture-path writes and
    the background synchronizer never hold locks across rows.
    """

    def __init__(self, engine: Engine, session_factory: sessionmaker[Session]) -> None:
        self._engine = engine
        self._session_factory = session_factory

    def create_schema(self) -> None:
        Base.metadata.create_all(self._engine)

    def insert(
        self,
        *,
        employee_id: str,
        action: ClockAction,
        captured_at: datetime,
        local_photo_path: str | None = None,
    ) -> PendingEvent:
        event = PendingEvent(
            event_key=new_event_key(),
            employee_id=employee_id,
            action=action,
            captured_at_ms=to_epoch_ms(captured_at),
            local_photo_path=local_photo_path,
            synced=False,
            attempt_count=0,
        )
        with self._session_factory() as session:
            session.add(event)
            try:
                session.commit()
            except Exception:
                session.rollback()
                raise
            session.refresh(event)
        return event

    def get(self, event_id: int) -> PendingEvent | None:
        with self._session_factory() as session:
            return session.get(PendingEvent, event_id)

    def list_unsynced(self) -> list[PendingEvent]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(PendingEvent)
                    .where(PendingEvent.synced.is_(False))
                    .order_by(PendingEvent.captured_at_ms.asc(), PendingEvent.id.asc())
                ).all()
            )

    def list_unsynced_for_employee(self, employee_id: str, *, since_ms: int) -> list[PendingEvent]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(PendingEvent)
                    .where(
                        PendingEvent.employee_id == employee_id,
                        PendingEvent.synced.is_(False),
                        PendingEvent.captured_at_ms >= since_ms,
                    )
                    .order_by(PendingEvent.captured_at_ms.desc(), PendingEvent.id.desc())
                ).all()
            )

    def mark_synced(self, event_id: int) -> bool:
        """Flag ``event_id`` as synced. Returns False when it already was (or is gone)."""
        synced_at_ms = to_epoch_ms(datetime.now(timezone.utc))
        with self._session_factory() as session:
            result = session.execute(
                update(PendingEvent)
                .where(PendingEvent.id == event_id, PendingEvent.synced.is_(False))
                .values(synced=True, synced_at_ms=synced_at_ms, last_error=None)
            )
            session.commit()
            return bool(result.rowcount)

    def record_failure(self, event_id: int, error: str) -> None:
        message = (error or "").strip()[:LAST_ERROR_MAX_LENGTH] or "unknown"
        with self._session_factory() as session:
            session.execute(
                update(PendingEvent)
                .where(PendingEvent.id == event_id, PendingEvent.synced.is_(False))
                .values(attempt_count=PendingEvent.attempt_count + 1, last_error=message)
            )
            session.commit()

    def purge_synced(self) -> int:
        with self._session_factory() as session:
            result = session.execute(delete(PendingEvent).where(PendingEvent.synced.is_(True)))
            session.commit()
            return int(result.rowcount or 0)

    def stats(self) -> PendingEventStats:
        with self._session_factory() as session:
            pending_count = session.scalar(
                select(func.count()).select_from(PendingEvent).where(PendingEvent.synced.is_(False))
            )
            synced_count = session.scalar(
                select(func.count()).select_from(PendingEvent).where(PendingEvent.synced.is_(True))
            )
            oldest = session.scalar(
                select(func.min(PendingEvent.captured_at_ms)).where(PendingEvent.synced.is_(False))
            )
        return PendingEventStats(
            pending_count=int(pending_count or 0),
            synced_count=int(synced_count or 0),
            oldest_pending_captured_at_ms=int(oldest) if oldest is not None else None,
        )
