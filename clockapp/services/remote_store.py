from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from clockapp.errors import RemoteStoreError
from clockapp.models import ClockAction, ClockLog, Employee
from clockapp.timeutils import normalize_utc


@dataclass(frozen=True, slots=True)
class RemoteEventRecord:
    employee_id: str
    action: ClockAction
    captured_at_utc: datetime
    # None lets the store stamp its own clock.
    timestamp_utc: datetime | None
    photo_reference_in: str | None = None
    photo_path_in: str | None = None
    photo_reference_out: str | None = None
    photo_path_out: str | None = None
    kiosk_id: str | None = None
    source_event_key: str | None = None


@dataclass(frozen=True, slots=True)
class LoggedAction:
    record_id: int
    employee_id: str
    action: ClockAction
    timestamp_utc: datetime


@dataclass(frozen=True, slots=True)
class EmployeeProfile:
    employee_id: str
    first_name: str
    last_name: str
    store: str
    employed_status: bool

    @property
    def display_name(self) -> str:
        parts = [part for part in (self.first_name, self.last_name) if part and part.strip()]
        return " ".join(part.strip() for part in parts) or "Employee"


class DocumentStore(Protocol):
    def add_record(self, record: RemoteEventRecord) -> int: ...

    def latest_action(self, employee_id: str, *, since_utc: datetime) -> LoggedAction | None: ...

    def find_employee_by_pin(self, pin: str) -> EmployeeProfile | None: ...


class SqlDocumentStore:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def add_record(self, record: RemoteEventRecord) -> int:
        try:
            with self._session_factory() as session:
                if record.source_event_key:
                    existing_id = self._find_by_source_key(session, record.source_event_key)
                    if existing_id is not None:
                        return existing_id

                row = ClockLog(
                    employee_id=record.employee_id,
                    action=record.action,
                    timestamp=(
                        normalize_utc(record.timestamp_utc)
                        if record.timestamp_utc is not None
                        else func.current_timestamp()
                    ),
                    captured_at=normalize_utc(record.captured_at_utc),
                    photo_in_url=record.photo_reference_in,
                    photo_in_path=record.photo_path_in,
                    photo_out_url=record.photo_reference_out,
                    photo_out_path=record.photo_path_out,
                    kiosk_id=record.kiosk_id,
                    source_event_key=record.source_event_key,
                )
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    # Another writer stored the same source key between lookup and insert.
                    session.rollback()
                    if not record.source_event_key:
                        raise
                    existing_id = self._find_by_source_key(session, record.source_event_key)
                    if existing_id is None:
                        raise
                    return existing_id
                return int(row.id)
        except SQLAlchemyError as exc:
            raise RemoteStoreError(f"clock log write failed: {exc.__class__.__name__}") from exc

    def latest_action(self, employee_id: str, *, since_utc: datetime) -> LoggedAction | None:
        try:
            with self._session_factory() as session:
                row = session.scalar(
                    select(ClockLog)
                    .where(
                        ClockLog.employee_id == employee_id,
                        ClockLog.timestamp >= normalize_utc(since_utc),
                    )
                    .order_by(ClockLog.timestamp.desc(), ClockLog.id.desc())
                    .limit(1)
                )
        except SQLAlchemyError as exc:
            raise RemoteStoreError(f"clock log query failed: {exc.__class__.__name__}") from exc

        if row is None:
            return None
        return LoggedAction(
            record_id=row.id,
            employee_id=row.employee_id,
            action=row.action,
            timestamp_utc=normalize_utc(row.timestamp),
        )

    def find_employee_by_pin(self, pin: str) -> EmployeeProfile | None:
        try:
            with self._session_factory() as session:
                employee = session.scalar(select(Employee).where(Employee.pin == pin).limit(1))
        except SQLAlchemyError as exc:
            raise RemoteStoreError(f"employee lookup failed: {exc.__class__.__name__}") from exc

        if employee is None:
            return None
        return EmployeeProfile(
            employee_id=employee.employee_id,
            first_name=employee.first_name or "",
            last_name=employee.last_name or "",
            store=employee.store or "",
            employed_status=bool(employee.employed_status),
        )

    @staticmethod
    def _find_by_source_key(session: Session, source_event_key: str) -> int | None:
        existing_id = session.scalar(
            select(ClockLog.id).where(ClockLog.source_event_key == source_event_key).limit(1)
        )
        return int(existing_id) if existing_id is not None else None
