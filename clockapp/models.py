from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from clockapp.db import Base, RemoteBase


class ClockAction(str, enum.Enum):
    CLOCK_IN = "CLOCK_IN"
    CLOCK_OUT = "CLOCK_OUT"


class PendingEvent(Base):
    __tablename__ = "pending_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_key: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action: Mapped[ClockAction] = mapped_column(
        Enum(ClockAction, name="clock_action"),
        nullable=False,
    )
    captured_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    local_photo_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    synced: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        index=True,
    )
    synced_at_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    last_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class Employee(RemoteBase):
    __tablename__ = "employees"

    employee_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default=text("''"))
    last_name: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default=text("''"))
    pin: Mapped[str] = mapped_column(String(6), nullable=False, unique=True, index=True)
    store: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default=text("''"))
    employed_status: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )


class ClockLog(RemoteBase):
    __tablename__ = "clock_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action: Mapped[ClockAction] = mapped_column(
        Enum(ClockAction, name="clock_action"),
        nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    photo_in_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    photo_in_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    photo_out_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    photo_out_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    kiosk_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source_event_key: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
