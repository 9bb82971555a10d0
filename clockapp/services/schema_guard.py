from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REMOTE_REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "employees": {"employee_id", "pin", "employed_status"},
    "clock_logs": {"id", "employee_id", "action", "timestamp", "source_event_key"},
    "alembic_version": {"version_num"},
}

REMOTE_REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "clock_action": {"CLOCK_IN", "CLOCK_OUT"},
}

LOCAL_REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "pending_events": {"id", "event_key", "employee_id", "action", "captured_at_ms", "local_photo_path", "synced"},
}


def verify_runtime_schema(
    engine: Engine,
    *,
    required_columns: dict[str, set[str]] | None = None,
    required_enum_values: dict[str, set[str]] | None = None,
    check_alembic_version: bool = True,
) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    table_columns = REMOTE_REQUIRED_TABLE_COLUMNS if required_columns is None else required_columns
    enum_requirements = REMOTE_REQUIRED_ENUM_VALUES if required_enum_values is None else required_enum_values

    try:
        inspector = inspect(engine)
    except Exception as exc:
        return SchemaGuardResult(
            ok=False,
            checked_at_utc=checked_at_utc,
            issues=[f"DATABASE_UNREACHABLE:{exc.__class__.__name__}"],
            warnings=[],
        )

    for table_name, required in table_columns.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover - defensive
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    if enum_requirements:
        try:
            enums = inspector.get_enums() or []
        except Exception as exc:  # pragma: no cover - defensive
            warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
            enums = []

        enum_values_by_name: dict[str, set[str]] = {}
        for enum_item in enums:
            name = str(enum_item.get("name") or "").strip()
            if not name:
                continue
            labels = enum_item.get("labels")
            if isinstance(labels, list):
                enum_values_by_name[name] = {str(label) for label in labels}

        for enum_name, required_values in enum_requirements.items():
            if enum_name not in enum_values_by_name:
                warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
                continue
            missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
            if missing_values:
                issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    if check_alembic_version:
        try:
            with engine.connect() as connection:
                row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
                version = str(row).strip() if row is not None else ""
                if not version:
                    issues.append("ALEMBIC_VERSION_EMPTY")
        except Exception as exc:  # pragma: no cover - defensive
            issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )


def verify_local_schema(engine: Engine) -> SchemaGuardResult:
    return verify_runtime_schema(
        engine,
        required_columns=LOCAL_REQUIRED_TABLE_COLUMNS,
        required_enum_values={},
        check_alembic_version=False,
    )
