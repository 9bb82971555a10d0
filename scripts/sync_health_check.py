#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text


REPEATED_FAILURE_THRESHOLD = 5


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("LOCAL_DATABASE_URL", "sqlite:///./kiosk.db")

    engine = create_engine(database_url)
    now_utc = datetime.now(timezone.utc)
    report: dict = {
        "generated_at_utc": now_utc.isoformat(),
        "database_url": database_url,
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(text("select name from sqlite_master where type = 'table'")).scalars()
        )
        if "pending_events" not in tables:
            add("pending_events_table", "fail", {"tables": sorted(tables)})
            return report
        add("pending_events_table", "ok", {})

        pending_count, oldest_ms = conn.execute(
            text("select count(*), min(captured_at_ms) from pending_events where synced = 0")
        ).one()
        oldest_age_hours = None
        if oldest_ms is not None:
            oldest_age_hours = round((now_utc.timestamp() * 1000 - oldest_ms) / 3_600_000, 2)
        add(
            "pending_backlog",
            "warn" if oldest_age_hours is not None and oldest_age_hours > 24 else "ok",
            {"pending_count": pending_count, "oldest_pending_age_hours": oldest_age_hours},
        )

        photo_rows = conn.execute(
            text(
                """
                select id, local_photo_path
                from pending_events
                where synced = 0 and local_photo_path is not null
                """
            )
        ).fetchall()
        missing_photo_ids = [row[0] for row in photo_rows if not os.path.isfile(row[1])]
        add(
            "pending_missing_photo_files",
            "warn" if missing_photo_ids else "ok",
            {"sample_ids": missing_photo_ids[:20], "count": len(missing_photo_ids)},
        )

        repeated_failures = conn.execute(
            text(
                """
                select id, employee_id, attempt_count, last_error
                from pending_events
                where synced = 0 and attempt_count >= :threshold
                order by attempt_count desc
                limit 20
                """
            ),
            {"threshold": REPEATED_FAILURE_THRESHOLD},
        ).fetchall()
        add(
            "pending_repeated_failures",
            "warn" if repeated_failures else "ok",
            {"rows": [list(row) for row in repeated_failures]},
        )

        synced_awaiting_purge = conn.execute(
            text("select count(*) from pending_events where synced = 1")
        ).scalar()
        add("synced_awaiting_purge", "ok", {"count": synced_awaiting_purge})

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
