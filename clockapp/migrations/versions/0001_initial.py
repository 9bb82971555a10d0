"""Initial clock log schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

clock_action = postgresql.ENUM(
    "CLOCK_IN",
    "CLOCK_OUT",
    name="clock_action",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    clock_action.create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("employee_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=False, server_default=sa.text("''")),
        sa.Column("last_name", sa.String(length=255), nullable=False, server_default=sa.text("''")),
        sa.Column("pin", sa.String(length=6), nullable=False),
        sa.Column("store", sa.String(length=255), nullable=False, server_default=sa.text("''")),
        sa.Column("employed_status", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_employees_pin", "employees", ["pin"], unique=True)

    op.create_table(
        "clock_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=64), nullable=False),
        sa.Column("action", clock_action, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("photo_in_url", sa.String(length=2048), nullable=True),
        sa.Column("photo_in_path", sa.String(length=1024), nullable=True),
        sa.Column("photo_out_url", sa.String(length=2048), nullable=True),
        sa.Column("photo_out_path", sa.String(length=1024), nullable=True),
        sa.Column("kiosk_id", sa.String(length=64), nullable=True),
        sa.Column("source_event_key", sa.String(length=64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("source_event_key", name="uq_clock_logs_source_event_key"),
    )
    op.create_index("ix_clock_logs_employee_id", "clock_logs", ["employee_id"])
    op.create_index("ix_clock_logs_timestamp", "clock_logs", ["timestamp"])
    op.create_index(
        "ix_clock_logs_employee_timestamp",
        "clock_logs",
        ["employee_id", "timestamp"],
    )


def downgrade() -> None:
    op.drop_index("ix_clock_logs_employee_timestamp", table_name="clock_logs")
    op.drop_index("ix_clock_logs_timestamp", table_name="clock_logs")
    op.drop_index("ix_clock_logs_employee_id", table_name="clock_logs")
    op.drop_table("clock_logs")
    op.drop_index("ix_employees_pin", table_name="employees")
    op.drop_table("employees")

    bind = op.get_bind()
    clock_action.drop(bind, checkfirst=True)
