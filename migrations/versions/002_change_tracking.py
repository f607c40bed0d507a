"""Booking modification log and notification reference points (SQL-only).

Revision ID: 002_change_tracking
Revises: 001_initial_schema
Create Date: 2026-10-16
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


revision = "002_change_tracking"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parents[1] / "sql" / "002_change_tracking.sql"


def upgrade() -> None:
    op.get_bind().exec_driver_sql(_SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    op.get_bind().exec_driver_sql(
        "DROP TABLE IF EXISTS notification_reference_points; "
        "DROP TABLE IF EXISTS booking_modifications;"
    )
