"""Message buffers, notes, content orders and job queue (SQL-only).

Revision ID: 002_message_pipeline
Revises: 001_initial_schema
Create Date: 2026-09-21
"""

from __future__ import annotations

from alembic import op

from migrations.env_helpers import read_sql

# revision identifiers, used by Alembic.
revision = "002_message_pipeline"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.get_bind().exec_driver_sql(read_sql("002_message_pipeline.sql"))


def downgrade() -> None:
    op.get_bind().exec_driver_sql(
        "DROP TABLE IF EXISTS agent_jobs, content_orders, knowledge_notes, "
        "inbound_messages, message_buffers"
    )
