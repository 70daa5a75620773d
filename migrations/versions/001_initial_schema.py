"""Identity, profiles and conversations (SQL-only).

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-09-14
"""

from __future__ import annotations

from alembic import op

from migrations.env_helpers import read_sql

# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Raw execution keeps multi-statement files intact
    op.get_bind().exec_driver_sql(read_sql("001_initial.sql"))


def downgrade() -> None:
    raise NotImplementedError("Downgrade not supported")
