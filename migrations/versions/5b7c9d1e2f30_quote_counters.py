"""per-day quote number counter

Revision ID: 5b7c9d1e2f30
Revises: 0a1b2c3d4e5f
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy import inspect


revision: str = "5b7c9d1e2f30"
down_revision: Union[str, Sequence[str], None] = "0a1b2c3d4e5f"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # The baseline creates every model table, so fresh databases already have it.
    if inspect(op.get_bind()).has_table("quote_counters"):
        return
    op.create_table(
        "quote_counters",
        sa.Column("day", sa.String(length=8), primary_key=True),
        sa.Column("current_value", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    op.drop_table("quote_counters")
