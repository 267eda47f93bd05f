"""initial saleshub schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
from sqlalchemy import inspect

from app.saleshub.models import Base


# revision identifiers, used by Alembic.
revision: str = "0a1b2c3d4e5f"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Baseline: create every table the models declare. Tables that already
    # exist (databases created by scripts/init_db.py before alembic was
    # wired up) are left alone.
    bind = op.get_bind()
    existing = set(inspect(bind).get_table_names())
    tables = [t for t in Base.metadata.sorted_tables if t.name not in existing]
    Base.metadata.create_all(bind=bind, tables=tables, checkfirst=True)


def downgrade() -> None:
    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind)
