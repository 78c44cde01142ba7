"""initial lifecycle schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00

"""
from typing import Sequence, Union

from alembic import op

from app.db.models import DbBaseModel

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Baseline: the tables as currently declared. Later revisions diff from here.
    DbBaseModel.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    DbBaseModel.metadata.drop_all(bind=op.get_bind())
