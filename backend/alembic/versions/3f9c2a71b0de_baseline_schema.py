"""baseline_schema

Revision ID: 3f9c2a71b0de
Revises: 
Create Date: 2026-10-19 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op

from tenantguard.db_base import Base
import tenantguard.models  # noqa: F401 - required to register all model metadata


# revision identifiers, used by Alembic.
revision: str = '3f9c2a71b0de'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())
