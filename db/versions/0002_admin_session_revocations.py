"""admin session revocations

Revision ID: 0002_admin_session_revocations
Revises: 0001_init
Create Date: 2026-10-05 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "0002_admin_session_revocations"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "admin_session_revocations",
        sa.Column("identity", sa.Text(), primary_key=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("admin_session_revocations")
