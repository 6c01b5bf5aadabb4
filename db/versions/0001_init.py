"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-09-28 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "activation_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("bound_device", sa.Text(), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "(used AND bound_device IS NOT NULL AND activated_at IS NOT NULL)"
            " OR (NOT used AND bound_device IS NULL AND activated_at IS NULL)",
            name="ck_activation_codes_binding_consistent",
        ),
    )
    op.create_index(
        "uq_activation_codes_code", "activation_codes", ["code"], unique=True
    )
    op.create_index("ix_activation_codes_used", "activation_codes", ["used"])
    op.create_index(
        "ix_activation_codes_bound_device", "activation_codes", ["bound_device"]
    )
    op.create_index(
        "ix_activation_codes_created_at", "activation_codes", ["created_at"]
    )

    op.create_table(
        "admin_identity",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("failed_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_changed", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("uq_admin_identity_name", "admin_identity", ["name"], unique=True)

    op.create_table(
        "admin_audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor", sa.Text(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column(
            "payload",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("admin_audit_log")
    op.drop_index("uq_admin_identity_name", table_name="admin_identity")
    op.drop_table("admin_identity")
    op.drop_index("ix_activation_codes_created_at", table_name="activation_codes")
    op.drop_index("ix_activation_codes_bound_device", table_name="activation_codes")
    op.drop_index("ix_activation_codes_used", table_name="activation_codes")
    op.drop_index("uq_activation_codes_code", table_name="activation_codes")
    op.drop_table("activation_codes")
