"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

Accounts with their 2FA state, and single-use recovery codes.
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("totp_secret", sa.String(length=256), nullable=True),
        sa.Column(
            "totp_enabled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("totp_enabled_at", sa.DateTime(), nullable=True),
        sa.Column("totp_last_used_step", sa.Integer(), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "recovery_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code_hash", sa.String(length=60), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_recovery_codes_id", "recovery_codes", ["id"])
    op.create_index(
        "idx_recovery_codes_user_used", "recovery_codes", ["user_id", "used"]
    )


def downgrade() -> None:
    op.drop_index("idx_recovery_codes_user_used", table_name="recovery_codes")
    op.drop_index("ix_recovery_codes_id", table_name="recovery_codes")
    op.drop_table("recovery_codes")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
