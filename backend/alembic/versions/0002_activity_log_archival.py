"""Soft archival for activity logs, new audit actions.

Adds `archived` (retention sweep flips it instead of deleting rows) with
an (archived, created_at) index for the sweep, and extends the action
enum with PASSWORD_CHANGE_FAILED, USER_CREATED and
SECURITY_ALERT_DISMISSED.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18
"""

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa

NEW_ACTIONS = ("PASSWORD_CHANGE_FAILED", "USER_CREATED", "SECURITY_ALERT_DISMISSED")


def upgrade() -> None:
    # ALTER TYPE ... ADD VALUE cannot run inside a transaction block
    with op.get_context().autocommit_block():
        for action in NEW_ACTIONS:
            op.execute(f"ALTER TYPE activityaction ADD VALUE IF NOT EXISTS '{action}'")

    op.add_column(
        "activity_logs",
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index(
        "ix_activity_logs_archived_created_at",
        "activity_logs",
        ["archived", "created_at"],
    )


def downgrade() -> None:
    # Postgres cannot drop enum values; the extra actions stay in the type
    op.drop_index("ix_activity_logs_archived_created_at", table_name="activity_logs")
    op.drop_column("activity_logs", "archived")
