"""Create users, orders and activity_logs.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa

USER_ROLES = ("USER", "ADMIN", "SUPER_ADMIN")
ORDER_STATUSES = ("PENDING", "PROCESSING", "SHIPPED", "DELIVERED", "CANCELLED", "REFUNDED")
ACTIVITY_ACTIONS = (
    "LOGIN", "LOGIN_FAILED", "LOGOUT", "PROFILE_UPDATED", "PASSWORD_CHANGED",
    "ORDER_CREATED", "ROLE_CHANGED", "ACCOUNT_SUSPENDED", "ACCOUNT_ACTIVATED",
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("role", sa.Enum(*USER_ROLES, name="userrole"), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("order_number", sa.String(50), nullable=False, unique=True),
        sa.Column("total", sa.Integer(), nullable=False),
        sa.Column(
            "status", sa.Enum(*ORDER_STATUSES, name="orderstatus"),
            nullable=False, server_default="PENDING",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_created_at", "orders", ["created_at"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("action", sa.Enum(*ACTIVITY_ACTIONS, name="activityaction"), nullable=False),
        sa.Column("metadata", sa.JSON()),
        sa.Column("ip_address", sa.String(45), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])
    op.create_index("ix_activity_logs_ip_address", "activity_logs", ["ip_address"])


def downgrade() -> None:
    op.drop_table("activity_logs")
    op.drop_table("orders")
    op.drop_table("users")
    sa.Enum(name="activityaction").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="orderstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="userrole").drop(op.get_bind(), checkfirst=True)
