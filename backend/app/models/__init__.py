"""Aggregate model imports for Alembic auto-detection."""

from app.models.user import User, UserRole  # noqa: F401
from app.models.order import Order, OrderStatus  # noqa: F401
from app.models.activity_log import ActivityAction, ActivityLog  # noqa: F401
