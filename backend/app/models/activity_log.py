"""ActivityLog: append-only audit trail of authentication and admin actions.

Rows are never updated or deleted by application code.  The single
exception is the retention sweep, which flips `archived` to true for
rows past the retention window; archived rows stay in the table for
compliance lookups.

`user_id` deliberately has no foreign key: unauthenticated and
background events are recorded against "anonymous" / "system".
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Index, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

UNKNOWN_IP = "0.0.0.0"
UNKNOWN_USER_AGENT = "unknown"


class ActivityAction(str, enum.Enum):
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_CHANGE_FAILED = "PASSWORD_CHANGE_FAILED"
    ORDER_CREATED = "ORDER_CREATED"
    ROLE_CHANGED = "ROLE_CHANGED"
    ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
    ACCOUNT_ACTIVATED = "ACCOUNT_ACTIVATED"
    USER_CREATED = "USER_CREATED"
    SECURITY_ALERT_DISMISSED = "SECURITY_ALERT_DISMISSED"


class ActivityLog(Base):
    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("ix_activity_logs_archived_created_at", "archived", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Who ────────────────────────────────────────────────────
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # ── What ───────────────────────────────────────────────────
    action: Mapped[ActivityAction] = mapped_column(
        SAEnum(ActivityAction), nullable=False, index=True
    )
    # Action-specific payload, e.g. {"country": "US", "city": "New York"}
    # for LOGIN or {"reason": "Invalid password"} for LOGIN_FAILED
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)

    # ── Where from ─────────────────────────────────────────────
    ip_address: Mapped[str] = mapped_column(
        String(45), nullable=False, default=UNKNOWN_IP, index=True
    )
    user_agent: Mapped[str] = mapped_column(
        Text, nullable=False, default=UNKNOWN_USER_AGENT
    )

    # ── When ───────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )

    # ── Retention ──────────────────────────────────────────────
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
