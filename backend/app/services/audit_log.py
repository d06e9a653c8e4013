"""Audit log service: activity ingestion, alert dismissal, retention.

Responsibilities:
  - Append activity events (never raises; see `log_activity`)
  - Record analyst dismissals of security alerts as new events
  - Soft-archive events past the retention window
  - Per-user activity history and summaries for the admin UI
  - Expose the computed security-alert feed

The service is built once at startup around a session factory and
shared through `app.state`; every operation opens its own session.
"""

import asyncio
import logging
import math
from datetime import datetime, timedelta
from typing import Any

from fastapi import Request
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.activity_log import (
    UNKNOWN_IP,
    UNKNOWN_USER_AGENT,
    ActivityAction,
    ActivityLog,
)
from app.schemas.security import AlertType, SecurityAlert
from app.services.security_alerts import get_all_security_alerts

logger = logging.getLogger("storefront.audit")


class AuditLogService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        # Strong references to in-flight fire-and-forget writes
        self._background_tasks: set[asyncio.Task] = set()

    # ── Ingestion ────────────────────────────────────────────

    async def log_activity(
        self,
        *,
        user_id: str,
        action: ActivityAction | str,
        ip_address: str = UNKNOWN_IP,
        user_agent: str = UNKNOWN_USER_AGENT,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityLog | None:
        """Append one activity event and return it.

        Storage failures are logged and swallowed (returns None): a
        failed audit write must never fail the action it describes.
        """
        try:
            async with self._session_factory() as db:
                entry = ActivityLog(
                    user_id=user_id,
                    action=ActivityAction(action),
                    metadata_=metadata,
                    ip_address=ip_address or UNKNOWN_IP,
                    user_agent=user_agent or UNKNOWN_USER_AGENT,
                )
                db.add(entry)
                await db.commit()
                return entry
        except Exception:
            logger.exception("Failed to log activity %s for user %s", action, user_id)
            return None

    def log_activity_background(self, **kwargs: Any) -> asyncio.Task:
        """Schedule `log_activity` without awaiting it.

        Must be called from inside a running event loop.  The returned
        task never raises; callers may ignore it.
        """
        task = asyncio.create_task(self.log_activity(**kwargs))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending background writes (used on shutdown)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks))

    # ── Security alerts ──────────────────────────────────────

    async def get_all_security_alerts(self) -> list[SecurityAlert]:
        """Run all detectors and return alerts sorted CRITICAL → LOW."""
        return await get_all_security_alerts(self._session_factory)

    async def dismiss_security_alert(
        self,
        *,
        alert_type: AlertType | str,
        reason: str,
        dismissed_by: str,
        dismissed_by_ip: str | None,
        dismissed_by_user_agent: str | None,
        user_id: str | None = None,
        ip_address: str | None = None,
    ) -> dict:
        """Record that an analyst reviewed and rejected an alert.

        Writes a SECURITY_ALERT_DISMISSED event attributed to the
        analyst.  Alerts are not stored, so the next scan may raise the
        same signal again.  Failures propagate.
        """
        dismissed_at = datetime.utcnow()
        alert_type = AlertType(alert_type)

        async with self._session_factory() as db:
            db.add(ActivityLog(
                user_id=dismissed_by,
                action=ActivityAction.SECURITY_ALERT_DISMISSED,
                metadata_={
                    "alert_type": alert_type.value,
                    "target_user_id": user_id,
                    "target_ip_address": ip_address,
                    "reason": reason,
                    "dismissed_by": dismissed_by,
                    "dismissed_at": dismissed_at.isoformat(),
                },
                ip_address=dismissed_by_ip or UNKNOWN_IP,
                user_agent=dismissed_by_user_agent or UNKNOWN_USER_AGENT,
                created_at=dismissed_at,
            ))
            await db.commit()

        logger.info(
            "Security alert %s dismissed by %s (user=%s, ip=%s)",
            alert_type.value, dismissed_by, user_id, ip_address,
        )
        return {
            "success": True,
            "message": "Alert dismissed and recorded in the audit trail",
        }

    # ── Retention ────────────────────────────────────────────

    async def archive_old_logs(self, days_to_keep: int | None = None) -> int:
        """Flag every unarchived event older than `days_to_keep` days as
        archived and return how many rows changed.

        Re-running with the same cutoff changes nothing: rows already
        archived are excluded by the `archived = false` condition.
        """
        if days_to_keep is None:
            days_to_keep = settings.activity_log_retention_days
        if days_to_keep < 0:
            raise ValueError("days_to_keep must be zero or positive")

        cutoff = datetime.utcnow() - timedelta(days=days_to_keep)

        async with self._session_factory() as db:
            result = await db.execute(
                update(ActivityLog)
                .where(
                    ActivityLog.archived == False,  # noqa: E712
                    ActivityLog.created_at < cutoff,
                )
                .values(archived=True)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        count = result.rowcount or 0
        logger.info("Archived %d logs older than %d days", count, days_to_keep)
        return count

    # ── History / summaries ──────────────────────────────────

    async def get_activity_log(
        self,
        user_id: str,
        *,
        action: ActivityAction | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict:
        """Newest-first page of one user's activity, archived rows included.

        Returns:
            {
                "logs": [ActivityLog, ...],
                "pagination": {"total", "page", "limit", "total_pages"},
            }
        """
        filters = [ActivityLog.user_id == user_id]
        if action:
            filters.append(ActivityLog.action == action)
        if start_date:
            filters.append(ActivityLog.created_at >= start_date)
        if end_date:
            filters.append(ActivityLog.created_at <= end_date)

        async with self._session_factory() as db:
            total_r = await db.execute(
                select(func.count(ActivityLog.id)).where(*filters)
            )
            total = total_r.scalar() or 0

            logs_r = await db.execute(
                select(ActivityLog)
                .where(*filters)
                .order_by(ActivityLog.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            logs = list(logs_r.scalars().all())

        return {
            "logs": logs,
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "total_pages": math.ceil(total / limit),
            },
        }

    async def get_user_activity_summary(self, user_id: str) -> dict:
        """Counts by action plus the most recent login, for profile pages."""
        async with self._session_factory() as db:
            by_action_r = await db.execute(
                select(ActivityLog.action, func.count(ActivityLog.id))
                .where(ActivityLog.user_id == user_id)
                .group_by(ActivityLog.action)
            )
            by_action = {
                action.value: count for action, count in by_action_r.all()
            }

            last_login_r = await db.execute(
                select(ActivityLog.created_at, ActivityLog.ip_address)
                .where(
                    ActivityLog.user_id == user_id,
                    ActivityLog.action == ActivityAction.LOGIN,
                )
                .order_by(ActivityLog.created_at.desc())
                .limit(1)
            )
            last_login = last_login_r.first()

        return {
            "total_actions": sum(by_action.values()),
            "by_action": by_action,
            "last_login": (
                {"timestamp": last_login.created_at, "ip_address": last_login.ip_address}
                if last_login
                else None
            ),
        }


# ── FastAPI dependency ──────────────────────────────────────

def get_audit_log_service(request: Request) -> AuditLogService:
    """Return the process-wide service built in the app lifespan."""
    return request.app.state.audit_log_service
