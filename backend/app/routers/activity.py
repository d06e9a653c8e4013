"""Activity history router: per-user audit trail for the admin UI.

Endpoints:
    GET /users/{user_id}            Paginated history, newest first
    GET /users/{user_id}/summary    Counts by action + last login
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import require_admin
from app.database import get_db
from app.middleware.exceptions import ResourceNotFoundError
from app.models.activity_log import ActivityAction
from app.models.user import User
from app.schemas.activity import ActivityEntry, ActivityPage, ActivitySummary
from app.services.audit_log import AuditLogService, get_audit_log_service

router = APIRouter()


async def _ensure_user(db: AsyncSession, user_id: str) -> None:
    result = await db.execute(select(User.id).where(User.id == user_id))
    if result.scalar_one_or_none() is None:
        raise ResourceNotFoundError("User", user_id)


@router.get("/users/{user_id}", response_model=ActivityPage)
async def list_user_activity(
    user_id: str,
    action: ActivityAction | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    service: AuditLogService = Depends(get_audit_log_service),
    _user: User = Depends(require_admin),
):
    await _ensure_user(db, user_id)
    result = await service.get_activity_log(
        user_id,
        action=action,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return ActivityPage(
        logs=[ActivityEntry.model_validate(log) for log in result["logs"]],
        pagination=result["pagination"],
    )


@router.get("/users/{user_id}/summary", response_model=ActivitySummary)
async def get_user_activity_summary(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    service: AuditLogService = Depends(get_audit_log_service),
    _user: User = Depends(require_admin),
):
    await _ensure_user(db, user_id)
    return await service.get_user_activity_summary(user_id)
