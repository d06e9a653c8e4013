"""Security monitoring router: computed alert feed and dismissal.

Endpoints:
    GET  /alerts            All alerts from every detector, CRITICAL first
    POST /alerts/dismiss    Record an analyst's dismissal in the audit trail

Alerts are recomputed on every GET; there is no alert table.  A
dismissal is an audit entry, so a still-active signal shows up again on
the next refresh.
"""

from fastapi import APIRouter, Depends, Request

from app.auth.deps import require_admin
from app.models.user import User
from app.schemas.security import (
    DismissAlertRequest,
    DismissAlertResponse,
    SecurityAlert,
)
from app.services.audit_log import AuditLogService, get_audit_log_service
from app.utils.activity import request_client_info

router = APIRouter()


@router.get("/alerts", response_model=list[SecurityAlert])
async def get_security_alerts(
    service: AuditLogService = Depends(get_audit_log_service),
    _user: User = Depends(require_admin),
):
    return await service.get_all_security_alerts()


@router.post("/alerts/dismiss", response_model=DismissAlertResponse)
async def dismiss_security_alert(
    body: DismissAlertRequest,
    request: Request,
    service: AuditLogService = Depends(get_audit_log_service),
    user: User = Depends(require_admin),
):
    """Mark an alert as investigated / false positive."""
    ip_address, user_agent = request_client_info(request)
    result = await service.dismiss_security_alert(
        alert_type=body.alert_type,
        user_id=body.user_id,
        ip_address=body.ip_address,
        reason=body.reason,
        dismissed_by=user.id,
        dismissed_by_ip=ip_address,
        dismissed_by_user_agent=user_agent,
    )
    return DismissAlertResponse(**result)
