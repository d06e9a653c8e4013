"""Pydantic schemas for the security-alert feed and alert dismissal."""

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class AlertType(str, enum.Enum):
    FAILED_LOGIN = "FAILED_LOGIN"
    UNUSUAL_LOCATION = "UNUSUAL_LOCATION"
    RAPID_ACCOUNT_CREATION = "RAPID_ACCOUNT_CREATION"
    HIGH_VALUE_NEW_ACCOUNT = "HIGH_VALUE_NEW_ACCOUNT"
    RAPID_ORDERS = "RAPID_ORDERS"


class AlertSeverity(str, enum.Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


# Presentation order: lower rank sorts first
SEVERITY_RANK: dict[AlertSeverity, int] = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.HIGH: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.LOW: 3,
}


class SecurityAlert(BaseModel):
    """One detector finding.

    Computed on every request and never stored, so an alert has no id.
    `timestamp` is when the detector ran, not when the events happened.
    """
    type: AlertType
    severity: AlertSeverity
    user_id: str | None = None
    user_email: str | None = None
    user_name: str | None = None
    ip_address: str | None = None
    order_id: str | None = None
    user_ids: list[str] | None = None
    count: int | None = None
    order_value: int | None = None
    message: str
    evidence: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class DismissAlertRequest(BaseModel):
    """Analyst decision to dismiss an alert (false positive / investigated)."""
    alert_type: AlertType
    user_id: str | None = None
    ip_address: str | None = None
    reason: str = Field(min_length=10, max_length=500)


class DismissAlertResponse(BaseModel):
    success: bool
    message: str
