"""Helpers for attributing activity events to the originating request.

Usage:
    ip_address, user_agent = request_client_info(request)
    service.log_activity_background(
        user_id=user.id, action=ActivityAction.LOGOUT,
        ip_address=ip_address, user_agent=user_agent,
    )

Both values are best-effort; missing data falls back to the sentinels
stored by the activity log ("0.0.0.0" / "unknown").
"""

from __future__ import annotations

from starlette.requests import Request

from app.models.activity_log import UNKNOWN_IP, UNKNOWN_USER_AGENT


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop (load balancer), else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
        if ip:
            return ip
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_IP


def client_user_agent(request: Request) -> str:
    return request.headers.get("user-agent") or UNKNOWN_USER_AGENT


def request_client_info(request: Request) -> tuple[str, str]:
    return client_ip(request), client_user_agent(request)
