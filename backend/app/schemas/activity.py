"""Pydantic schemas for activity history endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.models.activity_log import ActivityAction


class ActivityEntry(BaseModel):
    id: str
    user_id: str
    action: ActivityAction
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_")
    ip_address: str
    user_agent: str
    created_at: datetime
    archived: bool

    model_config = {"from_attributes": True, "populate_by_name": True}


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class ActivityPage(BaseModel):
    """Newest-first page of a user's activity."""
    logs: list[ActivityEntry]
    pagination: Pagination


class LastLogin(BaseModel):
    timestamp: datetime
    ip_address: str


class ActivitySummary(BaseModel):
    total_actions: int
    by_action: dict[str, int]
    last_login: LastLogin | None = None
