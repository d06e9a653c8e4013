"""Tests for AuditLogService: ingestion, dismissal, archival, history."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.models.activity_log import ActivityAction, ActivityLog
from app.schemas.security import AlertType
from app.services.security_alerts import get_all_security_alerts


async def _all_logs(session_factory) -> list[ActivityLog]:
    async with session_factory() as db:
        result = await db.execute(select(ActivityLog).order_by(ActivityLog.created_at))
        return list(result.scalars().all())


@pytest.mark.integration
@pytest.mark.asyncio
class TestLogActivity:

    async def test_records_event_with_request_details(self, audit_service, session_factory):
        entry = await audit_service.log_activity(
            user_id="user-1",
            action=ActivityAction.LOGIN,
            ip_address="203.0.113.9",
            user_agent="Mozilla/5.0",
            metadata={"country": "US", "city": "Boston"},
        )

        assert entry is not None
        logs = await _all_logs(session_factory)
        assert len(logs) == 1
        stored = logs[0]
        assert stored.id == entry.id
        assert stored.action == ActivityAction.LOGIN
        assert stored.ip_address == "203.0.113.9"
        assert stored.user_agent == "Mozilla/5.0"
        assert stored.metadata_ == {"country": "US", "city": "Boston"}
        assert stored.archived is False

    async def test_missing_request_details_use_sentinels(self, audit_service):
        entry = await audit_service.log_activity(
            user_id="system",
            action="ACCOUNT_SUSPENDED",
            ip_address=None,
            user_agent=None,
        )

        assert entry.action == ActivityAction.ACCOUNT_SUSPENDED
        assert entry.ip_address == "0.0.0.0"
        assert entry.user_agent == "unknown"

    async def test_store_failure_is_swallowed(self, audit_service, session_factory):
        # user_id is NOT NULL; the insert fails inside the service
        entry = await audit_service.log_activity(
            user_id=None, action=ActivityAction.LOGIN,
        )

        assert entry is None
        assert await _all_logs(session_factory) == []

    async def test_unknown_action_is_swallowed(self, audit_service):
        entry = await audit_service.log_activity(user_id="user-1", action="TELEPORTED")

        assert entry is None

    async def test_background_write_completes(self, audit_service, session_factory):
        task = audit_service.log_activity_background(
            user_id="user-2", action=ActivityAction.LOGOUT,
        )

        await audit_service.drain()

        assert task.done()
        logs = await _all_logs(session_factory)
        assert [log.action for log in logs] == [ActivityAction.LOGOUT]

    async def test_background_failure_does_not_raise(self, audit_service):
        task = audit_service.log_activity_background(
            user_id=None, action=ActivityAction.LOGIN_FAILED,
        )

        assert await task is None


@pytest.mark.integration
@pytest.mark.asyncio
class TestDismissSecurityAlert:

    async def test_records_dismissal_event(self, audit_service, session_factory):
        result = await audit_service.dismiss_security_alert(
            alert_type=AlertType.FAILED_LOGIN,
            user_id="user-9",
            reason="Customer confirmed they forgot their password",
            dismissed_by="admin-1",
            dismissed_by_ip="198.51.100.4",
            dismissed_by_user_agent="AdminConsole/1.0",
        )

        assert result["success"] is True
        logs = await _all_logs(session_factory)
        assert len(logs) == 1
        entry = logs[0]
        assert entry.action == ActivityAction.SECURITY_ALERT_DISMISSED
        assert entry.user_id == "admin-1"
        assert entry.ip_address == "198.51.100.4"
        assert entry.user_agent == "AdminConsole/1.0"
        assert entry.metadata_["alert_type"] == "FAILED_LOGIN"
        assert entry.metadata_["target_user_id"] == "user-9"
        assert entry.metadata_["target_ip_address"] is None
        assert entry.metadata_["reason"] == "Customer confirmed they forgot their password"
        assert entry.metadata_["dismissed_by"] == "admin-1"
        assert datetime.fromisoformat(entry.metadata_["dismissed_at"])

    async def test_dismissal_does_not_suppress_alert(
        self, audit_service, session_factory, create_user, create_log
    ):
        user = await create_user()
        for i in range(5):
            await create_log(
                user.id,
                ActivityAction.LOGIN_FAILED,
                created_at=datetime.utcnow() - timedelta(minutes=i + 1),
            )

        await audit_service.dismiss_security_alert(
            alert_type="FAILED_LOGIN",
            user_id=user.id,
            reason="Known user, password manager misconfigured",
            dismissed_by="admin-1",
            dismissed_by_ip=None,
            dismissed_by_user_agent=None,
        )

        alerts = await get_all_security_alerts(session_factory)
        assert [a.type for a in alerts] == [AlertType.FAILED_LOGIN]

    async def test_store_failure_propagates(self, audit_service):
        with pytest.raises(IntegrityError):
            await audit_service.dismiss_security_alert(
                alert_type=AlertType.RAPID_ORDERS,
                user_id="user-3",
                reason="Checked with the payment processor",
                dismissed_by=None,
                dismissed_by_ip=None,
                dismissed_by_user_agent=None,
            )

    async def test_unknown_alert_type_is_rejected(self, audit_service, session_factory):
        with pytest.raises(ValueError):
            await audit_service.dismiss_security_alert(
                alert_type="NOT_A_TYPE",
                reason="This should never be stored",
                dismissed_by="admin-1",
                dismissed_by_ip=None,
                dismissed_by_user_agent=None,
            )

        assert await _all_logs(session_factory) == []


@pytest.mark.integration
@pytest.mark.asyncio
class TestArchiveOldLogs:

    async def test_archives_only_logs_past_retention(
        self, audit_service, session_factory, create_log
    ):
        old_one = await create_log(
            "user-1", ActivityAction.LOGIN, created_at=datetime.utcnow() - timedelta(days=100)
        )
        old_two = await create_log(
            "user-1", ActivityAction.LOGOUT, created_at=datetime.utcnow() - timedelta(days=91)
        )
        recent = await create_log(
            "user-1", ActivityAction.LOGIN, created_at=datetime.utcnow() - timedelta(days=10)
        )

        archived = await audit_service.archive_old_logs(90)

        assert archived == 2
        logs = {log.id: log for log in await _all_logs(session_factory)}
        assert len(logs) == 3
        assert logs[old_one.id].archived is True
        assert logs[old_two.id].archived is True
        assert logs[recent.id].archived is False

    async def test_second_run_archives_nothing(self, audit_service, create_log):
        await create_log(
            "user-1", ActivityAction.LOGIN, created_at=datetime.utcnow() - timedelta(days=200)
        )

        assert await audit_service.archive_old_logs(90) == 1
        assert await audit_service.archive_old_logs(90) == 0

    async def test_defaults_to_configured_retention(self, audit_service, create_log):
        await create_log(
            "user-1", ActivityAction.LOGIN, created_at=datetime.utcnow() - timedelta(days=89)
        )

        assert await audit_service.archive_old_logs() == 0

    async def test_negative_retention_is_rejected(self, audit_service):
        with pytest.raises(ValueError):
            await audit_service.archive_old_logs(-1)


@pytest.mark.integration
@pytest.mark.asyncio
class TestActivityHistory:

    async def test_paginates_newest_first(self, audit_service, create_log):
        base = datetime.utcnow()
        for i in range(5):
            await create_log("user-1", ActivityAction.LOGIN, created_at=base - timedelta(hours=i))
        await create_log("user-2", ActivityAction.LOGIN, created_at=base)

        first = await audit_service.get_activity_log("user-1", page=1, limit=2)
        last = await audit_service.get_activity_log("user-1", page=3, limit=2)

        assert first["pagination"] == {"total": 5, "page": 1, "limit": 2, "total_pages": 3}
        assert [log.created_at for log in first["logs"]] == [
            base, base - timedelta(hours=1),
        ]
        assert len(last["logs"]) == 1

    async def test_filters_by_action_and_dates(self, audit_service, create_log):
        base = datetime.utcnow()
        await create_log("user-1", ActivityAction.LOGIN, created_at=base - timedelta(days=3))
        await create_log("user-1", ActivityAction.LOGIN, created_at=base - timedelta(days=1))
        await create_log("user-1", ActivityAction.LOGOUT, created_at=base - timedelta(days=1))

        result = await audit_service.get_activity_log(
            "user-1",
            action=ActivityAction.LOGIN,
            start_date=base - timedelta(days=2),
            end_date=base,
        )

        assert result["pagination"]["total"] == 1
        assert result["logs"][0].action == ActivityAction.LOGIN

    async def test_includes_archived_logs(self, audit_service, create_log):
        await create_log("user-1", ActivityAction.LOGIN, archived=True)

        result = await audit_service.get_activity_log("user-1")

        assert result["pagination"]["total"] == 1

    async def test_summary_counts_and_last_login(self, audit_service, create_log):
        base = datetime.utcnow()
        await create_log(
            "user-1", ActivityAction.LOGIN,
            created_at=base - timedelta(days=2), ip_address="192.0.2.1",
        )
        await create_log(
            "user-1", ActivityAction.LOGIN,
            created_at=base - timedelta(hours=1), ip_address="192.0.2.2",
        )
        await create_log("user-1", ActivityAction.LOGIN_FAILED, created_at=base)

        summary = await audit_service.get_user_activity_summary("user-1")

        assert summary["total_actions"] == 3
        assert summary["by_action"] == {"LOGIN": 2, "LOGIN_FAILED": 1}
        assert summary["last_login"]["ip_address"] == "192.0.2.2"
        assert summary["last_login"]["timestamp"] == base - timedelta(hours=1)

    async def test_summary_without_activity(self, audit_service):
        summary = await audit_service.get_user_activity_summary("nobody")

        assert summary == {"total_actions": 0, "by_action": {}, "last_login": None}
