"""Tests for the daily archival job and its cross-worker lock."""

from datetime import datetime, timedelta, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.models.activity_log import ActivityAction
from app.services import scheduler
from app.services.scheduler import (
    ARCHIVE_LOCK_KEY,
    _seconds_until,
    archive_activity_logs,
    run_scheduled_archival,
)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for SET NX EX."""

    def __init__(self):
        self.store = {}
        self.expiry = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.expiry[key] = ex
        return True


class UnavailableRedis:
    async def set(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    client = FakeRedis()

    async def _get_redis():
        return client

    monkeypatch.setattr(scheduler, "get_redis", _get_redis)
    return client


@pytest.mark.integration
@pytest.mark.asyncio
class TestScheduledArchival:

    async def test_first_worker_archives(self, audit_service, create_log, fake_redis):
        await create_log(
            "user-1", ActivityAction.LOGIN, created_at=datetime.utcnow() - timedelta(days=120)
        )

        archived = await run_scheduled_archival(audit_service)

        assert archived == 1
        assert ARCHIVE_LOCK_KEY in fake_redis.store
        assert fake_redis.expiry[ARCHIVE_LOCK_KEY] == 600

    async def test_second_worker_skips_while_locked(
        self, audit_service, create_log, fake_redis
    ):
        await run_scheduled_archival(audit_service)
        await create_log(
            "user-1", ActivityAction.LOGIN, created_at=datetime.utcnow() - timedelta(days=120)
        )

        assert await run_scheduled_archival(audit_service) is None
        # Nothing was archived by the skipped run
        assert await audit_service.archive_old_logs() == 1

    async def test_runs_without_lock_when_redis_is_down(
        self, audit_service, create_log, monkeypatch
    ):
        async def _get_redis():
            return UnavailableRedis()

        monkeypatch.setattr(scheduler, "get_redis", _get_redis)
        await create_log(
            "user-1", ActivityAction.LOGIN, created_at=datetime.utcnow() - timedelta(days=95)
        )

        assert await run_scheduled_archival(audit_service) == 1

    async def test_archive_failure_is_reraised(self):

        class BrokenService:
            async def archive_old_logs(self, days_to_keep=None):
                raise RuntimeError("database gone")

        with pytest.raises(RuntimeError, match="database gone"):
            await archive_activity_logs(BrokenService())

    async def test_explicit_retention_is_passed_through(self, audit_service, create_log):
        await create_log(
            "user-1", ActivityAction.LOGIN, created_at=datetime.utcnow() - timedelta(days=10)
        )

        assert await archive_activity_logs(audit_service, days_to_keep=7) == 1


@pytest.mark.unit
class TestSecondsUntil:

    def test_later_today(self):
        now = datetime(2024, 3, 10, 1, 30, tzinfo=timezone.utc)

        assert _seconds_until(2, now) == 30 * 60

    def test_already_passed_rolls_to_tomorrow(self):
        now = datetime(2024, 3, 10, 2, 0, tzinfo=timezone.utc)

        assert _seconds_until(2, now) == 24 * 3600

    def test_rolls_over_month_end(self):
        now = datetime(2024, 1, 31, 23, 0, tzinfo=timezone.utc)

        assert _seconds_until(2, now) == 3 * 3600
