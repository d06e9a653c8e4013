"""Security-alert detection: heuristic scans over activity logs and orders.

Each detect_* function scans one bounded time window for a single abuse
pattern and returns a list of SecurityAlert objects (never persisted).
The detectors share nothing but the read model, so
`get_all_security_alerts` runs them concurrently, one session each,
and merges the results into a single severity-ordered feed.

Alerts are recomputed from scratch on every call.  Dismissing an alert
is recorded in the activity log (see AuditLogService) and does not stop
the same signal from being raised by the next scan.

Thresholds:
    - FAILED_LOGIN_*:       brute-force attempts per user
    - LOCATION_*:           account takeover via login from a new country
    - ACCOUNT_CREATION_*:   fraud rings registering from one IP
    - HIGH_VALUE_*:         large first order from a brand-new account
    - RAPID_ORDER_*:        card-testing bursts
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.activity_log import ActivityAction, ActivityLog
from app.models.order import Order
from app.models.user import User
from app.schemas.security import (
    SEVERITY_RANK,
    AlertSeverity,
    AlertType,
    SecurityAlert,
)

logger = logging.getLogger("storefront.security")

# ── Detection thresholds ─────────────────────────────────────
FAILED_LOGIN_WINDOW = timedelta(minutes=10)
FAILED_LOGIN_THRESHOLD = 5
FAILED_LOGIN_HIGH_THRESHOLD = 10

LOCATION_RECENT_WINDOW = timedelta(hours=24)
LOCATION_HISTORY_WINDOW = timedelta(days=90)

ACCOUNT_CREATION_WINDOW = timedelta(hours=1)
ACCOUNT_CREATION_THRESHOLD = 3
ACCOUNT_CREATION_HIGH_THRESHOLD = 5

HIGH_VALUE_WINDOW = timedelta(hours=24)
HIGH_VALUE_MIN_TOTAL = 50000      # $500.00 in cents
NEW_ACCOUNT_MAX_AGE_DAYS = 7

RAPID_ORDER_WINDOW = timedelta(minutes=5)
RAPID_ORDER_THRESHOLD = 3


def _minutes(window: timedelta) -> int:
    return int(window.total_seconds() // 60)


def _country(metadata: dict | None) -> str | None:
    """Country recorded on a LOGIN event, if any."""
    if not isinstance(metadata, dict):
        return None
    return metadata.get("country") or None


async def _load_users(db: AsyncSession, user_ids) -> dict[str, User]:
    """Fetch users by id for alert enrichment (email / name)."""
    user_ids = list(user_ids)
    if not user_ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(user_ids)))
    return {u.id: u for u in result.scalars().all()}


def _user_label(user: User | None, user_id: str) -> str:
    return user.email if user else user_id


# ─────────────────────────────────────────────────────────────
# DETECTOR 1:  Brute force (repeated LOGIN_FAILED per user)
# ─────────────────────────────────────────────────────────────

async def detect_failed_login_attempts(
    db: AsyncSession, now: datetime | None = None,
) -> list[SecurityAlert]:
    """Flag users with FAILED_LOGIN_THRESHOLD+ failed logins in the last
    10 minutes.  An event exactly on the window start does not count."""
    now = now or datetime.utcnow()
    since = now - FAILED_LOGIN_WINDOW

    in_window = (
        ActivityLog.action == ActivityAction.LOGIN_FAILED,
        ActivityLog.created_at > since,
        ActivityLog.created_at <= now,
    )

    attempts = func.count(ActivityLog.id)
    result = await db.execute(
        select(ActivityLog.user_id, attempts.label("attempts"))
        .where(*in_window)
        .group_by(ActivityLog.user_id)
        .having(attempts >= FAILED_LOGIN_THRESHOLD)
    )
    rows = sorted(result.all(), key=lambda r: (-r.attempts, r.user_id))
    if not rows:
        return []

    flagged = [row.user_id for row in rows]

    # Distinct source IPs per flagged user, for the evidence panel
    ip_result = await db.execute(
        select(ActivityLog.user_id, ActivityLog.ip_address)
        .where(*in_window, ActivityLog.user_id.in_(flagged))
        .distinct()
    )
    ips_by_user: dict[str, set[str]] = defaultdict(set)
    for user_id, ip_address in ip_result.all():
        ips_by_user[user_id].add(ip_address)

    users = await _load_users(db, flagged)
    window_minutes = _minutes(FAILED_LOGIN_WINDOW)

    alerts = []
    for row in rows:
        user = users.get(row.user_id)
        severity = (
            AlertSeverity.HIGH
            if row.attempts >= FAILED_LOGIN_HIGH_THRESHOLD
            else AlertSeverity.MEDIUM
        )
        alerts.append(SecurityAlert(
            type=AlertType.FAILED_LOGIN,
            severity=severity,
            user_id=row.user_id,
            user_email=user.email if user else None,
            user_name=user.name if user else None,
            count=row.attempts,
            message=(
                f"{row.attempts} failed login attempts in {window_minutes} minutes "
                f"for {_user_label(user, row.user_id)}"
            ),
            evidence={
                "window_minutes": window_minutes,
                "threshold": FAILED_LOGIN_THRESHOLD,
                "attempts": row.attempts,
                "ip_addresses": sorted(ips_by_user[row.user_id]),
            },
            timestamp=now,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# DETECTOR 2:  Account takeover (login from a never-seen country)
# ─────────────────────────────────────────────────────────────

async def detect_unusual_login_locations(
    db: AsyncSession, now: datetime | None = None,
) -> list[SecurityAlert]:
    """Compare each user's most recent login (last 24h) against the
    countries seen in their logins from 90 days ago up to 24 hours ago.

    Users without any historical country are skipped: a first login
    has nothing to deviate from.  Recently active users are matched to
    their history through a subquery, so the bind parameter count stays
    fixed however many users logged in."""
    now = now or datetime.utcnow()
    recent_since = now - LOCATION_RECENT_WINDOW
    history_since = now - LOCATION_HISTORY_WINDOW

    recent_logins = (
        ActivityLog.action == ActivityAction.LOGIN,
        ActivityLog.created_at >= recent_since,
        ActivityLog.created_at <= now,
    )

    recent_result = await db.execute(
        select(
            ActivityLog.user_id,
            ActivityLog.metadata_,
            ActivityLog.ip_address,
            ActivityLog.created_at,
        )
        .where(*recent_logins)
        .order_by(ActivityLog.created_at.desc())
    )
    latest_login = {}
    for row in recent_result.all():
        latest_login.setdefault(row.user_id, row)

    if not latest_login:
        return []

    history_result = await db.execute(
        select(ActivityLog.user_id, ActivityLog.metadata_)
        .where(
            ActivityLog.action == ActivityAction.LOGIN,
            ActivityLog.user_id.in_(
                select(ActivityLog.user_id).where(*recent_logins).distinct()
            ),
            ActivityLog.created_at >= history_since,
            ActivityLog.created_at < recent_since,
        )
    )
    known_countries: dict[str, set[str]] = defaultdict(set)
    for user_id, metadata in history_result.all():
        country = _country(metadata)
        if country:
            known_countries[user_id].add(country)

    suspicious = []
    for user_id, login in latest_login.items():
        country = _country(login.metadata_)
        known = known_countries.get(user_id)
        if not country or not known or country in known:
            continue
        suspicious.append((user_id, login, country, known))

    if not suspicious:
        return []

    users = await _load_users(db, [s[0] for s in suspicious])

    alerts = []
    for user_id, login, country, known in sorted(suspicious, key=lambda s: s[0]):
        user = users.get(user_id)
        historical = sorted(known)
        alerts.append(SecurityAlert(
            type=AlertType.UNUSUAL_LOCATION,
            severity=AlertSeverity.HIGH,
            user_id=user_id,
            user_email=user.email if user else None,
            user_name=user.name if user else None,
            ip_address=login.ip_address,
            message=(
                f"{_user_label(user, user_id)} logged in from {country} "
                f"(previously seen: {', '.join(historical)})"
            ),
            evidence={
                "current_country": country,
                "current_city": (login.metadata_ or {}).get("city"),
                "historical_countries": historical,
                "ip_address": login.ip_address,
                "login_at": login.created_at.isoformat(),
            },
            timestamp=now,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# DETECTOR 3:  Fraud ring (many accounts registered from one IP)
# ─────────────────────────────────────────────────────────────

async def detect_rapid_account_creation(
    db: AsyncSession, now: datetime | None = None,
) -> list[SecurityAlert]:
    """Flag IPs that registered ACCOUNT_CREATION_THRESHOLD+ distinct
    accounts within the last hour."""
    now = now or datetime.utcnow()
    since = now - ACCOUNT_CREATION_WINDOW

    in_window = (
        ActivityLog.action == ActivityAction.USER_CREATED,
        ActivityLog.created_at >= since,
        ActivityLog.created_at <= now,
    )

    accounts = func.count(distinct(ActivityLog.user_id))
    result = await db.execute(
        select(ActivityLog.ip_address, accounts.label("accounts"))
        .where(*in_window)
        .group_by(ActivityLog.ip_address)
        .having(accounts >= ACCOUNT_CREATION_THRESHOLD)
    )
    rows = sorted(result.all(), key=lambda r: (-r.accounts, r.ip_address))
    if not rows:
        return []

    members_result = await db.execute(
        select(ActivityLog.ip_address, ActivityLog.user_id)
        .where(*in_window, ActivityLog.ip_address.in_([r.ip_address for r in rows]))
        .distinct()
    )
    users_by_ip: dict[str, set[str]] = defaultdict(set)
    for ip_address, user_id in members_result.all():
        users_by_ip[ip_address].add(user_id)

    window_minutes = _minutes(ACCOUNT_CREATION_WINDOW)

    alerts = []
    for row in rows:
        severity = (
            AlertSeverity.HIGH
            if row.accounts >= ACCOUNT_CREATION_HIGH_THRESHOLD
            else AlertSeverity.MEDIUM
        )
        alerts.append(SecurityAlert(
            type=AlertType.RAPID_ACCOUNT_CREATION,
            severity=severity,
            ip_address=row.ip_address,
            user_ids=sorted(users_by_ip[row.ip_address]),
            count=row.accounts,
            message=(
                f"{row.accounts} accounts created from {row.ip_address} "
                f"in {window_minutes} minutes"
            ),
            evidence={
                "window_minutes": window_minutes,
                "threshold": ACCOUNT_CREATION_THRESHOLD,
                "accounts": row.accounts,
            },
            timestamp=now,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# DETECTOR 4:  Payment fraud (high-value first order, new account)
# ─────────────────────────────────────────────────────────────

async def detect_high_value_new_accounts(
    db: AsyncSession, now: datetime | None = None,
) -> list[SecurityAlert]:
    """Flag orders of HIGH_VALUE_MIN_TOTAL+ placed in the last 24 hours
    that are the owner's first-ever order on an account at most
    NEW_ACCOUNT_MAX_AGE_DAYS old.  Both conditions must hold."""
    now = now or datetime.utcnow()
    since = now - HIGH_VALUE_WINDOW

    result = await db.execute(
        select(Order, User)
        .join(User, Order.user_id == User.id)
        .where(
            Order.created_at >= since,
            Order.created_at <= now,
            Order.total >= HIGH_VALUE_MIN_TOTAL,
        )
        .order_by(Order.created_at.desc())
    )
    candidates = result.all()
    if not candidates:
        return []

    # Lifetime order count per candidate user
    count_result = await db.execute(
        select(Order.user_id, func.count(Order.id))
        .where(Order.user_id.in_(list({order.user_id for order, _ in candidates})))
        .group_by(Order.user_id)
    )
    lifetime_orders = dict(count_result.all())

    alerts = []
    for order, user in candidates:
        account_age_days = (now - user.created_at).days
        is_first_order = lifetime_orders.get(user.id, 0) == 1

        if account_age_days > NEW_ACCOUNT_MAX_AGE_DAYS or not is_first_order:
            continue

        alerts.append(SecurityAlert(
            type=AlertType.HIGH_VALUE_NEW_ACCOUNT,
            severity=AlertSeverity.HIGH,
            user_id=user.id,
            user_email=user.email,
            user_name=user.name,
            order_id=order.id,
            order_value=order.total,
            message=(
                f"${order.total / 100:,.2f} first order from "
                f"{account_age_days}-day-old account {user.email}"
            ),
            evidence={
                "order_number": order.order_number,
                "order_value": order.total,
                "threshold": HIGH_VALUE_MIN_TOTAL,
                "account_age_days": account_age_days,
                "max_account_age_days": NEW_ACCOUNT_MAX_AGE_DAYS,
                "is_first_order": is_first_order,
            },
            timestamp=now,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# DETECTOR 5:  Card testing (burst of orders from one user)
# ─────────────────────────────────────────────────────────────

async def detect_rapid_orders(
    db: AsyncSession, now: datetime | None = None,
) -> list[SecurityAlert]:
    """Flag users with RAPID_ORDER_THRESHOLD+ orders in the last 5
    minutes.  Any qualifying burst is CRITICAL; there are no tiers."""
    now = now or datetime.utcnow()
    since = now - RAPID_ORDER_WINDOW

    result = await db.execute(
        select(Order.user_id, Order.id, Order.total)
        .where(Order.created_at >= since, Order.created_at <= now)
        .order_by(Order.created_at.asc())
    )
    orders_by_user: dict[str, list[tuple[str, int]]] = defaultdict(list)
    for user_id, order_id, total in result.all():
        orders_by_user[user_id].append((order_id, total))

    flagged = {
        user_id: orders
        for user_id, orders in orders_by_user.items()
        if len(orders) >= RAPID_ORDER_THRESHOLD
    }
    if not flagged:
        return []

    users = await _load_users(db, flagged)
    window_minutes = _minutes(RAPID_ORDER_WINDOW)

    alerts = []
    for user_id in sorted(flagged):
        orders = flagged[user_id]
        user = users.get(user_id)
        alerts.append(SecurityAlert(
            type=AlertType.RAPID_ORDERS,
            severity=AlertSeverity.CRITICAL,
            user_id=user_id,
            user_email=user.email if user else None,
            user_name=user.name if user else None,
            count=len(orders),
            message=(
                f"{len(orders)} orders in {window_minutes} minutes from "
                f"{_user_label(user, user_id)} (possible card testing)"
            ),
            evidence={
                "window_minutes": window_minutes,
                "threshold": RAPID_ORDER_THRESHOLD,
                "order_ids": [order_id for order_id, _ in orders],
                "total_value": sum(total for _, total in orders),
            },
            timestamp=now,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# AGGREGATOR
# ─────────────────────────────────────────────────────────────

Detector = Callable[[AsyncSession, datetime], Awaitable[list[SecurityAlert]]]

DETECTORS: tuple[Detector, ...] = (
    detect_failed_login_attempts,
    detect_unusual_login_locations,
    detect_rapid_account_creation,
    detect_high_value_new_accounts,
    detect_rapid_orders,
)


def sort_by_severity(alerts: list[SecurityAlert]) -> list[SecurityAlert]:
    """Stable sort: CRITICAL, HIGH, MEDIUM, LOW; detector order kept within a tier."""
    return sorted(alerts, key=lambda a: SEVERITY_RANK[a.severity])


async def _run_detector(
    session_factory: async_sessionmaker[AsyncSession],
    detector: Detector,
    now: datetime,
) -> list[SecurityAlert]:
    async with session_factory() as db:
        return await detector(db, now)


async def get_all_security_alerts(
    session_factory: async_sessionmaker[AsyncSession],
    now: datetime | None = None,
    detectors: tuple[Detector, ...] = DETECTORS,
) -> list[SecurityAlert]:
    """Run every detector concurrently and return one severity-sorted feed.

    No de-duplication: a user may legitimately appear under several
    alert types.  A failing detector cancels the others (releasing
    their sessions) and its exception is raised to the caller; there is
    no partial result.
    """
    now = now or datetime.utcnow()

    try:
        async with asyncio.TaskGroup() as tg:
            tasks = [
                tg.create_task(_run_detector(session_factory, detector, now))
                for detector in detectors
            ]
    except ExceptionGroup as eg:
        # Surface the detector's own error, not the group wrapper
        raise eg.exceptions[0]

    alerts = sort_by_severity(
        [alert for task in tasks for alert in task.result()]
    )

    by_severity: dict[str, int] = {}
    for a in alerts:
        by_severity[a.severity.value] = by_severity.get(a.severity.value, 0) + 1
    logger.info(
        "Security scan complete: %d alerts (critical=%d, high=%d, medium=%d, low=%d)",
        len(alerts),
        by_severity.get("CRITICAL", 0),
        by_severity.get("HIGH", 0),
        by_severity.get("MEDIUM", 0),
        by_severity.get("LOW", 0),
    )
    return alerts
