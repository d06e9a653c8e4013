"""Operator CLI for the security service.

Usage:
    python -m app.cli archive-logs [--days N]   # Run the retention sweep now
    python -m app.cli security-alerts           # Print the current alert feed
"""

import argparse
import asyncio
import sys

from app.database import async_session, engine
from app.services.audit_log import AuditLogService
from app.services.scheduler import archive_activity_logs


async def _archive_logs(days: int | None) -> int:
    service = AuditLogService(async_session)
    try:
        return await archive_activity_logs(service, days)
    finally:
        await engine.dispose()


async def _security_alerts() -> list:
    service = AuditLogService(async_session)
    try:
        return await service.get_all_security_alerts()
    finally:
        await engine.dispose()


def archive_logs(days: int | None):
    count = asyncio.run(_archive_logs(days))
    print(f"Archived {count} log(s)")


def security_alerts():
    alerts = asyncio.run(_security_alerts())
    for a in alerts:
        print(f"  [{a.severity.value:<8}] {a.type.value:<24} {a.message}")
    print(f"\n{len(alerts)} alert(s)")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(prog="python -m app.cli")
    sub = parser.add_subparsers(dest="command")

    archive = sub.add_parser("archive-logs", help="archive activity logs past retention")
    archive.add_argument("--days", type=int, default=None, help="days to keep (default: settings)")

    sub.add_parser("security-alerts", help="print the current security alert feed")

    args = parser.parse_args(argv)
    if args.command == "archive-logs":
        archive_logs(args.days)
    elif args.command == "security-alerts":
        security_alerts()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
