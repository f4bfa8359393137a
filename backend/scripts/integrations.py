"""Integration maintenance commands.

Run:
    python -m scripts.integrations list [--user ID] [--status active] [--limit 10]
    python -m scripts.integrations cleanup-expired
"""

import argparse
import asyncio
import os
import sys

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def format_table(headers: list[str], rows: list[list[str]]) -> str:
    """Render rows as a fixed-width text table."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    def line(cells):
        return " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells))

    separator = "-+-".join("-" * w for w in widths)
    return "\n".join([line(headers), separator, *(line(row) for row in rows)])


async def list_integrations(user_id=None, status=None, limit=10) -> int:
    """Print a table of integrations."""
    from app.dependencies import get_policy_config
    from db.database import AsyncSessionLocal, init_db
    from services.integration_service import IntegrationService

    await init_db()
    async with AsyncSessionLocal() as db:
        svc = IntegrationService(db, get_policy_config())
        items, total = await svc.list_for_user(
            user_id=user_id, status=status, page=1, per_page=limit
        )

    if not items:
        print("No integrations found.")
        return 0

    headers = ["ID", "Name", "Client ID", "Status", "User ID", "Created At"]
    rows = [
        [
            integration.id,
            integration.name,
            integration.client_id,
            integration.status,
            integration.user_id or "",
            integration.created_at.strftime("%Y-%m-%d %H:%M:%S") if integration.created_at else "",
        ]
        for integration in items
    ]
    print(format_table(headers, rows))
    print(f"\n{len(items)} of {total} integration(s)")
    return 0


async def cleanup_expired() -> int:
    """Soft-delete expired secrets of every integration."""
    from sqlalchemy import select

    from app.dependencies import get_policy_config
    from db.database import init_db, session_scope
    from db.models.integration import Integration
    from services.secret_service import SecretLifecycleManager

    await init_db()
    removed = 0
    async with session_scope() as db:
        manager = SecretLifecycleManager(db, get_policy_config())
        result = await db.execute(
            select(Integration).where(Integration.not_deleted())
        )
        for integration in result.scalars().all():
            removed += await manager.cleanup_expired(integration)

    print(f"[cleanup] Removed {removed} expired secret(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Integration maintenance commands")
    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="List integrations")
    list_cmd.add_argument("--user", dest="user_id", help="Filter by user ID")
    list_cmd.add_argument("--status", choices=["active", "inactive"], help="Filter by status")
    list_cmd.add_argument("--limit", type=int, default=10, help="Limit the number of results")

    sub.add_parser("cleanup-expired", help="Remove expired secrets")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "list":
        return asyncio.run(list_integrations(args.user_id, args.status, args.limit))
    return asyncio.run(cleanup_expired())


if __name__ == "__main__":
    sys.exit(main())
