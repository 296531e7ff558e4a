#!/usr/bin/env python3
"""Release expired stock reservations and re-evaluate inventory alerts once.

Operators run this when the in-service sweeper is disabled or stuck. It uses
the same release path as the service, so it is safe to run alongside it.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from datetime import datetime
from typing import Any, Sequence

from services.common import (
    ServiceSettings,
    configure_logging,
    create_schema,
    dispose_engines,
    flush_traces,
    get_session_factory,
)
from services.inventory_service.app.alerts import AlertEngine
from services.inventory_service.app.catalog import PermissiveCatalog
from services.inventory_service.app.domain import to_utc
from services.inventory_service.app.models import Base
from services.inventory_service.app.reservations import ReservationManager
from services.inventory_service.app.transactions import StockTransactions

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./inventory_service.db"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Release expired inventory reservations")
    parser.add_argument(
        "--database-url",
        default=os.getenv("INVENTORY_DATABASE_URL", DEFAULT_DATABASE_URL),
        help="Inventory database URL (default: %(default)s or INVENTORY_DATABASE_URL)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=int(os.getenv("INVENTORY_RESERVATION_SWEEP_BATCH_SIZE", "100")),
        help="Maximum reservations released in this run (default: %(default)s)",
    )
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Treat this ISO-8601 instant as the current time (default: now, UTC)",
    )
    parser.add_argument(
        "--skip-alerts",
        action="store_true",
        help="Do not re-evaluate alerts after the sweep",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before sweeping (local databases)",
    )
    args = parser.parse_args(argv)
    if args.batch_size <= 0:
        parser.error("--batch-size must be positive")
    if args.now is not None:
        args.now = to_utc(args.now)
    return args


async def run(args: argparse.Namespace) -> dict[str, Any]:
    if args.create_schema:
        await create_schema(args.database_url, Base.metadata)

    transactions = StockTransactions(get_session_factory(args.database_url))
    alerts = AlertEngine(transactions)
    reservations = ReservationManager(transactions, PermissiveCatalog(), alerts, sweep_batch_size=args.batch_size)

    report = await reservations.sweep_expired(args.now)
    evaluated = None if args.skip_alerts else await alerts.evaluate_all()
    return {
        "status": "error" if report.failed else "ok",
        "released": report.released,
        "skipped": report.skipped,
        "failed": [
            {
                "reservationId": failure.reservation_id,
                "productId": failure.key.product_id,
                "productVariantId": failure.key.variant_id,
                "error": failure.error,
            }
            for failure in report.failed
        ],
        "alertsEvaluated": evaluated,
    }


async def main_async(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(ServiceSettings(enable_metrics=False, log_level="WARNING"))
    try:
        report = await run(args)
    finally:
        await dispose_engines()
        flush_traces()

    print(json.dumps(report, indent=2, sort_keys=True))
    return 2 if report["failed"] else 0


def main(argv: Sequence[str] | None = None) -> int:
    try:
        return asyncio.run(main_async(argv))
    except Exception as exc:
        print(json.dumps({"status": "error", "error": str(exc)}))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
