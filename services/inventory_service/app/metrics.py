"""Prometheus metrics for the inventory service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram

# Stock movements --------------------------------------------------------------------------
INVENTORY_MOVEMENTS_TOTAL: Final = Counter(
    "inventory_movements_total",
    "Ledger entries written, by movement type.",
    labelnames=("movement_type",),
)

INVENTORY_MOVEMENT_REJECTIONS_TOTAL: Final = Counter(
    "inventory_movement_rejections_total",
    "Movement and reservation requests rejected before anything was written.",
    labelnames=("reason",),
)

INVENTORY_INVARIANT_VIOLATIONS_TOTAL: Final = Counter(
    "inventory_invariant_violations_total",
    "Writes aborted because they would break the quantity invariant. Page on any increase.",
    labelnames=("operation",),
)

# Reservations -----------------------------------------------------------------------------
INVENTORY_RESERVATIONS_TOTAL: Final = Counter(
    "inventory_reservations_total",
    "Reservations created.",
)

INVENTORY_RESERVATION_RELEASES_TOTAL: Final = Counter(
    "inventory_reservation_releases_total",
    "Reservations resolved, by release reason.",
    labelnames=("reason",),
)

INVENTORY_SWEEP_FAILURES_TOTAL: Final = Counter(
    "inventory_sweep_failures_total",
    "Expired reservations the sweep failed to release (retried on the next run).",
)

INVENTORY_SWEEP_DURATION_SECONDS: Final = Histogram(
    "inventory_sweep_duration_seconds",
    "Wall time of one expiry sweep.",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

# Locking ----------------------------------------------------------------------------------
INVENTORY_LOCK_WAIT_SECONDS: Final = Histogram(
    "inventory_lock_wait_seconds",
    "Time spent waiting for the per-key lock.",
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

INVENTORY_DEADLINE_EXCEEDED_TOTAL: Final = Counter(
    "inventory_deadline_exceeded_total",
    "Operations cancelled and rolled back because they ran past their deadline.",
)

# Alerts -----------------------------------------------------------------------------------
INVENTORY_ALERTS_OPENED_TOTAL: Final = Counter(
    "inventory_alerts_opened_total",
    "Alerts opened, by alert type.",
    labelnames=("alert_type",),
)

INVENTORY_ALERTS_RESOLVED_TOTAL: Final = Counter(
    "inventory_alerts_resolved_total",
    "Alerts resolved, by how they were resolved.",
    labelnames=("resolution",),
)

INVENTORY_ALERT_EVALUATION_FAILURES_TOTAL: Final = Counter(
    "inventory_alert_evaluation_failures_total",
    "Best-effort alert evaluations that failed after a stock change.",
)
