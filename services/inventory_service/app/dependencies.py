"""Dependency helpers for inventory service."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from .alerts import AlertEngine
from .bulk import BulkCoordinator
from .ledger import MovementLedger
from .reservations import ReservationManager
from .store import RecordStore


def _component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Inventory service is starting")
    return component


def get_store(request: Request) -> RecordStore:
    return _component(request, "record_store")


def get_ledger(request: Request) -> MovementLedger:
    return _component(request, "movement_ledger")


def get_reservations(request: Request) -> ReservationManager:
    return _component(request, "reservation_manager")


def get_alerts(request: Request) -> AlertEngine:
    return _component(request, "alert_engine")


def get_bulk(request: Request) -> BulkCoordinator:
    return _component(request, "bulk_coordinator")
