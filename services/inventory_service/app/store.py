"""Inventory record store: one record per product or variant."""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from .catalog import CatalogClient, ensure_target_exists
from .domain import (
    InitialStockRef,
    InventoryKey,
    InventorySummary,
    ManualAdjustmentRef,
    MovementType,
    Page,
    RecordFilter,
    RecordUpdate,
    Thresholds,
)
from .errors import AlreadyExists, HasOpenReservations, InvalidRequest, InvariantViolation, NotFound
from .ledger import AlertEvaluator, append_entry, apply_counters, evaluate_quietly, utcnow
from .metrics import INVENTORY_ALERTS_RESOLVED_TOTAL, INVENTORY_INVARIANT_VIOLATIONS_TOTAL
from .models import InventoryRecord
from .transactions import StockTransactions

_LOGGER = logging.getLogger(__name__)


def _check_thresholds(min_stock_level: int | None, max_stock_level: int | None, reorder_point: int | None) -> None:
    for name, value in (
        ("min_stock_level", min_stock_level),
        ("max_stock_level", max_stock_level),
        ("reorder_point", reorder_point),
    ):
        if value is not None and value < 0:
            raise InvalidRequest(f"{name} must not be negative")


class RecordStore:
    """CRUD over inventory records; counter changes still go through the ledger."""

    def __init__(
        self,
        transactions: StockTransactions,
        catalog: CatalogClient,
        alerts: AlertEvaluator | None = None,
    ) -> None:
        self.transactions = transactions
        self.catalog = catalog
        self.alerts = alerts

    async def create(
        self,
        key: InventoryKey,
        initial_quantity: int,
        thresholds: Thresholds | None = None,
        *,
        timeout: float | None = None,
    ) -> InventoryRecord:
        thresholds = thresholds or Thresholds()
        if initial_quantity < 0:
            raise InvalidRequest("initial quantity must not be negative")
        _check_thresholds(thresholds.min_stock_level, thresholds.max_stock_level, thresholds.reorder_point)
        await ensure_target_exists(self.catalog, key.product_id, key.variant_id)

        try:
            record = await self.transactions.within_deadline(
                self._create(key, initial_quantity, thresholds), timeout
            )
        except IntegrityError as exc:
            # Created by another process between our check and insert.
            raise AlreadyExists(f"inventory already exists for {key}") from exc
        await evaluate_quietly(self.alerts, key)
        return record

    async def _create(self, key: InventoryKey, quantity: int, thresholds: Thresholds) -> InventoryRecord:
        async with self.transactions.locked(key) as repository:
            if await repository.get_record(key) is not None:
                raise AlreadyExists(f"inventory already exists for {key}")
            record = await repository.create_record(
                key,
                quantity=quantity,
                min_stock_level=thresholds.min_stock_level,
                max_stock_level=thresholds.max_stock_level,
                reorder_point=thresholds.reorder_point,
            )
            await append_entry(
                repository,
                record,
                movement_type=MovementType.IN,
                quantity=quantity,
                previous_quantity=0,
                previous_reserved=0,
                provenance=InitialStockRef(),
                reason="Initial inventory setup",
            )
        _LOGGER.info("Created inventory %s for %s with %s units", record.id, key, quantity)
        return record

    async def get(self, key: InventoryKey) -> InventoryRecord:
        async with self.transactions.session() as repository:
            record = await repository.get_record(key)
        if record is None:
            raise NotFound(f"inventory not found for {key}")
        return record

    async def get_by_id(self, record_id: int) -> InventoryRecord:
        async with self.transactions.session() as repository:
            record = await repository.get_record_by_id(record_id)
        if record is None:
            raise NotFound(f"inventory {record_id} not found")
        return record

    async def update(
        self,
        key: InventoryKey,
        changes: RecordUpdate,
        *,
        timeout: float | None = None,
    ) -> InventoryRecord:
        """Apply threshold and counter changes to the record for ``key``.

        A new total quantity is recorded as an ``adjustment`` ledger entry. The
        reserved count cannot be changed here, and counters supplied together
        must agree with ``available = quantity - reserved``.
        """

        _check_thresholds(changes.min_stock_level, changes.max_stock_level, changes.reorder_point)
        record = await self.transactions.within_deadline(self._update(key, changes), timeout)
        await evaluate_quietly(self.alerts, key)
        return record

    async def _update(self, key: InventoryKey, changes: RecordUpdate) -> InventoryRecord:
        async with self.transactions.locked(key) as repository:
            record = await repository.get_record(key, for_update=True)
            if record is None:
                raise NotFound(f"inventory not found for {key}")

            previous_quantity = record.quantity
            reserved = record.reserved_quantity
            if changes.reserved_quantity is not None and changes.reserved_quantity != reserved:
                self._reject_counters(
                    key, f"reserved quantity is owned by reservations ({reserved} held)"
                )
            quantity = changes.quantity if changes.quantity is not None else previous_quantity
            if changes.available_quantity is not None and changes.available_quantity != quantity - reserved:
                self._reject_counters(
                    key,
                    f"available {changes.available_quantity} does not match quantity {quantity} - reserved {reserved}",
                )
            apply_counters(record, quantity=quantity, reserved=reserved, operation="update")

            if changes.min_stock_level is not None:
                record.min_stock_level = changes.min_stock_level
            if changes.max_stock_level is not None:
                record.max_stock_level = changes.max_stock_level
            if changes.reorder_point is not None:
                record.reorder_point = changes.reorder_point

            if quantity != previous_quantity:
                await append_entry(
                    repository,
                    record,
                    movement_type=MovementType.ADJUSTMENT,
                    quantity=quantity,
                    previous_quantity=previous_quantity,
                    previous_reserved=reserved,
                    provenance=ManualAdjustmentRef(changes.updated_by),
                    reason="Manual inventory update",
                )
            else:
                await repository.save_record(record)
        _LOGGER.info("Updated inventory %s for %s", record.id, key)
        return record

    @staticmethod
    def _reject_counters(key: InventoryKey, detail: str) -> None:
        INVENTORY_INVARIANT_VIOLATIONS_TOTAL.labels(operation="update").inc()
        _LOGGER.error("Rejected counter update on %s: %s", key, detail)
        raise InvariantViolation(detail)

    async def delete(self, key: InventoryKey, *, timeout: float | None = None) -> None:
        await self.transactions.within_deadline(self._delete(key), timeout)

    async def _delete(self, key: InventoryKey) -> None:
        async with self.transactions.locked(key) as repository:
            record = await repository.get_record(key, for_update=True)
            if record is None:
                raise NotFound(f"inventory not found for {key}")
            open_reservations = await repository.count_reservations(key)
            if open_reservations:
                raise HasOpenReservations(
                    f"inventory for {key} still has {open_reservations} reservation(s)"
                )
            # Nothing re-evaluates a deleted key, so its alerts are closed here.
            now = utcnow()
            for alert in await repository.list_open_alerts(key):
                await repository.mark_alert_resolved(alert, resolved_at=now)
                INVENTORY_ALERTS_RESOLVED_TOTAL.labels(resolution="deleted").inc()
            await repository.delete_record(record)
        _LOGGER.info("Deleted inventory %s for %s", record.id, key)

    async def list(self, filters: RecordFilter, page: Page) -> tuple[list[InventoryRecord], int]:
        async with self.transactions.session() as repository:
            return await repository.list_records(filters, page)

    async def summary(self) -> InventorySummary:
        async with self.transactions.session() as repository:
            return await repository.summarize()
