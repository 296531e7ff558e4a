"""Movement ledger: the only path that changes total stock quantity."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from .domain import (
    STOCK_MOVEMENT_TYPES,
    InventoryKey,
    MovementFilter,
    MovementType,
    Page,
    Provenance,
    encode_provenance,
)
from .errors import InsufficientStock, InvalidRequest, InvariantViolation, NotFound
from .metrics import (
    INVENTORY_ALERT_EVALUATION_FAILURES_TOTAL,
    INVENTORY_INVARIANT_VIOLATIONS_TOTAL,
    INVENTORY_MOVEMENT_REJECTIONS_TOTAL,
    INVENTORY_MOVEMENTS_TOTAL,
)
from .models import InventoryMovement, InventoryRecord
from .repository import InventoryRepository
from .transactions import StockTransactions

_LOGGER = logging.getLogger(__name__)


class AlertEvaluator(Protocol):
    async def evaluate(self, key: InventoryKey) -> object: ...


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def apply_counters(record: InventoryRecord, *, quantity: int, reserved: int, operation: str) -> None:
    """Write new counters onto ``record`` or abort with ``InvariantViolation``.

    ``available_quantity`` is always derived here, never taken from a caller.
    """

    available = quantity - reserved
    if quantity < 0 or reserved < 0 or available < 0:
        INVENTORY_INVARIANT_VIOLATIONS_TOTAL.labels(operation=operation).inc()
        _LOGGER.error(
            "Invariant violation during %s on %s: quantity=%s reserved=%s available=%s",
            operation,
            record.key,
            quantity,
            reserved,
            available,
        )
        raise InvariantViolation(
            f"{operation} would leave quantity={quantity} reserved={reserved} available={available}"
        )
    record.quantity = quantity
    record.reserved_quantity = reserved
    record.available_quantity = available


def next_quantity(movement_type: MovementType, record: InventoryRecord, quantity: int) -> int:
    """Total quantity after applying a stock movement of ``quantity`` units.

    Outbound movements may only take unreserved units; stock held by a
    reservation leaves through ``ReservationManager.fulfill_order``.
    """

    current = record.quantity
    if movement_type is MovementType.IN:
        return current + quantity
    if movement_type in (MovementType.OUT, MovementType.TRANSFER):
        if quantity > record.available_quantity:
            raise InsufficientStock(requested=quantity, available=record.available_quantity)
        return current - quantity
    if movement_type is MovementType.ADJUSTMENT:
        return quantity
    raise InvalidRequest(f"{movement_type.value} entries are written by the reservation manager")


def validate_movement(movement_type: MovementType, quantity: int) -> None:
    if movement_type not in STOCK_MOVEMENT_TYPES:
        raise InvalidRequest(f"{movement_type.value} is not a stock movement type")
    if quantity < 0 or (quantity == 0 and movement_type is not MovementType.ADJUSTMENT):
        raise InvalidRequest("movement quantity must be positive")


async def append_entry(
    repository: InventoryRepository,
    record: InventoryRecord,
    *,
    movement_type: MovementType,
    quantity: int,
    previous_quantity: int,
    previous_reserved: int,
    provenance: Provenance,
    reason: str | None = None,
    notes: str | None = None,
) -> InventoryMovement:
    """Persist ``record``'s new counters and its ledger entry in the caller's transaction."""

    encoded = encode_provenance(provenance)
    await repository.save_record(record)
    movement = await repository.add_movement(
        InventoryMovement(
            product_id=record.product_id,
            product_variant_id=record.product_variant_id,
            movement_type=movement_type.value,
            quantity=quantity,
            previous_quantity=previous_quantity,
            new_quantity=record.quantity,
            previous_reserved=previous_reserved,
            new_reserved=record.reserved_quantity,
            reference=encoded.reference,
            reference_type=encoded.reference_type,
            reason=reason,
            notes=notes,
            created_by=encoded.created_by,
        )
    )
    INVENTORY_MOVEMENTS_TOTAL.labels(movement_type=movement_type.value).inc()
    return movement


class MovementLedger:
    """Applies stock movements and keeps the append-only history."""

    def __init__(self, transactions: StockTransactions, alerts: AlertEvaluator | None = None) -> None:
        self.transactions = transactions
        self.alerts = alerts

    async def record_movement(
        self,
        key: InventoryKey,
        movement_type: MovementType,
        quantity: int,
        provenance: Provenance,
        *,
        reason: str | None = None,
        notes: str | None = None,
        timeout: float | None = None,
    ) -> InventoryMovement:
        validate_movement(movement_type, quantity)
        movement = await self.transactions.within_deadline(
            self._apply(key, movement_type, quantity, provenance, reason=reason, notes=notes),
            timeout,
        )
        await evaluate_quietly(self.alerts, key)
        return movement

    async def _apply(
        self,
        key: InventoryKey,
        movement_type: MovementType,
        quantity: int,
        provenance: Provenance,
        *,
        reason: str | None,
        notes: str | None,
    ) -> InventoryMovement:
        async with self.transactions.locked(key) as repository:
            record = await repository.get_record(key, for_update=True)
            if record is None:
                raise NotFound(f"inventory not found for {key}")
            previous_quantity = record.quantity
            previous_reserved = record.reserved_quantity
            try:
                new_quantity = next_quantity(movement_type, record, quantity)
            except InsufficientStock:
                INVENTORY_MOVEMENT_REJECTIONS_TOTAL.labels(reason="insufficient_stock").inc()
                raise
            apply_counters(
                record,
                quantity=new_quantity,
                reserved=previous_reserved,
                operation=f"movement:{movement_type.value}",
            )
            if movement_type is MovementType.IN:
                record.last_restocked = utcnow()
            movement = await append_entry(
                repository,
                record,
                movement_type=movement_type,
                quantity=quantity,
                previous_quantity=previous_quantity,
                previous_reserved=previous_reserved,
                provenance=provenance,
                reason=reason,
                notes=notes,
            )
        _LOGGER.info(
            "Recorded %s movement of %s on %s: %s -> %s",
            movement_type.value,
            quantity,
            key,
            previous_quantity,
            movement.new_quantity,
        )
        return movement

    async def get_movement(self, movement_id: int) -> InventoryMovement:
        async with self.transactions.session() as repository:
            movement = await repository.get_movement(movement_id)
        if movement is None:
            raise NotFound(f"stock movement {movement_id} not found")
        return movement

    async def list_movements(
        self, filters: MovementFilter, page: Page
    ) -> tuple[list[InventoryMovement], int]:
        async with self.transactions.session() as repository:
            return await repository.list_movements(filters, page)


async def evaluate_quietly(alerts: AlertEvaluator | None, key: InventoryKey) -> None:
    """Re-evaluate alerts after a committed stock change; failures are logged, not raised."""

    if alerts is None:
        return
    try:
        await alerts.evaluate(key)
    except Exception:
        INVENTORY_ALERT_EVALUATION_FAILURES_TOTAL.inc()
        _LOGGER.warning("Alert evaluation failed for %s after a stock change", key, exc_info=True)
