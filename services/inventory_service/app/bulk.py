"""Bulk stock updates: many movements, each applied on its own."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from .domain import InventoryKey, MovementType, Provenance, RestockRef
from .errors import InventoryError
from .ledger import MovementLedger
from .models import InventoryMovement

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BulkItem:
    key: InventoryKey
    movement_type: MovementType
    quantity: int
    provenance: Provenance = field(default_factory=RestockRef)
    reason: str | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class BulkFailure:
    key: InventoryKey
    error: str


@dataclass(slots=True)
class BulkResult:
    movements: list[InventoryMovement] = field(default_factory=list)
    failed_items: list[BulkFailure] = field(default_factory=list)

    @property
    def updated_items(self) -> int:
        return len(self.movements)

    @property
    def success(self) -> bool:
        return not self.failed_items


class BulkCoordinator:
    """Runs each item through the ledger and reports failures instead of raising.

    Items commit independently: a failure leaves earlier items applied.
    """

    def __init__(self, ledger: MovementLedger) -> None:
        self.ledger = ledger

    async def bulk_apply(self, items: list[BulkItem], *, timeout: float | None = None) -> BulkResult:
        result = BulkResult()
        for item in items:
            try:
                movement = await self.ledger.record_movement(
                    item.key,
                    item.movement_type,
                    item.quantity,
                    item.provenance,
                    reason=item.reason,
                    notes=item.notes,
                    timeout=timeout,
                )
            except (InventoryError, SQLAlchemyError) as exc:
                _LOGGER.info("Bulk item for %s failed: %s", item.key, exc)
                result.failed_items.append(BulkFailure(item.key, str(exc)))
                continue
            result.movements.append(movement)

        if result.failed_items:
            _LOGGER.warning(
                "Bulk update applied %s of %s items", result.updated_items, len(items)
            )
        return result
