"""Reservation manager: time-bounded holds on available stock.

A reservation moves units from available to reserved on its record and is
resolved exactly once: released by the caller, released by the expiry sweep,
or fulfilled into a permanent ``out`` movement. Every resolution deletes the
reservation row; the ledger entry's reason records which one happened.

Each reservation is resolved in its own per-key transaction. Operations that
touch several reservations (by order, or the sweep) therefore never hold more
than one key lock at a time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from time import perf_counter

from .catalog import CatalogClient, ensure_target_exists
from .domain import (
    InventoryKey,
    MovementType,
    OrderRef,
    Provenance,
    ReleaseReason,
    ReservationRef,
    SweepRef,
)
from .errors import InsufficientStock, InvalidRequest, InvariantViolation, NotFound
from .ledger import AlertEvaluator, append_entry, apply_counters, evaluate_quietly, utcnow
from .metrics import (
    INVENTORY_INVARIANT_VIOLATIONS_TOTAL,
    INVENTORY_MOVEMENT_REJECTIONS_TOTAL,
    INVENTORY_RESERVATION_RELEASES_TOTAL,
    INVENTORY_RESERVATIONS_TOTAL,
    INVENTORY_SWEEP_DURATION_SECONDS,
    INVENTORY_SWEEP_FAILURES_TOTAL,
)
from .models import InventoryMovement, InventoryRecord, StockReservation
from .repository import InventoryRepository
from .transactions import StockTransactions

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepFailure:
    reservation_id: int
    key: InventoryKey
    error: str


@dataclass(slots=True)
class SweepReport:
    released: list[int] = field(default_factory=list)
    failed: list[SweepFailure] = field(default_factory=list)
    skipped: int = 0


class ReservationManager:
    """Creates, releases, fulfills and expires stock reservations."""

    def __init__(
        self,
        transactions: StockTransactions,
        catalog: CatalogClient,
        alerts: AlertEvaluator | None = None,
        *,
        default_ttl: timedelta = timedelta(minutes=15),
        sweep_batch_size: int = 100,
    ) -> None:
        self.transactions = transactions
        self.catalog = catalog
        self.alerts = alerts
        self.default_ttl = default_ttl
        self.sweep_batch_size = sweep_batch_size
        # Reservations the last sweeps could not release; picked up after fresh ones.
        self._sweep_failures: set[int] = set()

    # Reserve --------------------------------------------------------------------------------

    async def reserve(
        self,
        order_id: int,
        key: InventoryKey,
        quantity: int,
        ttl: timedelta | None = None,
        *,
        timeout: float | None = None,
    ) -> StockReservation:
        if quantity <= 0:
            raise InvalidRequest("reservation quantity must be positive")
        hold_for = ttl if ttl is not None else self.default_ttl
        if hold_for <= timedelta(0):
            raise InvalidRequest("reservation ttl must be positive")
        await ensure_target_exists(self.catalog, key.product_id, key.variant_id)
        reservation = await self.transactions.within_deadline(
            self._reserve(order_id, key, quantity, hold_for), timeout
        )
        await evaluate_quietly(self.alerts, key)
        return reservation

    async def _reserve(
        self, order_id: int, key: InventoryKey, quantity: int, ttl: timedelta
    ) -> StockReservation:
        async with self.transactions.locked(key) as repository:
            record = await repository.get_record(key, for_update=True)
            if record is None:
                raise NotFound(f"inventory not found for {key}")
            if quantity > record.available_quantity:
                INVENTORY_MOVEMENT_REJECTIONS_TOTAL.labels(reason="insufficient_stock").inc()
                raise InsufficientStock(requested=quantity, available=record.available_quantity)

            previous_reserved = record.reserved_quantity
            apply_counters(
                record,
                quantity=record.quantity,
                reserved=previous_reserved + quantity,
                operation="reserve",
            )
            reservation = await repository.add_reservation(
                key,
                order_id=order_id,
                quantity=quantity,
                expires_at=utcnow() + ttl,
            )
            await append_entry(
                repository,
                record,
                movement_type=MovementType.RESERVE,
                quantity=quantity,
                previous_quantity=record.quantity,
                previous_reserved=previous_reserved,
                provenance=ReservationRef(order_id),
                reason="reserved",
                notes=f"reservation {reservation.id}",
            )
        INVENTORY_RESERVATIONS_TOTAL.inc()
        _LOGGER.info(
            "Reserved %s units of %s for order %s (reservation %s)",
            quantity,
            key,
            order_id,
            reservation.id,
        )
        return reservation

    # Release --------------------------------------------------------------------------------

    async def release(self, reservation_id: int, *, timeout: float | None = None) -> StockReservation:
        """Release one reservation; releasing it a second time raises ``NotFound``."""

        reservation = await self.transactions.within_deadline(
            self._resolve_one(reservation_id, ReleaseReason.RELEASED), timeout
        )
        await evaluate_quietly(self.alerts, reservation.key)
        return reservation

    async def release_by_order(self, order_id: int, *, timeout: float | None = None) -> list[StockReservation]:
        """Release every reservation held by ``order_id``."""

        released = await self._resolve_order(order_id, ReleaseReason.RELEASED, timeout)
        return [reservation for reservation, _ in released]

    async def fulfill_order(self, order_id: int, *, timeout: float | None = None) -> list[InventoryMovement]:
        """Turn the order's reservations into permanent ``out`` movements."""

        fulfilled = await self._resolve_order(order_id, ReleaseReason.FULFILLED, timeout)
        return [movement for _, movement in fulfilled]

    async def list_for_order(self, order_id: int) -> list[StockReservation]:
        async with self.transactions.session() as repository:
            return await repository.list_reservations_for_order(order_id)

    async def get(self, reservation_id: int) -> StockReservation:
        async with self.transactions.session() as repository:
            reservation = await repository.get_reservation(reservation_id)
        if reservation is None:
            raise NotFound(f"stock reservation {reservation_id} not found")
        return reservation

    async def _resolve_order(
        self, order_id: int, reason: ReleaseReason, timeout: float | None
    ) -> list[tuple[StockReservation, InventoryMovement]]:
        reservations = await self.list_for_order(order_id)
        if not reservations:
            raise NotFound(f"no reservations found for order {order_id}")

        resolved: list[tuple[StockReservation, InventoryMovement]] = []
        for reservation in reservations:
            try:
                movement = await self.transactions.within_deadline(
                    self._resolve_one_with_movement(reservation.id, reason), timeout
                )
            except NotFound:
                # Released or swept concurrently.
                continue
            resolved.append((reservation, movement))
        if not resolved:
            raise NotFound(f"no reservations found for order {order_id}")

        for key in {reservation.key for reservation, _ in resolved}:
            await evaluate_quietly(self.alerts, key)
        return resolved

    async def _resolve_one(self, reservation_id: int, reason: ReleaseReason) -> StockReservation:
        reservation = await self.get(reservation_id)
        await self._resolve_one_with_movement(reservation_id, reason, key=reservation.key)
        return reservation

    async def _resolve_one_with_movement(
        self,
        reservation_id: int,
        reason: ReleaseReason,
        *,
        key: InventoryKey | None = None,
    ) -> InventoryMovement:
        if key is None:
            key = (await self.get(reservation_id)).key
        async with self.transactions.locked(key) as repository:
            reservation = await repository.get_reservation(reservation_id, for_update=True)
            if reservation is None:
                raise NotFound(f"stock reservation {reservation_id} not found")
            record = await self._record_for(repository, reservation)
            if reason is ReleaseReason.FULFILLED:
                movement = await self._fulfill_locked(repository, record, reservation)
            else:
                provenance: Provenance = (
                    SweepRef() if reason is ReleaseReason.EXPIRED else ReservationRef(reservation.order_id)
                )
                movement = await self._release_locked(repository, record, reservation, reason, provenance)
            await repository.delete_reservation(reservation)
        INVENTORY_RESERVATION_RELEASES_TOTAL.labels(reason=reason.value).inc()
        _LOGGER.info(
            "Reservation %s for order %s %s (%s units of %s)",
            reservation_id,
            reservation.order_id,
            reason.value,
            reservation.quantity,
            key,
        )
        return movement

    async def _record_for(
        self, repository: InventoryRepository, reservation: StockReservation
    ) -> InventoryRecord:
        record = await repository.get_record(reservation.key, for_update=True)
        if record is None:
            INVENTORY_INVARIANT_VIOLATIONS_TOTAL.labels(operation="release").inc()
            _LOGGER.error(
                "Reservation %s references missing inventory %s", reservation.id, reservation.key
            )
            raise InvariantViolation(f"reservation {reservation.id} references missing inventory")
        return record

    async def _release_locked(
        self,
        repository: InventoryRepository,
        record: InventoryRecord,
        reservation: StockReservation,
        reason: ReleaseReason,
        provenance: Provenance,
    ) -> InventoryMovement:
        previous_reserved = record.reserved_quantity
        apply_counters(
            record,
            quantity=record.quantity,
            reserved=previous_reserved - reservation.quantity,
            operation=f"release:{reason.value}",
        )
        return await append_entry(
            repository,
            record,
            movement_type=MovementType.RELEASE,
            quantity=reservation.quantity,
            previous_quantity=record.quantity,
            previous_reserved=previous_reserved,
            provenance=provenance,
            reason=reason.value,
            notes=f"reservation {reservation.id}",
        )

    async def _fulfill_locked(
        self,
        repository: InventoryRepository,
        record: InventoryRecord,
        reservation: StockReservation,
    ) -> InventoryMovement:
        # Release and deduct in one transaction so the freed units can never
        # be claimed by another order in between.
        await self._release_locked(
            repository,
            record,
            reservation,
            ReleaseReason.FULFILLED,
            ReservationRef(reservation.order_id),
        )
        previous_quantity = record.quantity
        apply_counters(
            record,
            quantity=previous_quantity - reservation.quantity,
            reserved=record.reserved_quantity,
            operation="fulfill",
        )
        return await append_entry(
            repository,
            record,
            movement_type=MovementType.OUT,
            quantity=reservation.quantity,
            previous_quantity=previous_quantity,
            previous_reserved=record.reserved_quantity,
            provenance=OrderRef(reservation.order_id),
            reason="order fulfilled",
            notes=f"reservation {reservation.id}",
        )

    # Expiry sweep ---------------------------------------------------------------------------

    async def sweep_expired(
        self,
        now: datetime | None = None,
        *,
        batch_size: int | None = None,
        timeout: float | None = None,
    ) -> SweepReport:
        """Release reservations whose ``expires_at`` is before ``now``.

        Reservations are handled one key transaction at a time. A failure is
        logged and left for the next sweep; it never stops the rest of the batch,
        and failed reservations are retried only after newly expired ones.
        """

        started = perf_counter()
        cutoff = now or utcnow()
        limit = batch_size or self.sweep_batch_size
        async with self.transactions.session() as repository:
            expired = await repository.list_expired_reservations(
                cutoff, limit=limit, retry_last=self._sweep_failures
            )

        report = SweepReport()
        released_keys: set[InventoryKey] = set()
        for reservation in expired:
            try:
                await self.transactions.within_deadline(
                    self._resolve_one_with_movement(
                        reservation.id, ReleaseReason.EXPIRED, key=reservation.key
                    ),
                    timeout,
                )
            except NotFound:
                report.skipped += 1
                continue
            except Exception as exc:
                INVENTORY_SWEEP_FAILURES_TOTAL.inc()
                _LOGGER.warning(
                    "Failed to release expired reservation %s on %s; retrying next sweep",
                    reservation.id,
                    reservation.key,
                    exc_info=True,
                )
                report.failed.append(SweepFailure(reservation.id, reservation.key, str(exc)))
                continue
            report.released.append(reservation.id)
            released_keys.add(reservation.key)

        attempted = {reservation.id for reservation in expired}
        self._sweep_failures = (self._sweep_failures - attempted) | {
            failure.reservation_id for failure in report.failed
        }
        for key in released_keys:
            await evaluate_quietly(self.alerts, key)
        INVENTORY_SWEEP_DURATION_SECONDS.observe(perf_counter() - started)
        if expired:
            _LOGGER.info(
                "Expiry sweep released %s reservations (%s failed, %s already gone)",
                len(report.released),
                len(report.failed),
                report.skipped,
            )
        return report
