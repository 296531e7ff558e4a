"""Data access helpers for inventory service."""

from __future__ import annotations

from datetime import datetime
from typing import Collection, Sequence

from sqlalchemy import Select, and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .domain import (
    AlertType,
    InventoryKey,
    InventorySummary,
    MovementFilter,
    Page,
    RecordFilter,
    to_utc,
)
from .models import InventoryAlert, InventoryMovement, InventoryRecord, StockReservation


def _key_clause(model, key: InventoryKey):
    clause = model.product_id == key.product_id
    if key.variant_id is None:
        return and_(clause, model.product_variant_id.is_(None))
    return and_(clause, model.product_variant_id == key.variant_id)


class InventoryRepository:
    """Persistence utilities for inventory records, movements, reservations and alerts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # Records --------------------------------------------------------------------------------

    async def create_record(
        self,
        key: InventoryKey,
        *,
        quantity: int,
        min_stock_level: int,
        max_stock_level: int | None,
        reorder_point: int,
    ) -> InventoryRecord:
        record = InventoryRecord(
            product_id=key.product_id,
            product_variant_id=key.variant_id,
            quantity=quantity,
            reserved_quantity=0,
            available_quantity=quantity,
            min_stock_level=min_stock_level,
            max_stock_level=max_stock_level,
            reorder_point=reorder_point,
        )
        self.session.add(record)
        await self.session.flush()
        await self.session.refresh(
            record, attribute_names=["last_restocked", "created_at", "updated_at"]
        )
        return record

    async def get_record(self, key: InventoryKey, *, for_update: bool = False) -> InventoryRecord | None:
        stmt = select(InventoryRecord).where(_key_clause(InventoryRecord, key))
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_record_by_id(self, record_id: int) -> InventoryRecord | None:
        return await self.session.get(InventoryRecord, record_id)

    async def save_record(self, record: InventoryRecord) -> InventoryRecord:
        await self.session.flush()
        await self.session.refresh(record, attribute_names=["updated_at"])
        return record

    async def delete_record(self, record: InventoryRecord) -> None:
        await self.session.delete(record)
        await self.session.flush()

    async def list_records(
        self, filters: RecordFilter, page: Page
    ) -> tuple[list[InventoryRecord], int]:
        clauses = []
        if filters.product_id is not None:
            clauses.append(InventoryRecord.product_id == filters.product_id)
        if filters.variant_id is not None:
            clauses.append(InventoryRecord.product_variant_id == filters.variant_id)
        if filters.low_stock:
            clauses.append(InventoryRecord.available_quantity <= InventoryRecord.reorder_point)
        if filters.out_of_stock:
            clauses.append(InventoryRecord.available_quantity == 0)

        base: Select[tuple[InventoryRecord]] = select(InventoryRecord).order_by(
            InventoryRecord.created_at.desc(), InventoryRecord.id.desc()
        )
        count: Select[tuple[int]] = select(func.count(InventoryRecord.id))
        if clauses:
            clause = and_(*clauses)
            base = base.where(clause)
            count = count.where(clause)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(page.offset).limit(page.limit))
        return list(result.scalars()), total

    async def list_keys(self) -> list[InventoryKey]:
        result = await self.session.execute(
            select(InventoryRecord.product_id, InventoryRecord.product_variant_id).order_by(InventoryRecord.id)
        )
        return [InventoryKey(product_id, variant_id) for product_id, variant_id in result.all()]

    async def summarize(self) -> InventorySummary:
        available = InventoryRecord.available_quantity
        stmt = select(
            func.count(func.distinct(InventoryRecord.product_id)),
            func.count(func.distinct(InventoryRecord.product_variant_id)),
            func.coalesce(func.sum(InventoryRecord.quantity), 0),
            func.coalesce(func.sum(InventoryRecord.reserved_quantity), 0),
            func.coalesce(func.sum(available), 0),
            func.count(case((and_(available > 0, available <= InventoryRecord.reorder_point), 1))),
            func.count(case((available == 0, 1))),
        )
        row = (await self.session.execute(stmt)).one()
        summary = InventorySummary(
            total_products=int(row[0]),
            total_variants=int(row[1]),
            total_quantity=int(row[2]),
            total_reserved=int(row[3]),
            total_available=int(row[4]),
            low_stock_items=int(row[5]),
            out_of_stock_items=int(row[6]),
        )
        if summary.total_products:
            summary.average_stock_level = summary.total_quantity / summary.total_products
        return summary

    # Movements ------------------------------------------------------------------------------

    async def add_movement(self, movement: InventoryMovement) -> InventoryMovement:
        self.session.add(movement)
        await self.session.flush()
        await self.session.refresh(movement, attribute_names=["created_at"])
        return movement

    async def get_movement(self, movement_id: int) -> InventoryMovement | None:
        return await self.session.get(InventoryMovement, movement_id)

    async def list_movements(
        self, filters: MovementFilter, page: Page
    ) -> tuple[list[InventoryMovement], int]:
        clauses = []
        if filters.key is not None:
            clauses.append(_key_clause(InventoryMovement, filters.key))
        if filters.product_id is not None:
            clauses.append(InventoryMovement.product_id == filters.product_id)
        if filters.variant_id is not None:
            clauses.append(InventoryMovement.product_variant_id == filters.variant_id)
        if filters.movement_type is not None:
            clauses.append(InventoryMovement.movement_type == filters.movement_type.value)
        if filters.start is not None:
            clauses.append(InventoryMovement.created_at >= to_utc(filters.start))
        if filters.end is not None:
            clauses.append(InventoryMovement.created_at <= to_utc(filters.end))

        base: Select[tuple[InventoryMovement]] = select(InventoryMovement).order_by(
            InventoryMovement.id.desc()
        )
        count: Select[tuple[int]] = select(func.count(InventoryMovement.id))
        if clauses:
            clause = and_(*clauses)
            base = base.where(clause)
            count = count.where(clause)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(page.offset).limit(page.limit))
        return list(result.scalars()), total

    # Reservations ---------------------------------------------------------------------------

    async def add_reservation(
        self,
        key: InventoryKey,
        *,
        order_id: int,
        quantity: int,
        expires_at: datetime,
    ) -> StockReservation:
        reservation = StockReservation(
            product_id=key.product_id,
            product_variant_id=key.variant_id,
            order_id=order_id,
            quantity=quantity,
            expires_at=expires_at,
        )
        self.session.add(reservation)
        await self.session.flush()
        await self.session.refresh(reservation, attribute_names=["created_at"])
        return reservation

    async def get_reservation(
        self, reservation_id: int, *, for_update: bool = False
    ) -> StockReservation | None:
        stmt = select(StockReservation).where(StockReservation.id == reservation_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_reservations_for_order(self, order_id: int) -> list[StockReservation]:
        result = await self.session.execute(
            select(StockReservation)
            .where(StockReservation.order_id == order_id)
            .order_by(StockReservation.id)
        )
        return list(result.scalars())

    async def list_expired_reservations(
        self, now: datetime, *, limit: int, retry_last: Collection[int] = ()
    ) -> list[StockReservation]:
        """Oldest expired reservations first; ids in ``retry_last`` queue behind the rest."""

        ordering = [StockReservation.expires_at, StockReservation.id]
        if retry_last:
            ordering.insert(0, case((StockReservation.id.in_(list(retry_last)), 1), else_=0))
        result = await self.session.execute(
            select(StockReservation)
            .where(StockReservation.expires_at < to_utc(now))
            .order_by(*ordering)
            .limit(limit)
        )
        return list(result.scalars())

    async def count_reservations(self, key: InventoryKey) -> int:
        result = await self.session.execute(
            select(func.count(StockReservation.id)).where(_key_clause(StockReservation, key))
        )
        return result.scalar_one()

    async def delete_reservation(self, reservation: StockReservation) -> None:
        await self.session.delete(reservation)
        await self.session.flush()

    # Alerts ---------------------------------------------------------------------------------

    async def add_alert(
        self,
        key: InventoryKey,
        *,
        alert_type: AlertType,
        current_quantity: int,
        threshold_quantity: int,
    ) -> InventoryAlert:
        alert = InventoryAlert(
            product_id=key.product_id,
            product_variant_id=key.variant_id,
            alert_type=alert_type.value,
            current_quantity=current_quantity,
            threshold_quantity=threshold_quantity,
            is_resolved=False,
        )
        self.session.add(alert)
        await self.session.flush()
        await self.session.refresh(alert, attribute_names=["created_at"])
        return alert

    async def get_alert(self, alert_id: int, *, for_update: bool = False) -> InventoryAlert | None:
        stmt = select(InventoryAlert).where(InventoryAlert.id == alert_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_open_alerts(self, key: InventoryKey) -> list[InventoryAlert]:
        result = await self.session.execute(
            select(InventoryAlert)
            .where(_key_clause(InventoryAlert, key), InventoryAlert.is_resolved.is_(False))
            .order_by(InventoryAlert.id)
        )
        return list(result.scalars())

    async def list_alerts(
        self,
        *,
        resolved: bool | None,
        key: InventoryKey | None = None,
        alert_types: Sequence[AlertType] | None = None,
    ) -> list[InventoryAlert]:
        stmt = select(InventoryAlert).order_by(InventoryAlert.created_at.desc(), InventoryAlert.id.desc())
        if resolved is not None:
            stmt = stmt.where(InventoryAlert.is_resolved.is_(resolved))
        if key is not None:
            stmt = stmt.where(_key_clause(InventoryAlert, key))
        if alert_types:
            stmt = stmt.where(InventoryAlert.alert_type.in_([alert_type.value for alert_type in alert_types]))
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def mark_alert_resolved(self, alert: InventoryAlert, *, resolved_at: datetime) -> InventoryAlert:
        alert.is_resolved = True
        alert.resolved_at = resolved_at
        await self.session.flush()
        return alert
