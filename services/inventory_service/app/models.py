"""SQLAlchemy models for inventory service."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .domain import InventoryKey


class Base(DeclarativeBase):
    """Base class for inventory ORM models."""


class InventoryRecord(Base):
    __tablename__ = "inventory"
    __table_args__ = (
        UniqueConstraint("product_id", "product_variant_id", name="uq_inventory_product_variant"),
        Index(
            "uq_inventory_product_without_variant",
            "product_id",
            unique=True,
            sqlite_where=text("product_variant_id IS NULL"),
            postgresql_where=text("product_variant_id IS NULL"),
        ),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity"),
        CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved"),
        CheckConstraint("available_quantity >= 0", name="ck_inventory_available"),
        CheckConstraint(
            "available_quantity = quantity - reserved_quantity", name="ck_inventory_available_split"
        ),
        CheckConstraint("min_stock_level >= 0", name="ck_inventory_min_stock"),
        CheckConstraint("reorder_point >= 0", name="ck_inventory_reorder_point"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    product_variant_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    min_stock_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_stock_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reorder_point: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_restocked: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    @property
    def key(self) -> InventoryKey:
        return InventoryKey(self.product_id, self.product_variant_id)


class InventoryMovement(Base):
    __tablename__ = "inventory_movements"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_movement_quantity"),
        CheckConstraint("previous_quantity >= 0", name="ck_movement_previous"),
        CheckConstraint("new_quantity >= 0", name="ck_movement_new"),
        Index("ix_inventory_movements_key_created", "product_id", "product_variant_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    product_variant_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    previous_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    reference_type: Mapped[str] = mapped_column(String(50), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    @property
    def key(self) -> InventoryKey:
        return InventoryKey(self.product_id, self.product_variant_id)


class StockReservation(Base):
    __tablename__ = "stock_reservations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("ix_stock_reservations_key", "product_id", "product_variant_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    product_variant_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    order_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    @property
    def key(self) -> InventoryKey:
        return InventoryKey(self.product_id, self.product_variant_id)


class InventoryAlert(Base):
    __tablename__ = "inventory_alerts"
    __table_args__ = (
        CheckConstraint("current_quantity >= 0", name="ck_alert_current"),
        CheckConstraint("threshold_quantity >= 0", name="ck_alert_threshold"),
        Index(
            "ix_inventory_alerts_lookup",
            "product_id",
            "product_variant_id",
            "alert_type",
            "is_resolved",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    product_variant_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    alert_type: Mapped[str] = mapped_column(String(20), nullable=False)
    current_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    threshold_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    @property
    def key(self) -> InventoryKey:
        return InventoryKey(self.product_id, self.product_variant_id)
