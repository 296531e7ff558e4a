"""Pydantic schemas for inventory service."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt, field_validator, model_validator

from .domain import (
    STOCK_MOVEMENT_TYPES,
    InventoryKey,
    ManualAdjustmentRef,
    MovementType,
    OrderRef,
    Provenance,
    RestockRef,
)


class InventoryCreate(BaseModel):
    product_id: PositiveInt = Field(alias="productId")
    product_variant_id: PositiveInt | None = Field(default=None, alias="productVariantId")
    quantity: NonNegativeInt = 0
    min_stock_level: NonNegativeInt = Field(default=0, alias="minStockLevel")
    max_stock_level: NonNegativeInt | None = Field(default=None, alias="maxStockLevel")
    reorder_point: NonNegativeInt = Field(default=0, alias="reorderPoint")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _check_levels(self) -> "InventoryCreate":
        if self.max_stock_level is not None and self.max_stock_level < self.min_stock_level:
            msg = "maxStockLevel must not be below minStockLevel"
            raise ValueError(msg)
        return self

    @property
    def key(self) -> InventoryKey:
        return InventoryKey(self.product_id, self.product_variant_id)


class InventoryUpdate(BaseModel):
    quantity: NonNegativeInt | None = None
    reserved_quantity: NonNegativeInt | None = Field(default=None, alias="reservedQuantity")
    available_quantity: NonNegativeInt | None = Field(default=None, alias="availableQuantity")
    min_stock_level: NonNegativeInt | None = Field(default=None, alias="minStockLevel")
    max_stock_level: NonNegativeInt | None = Field(default=None, alias="maxStockLevel")
    reorder_point: NonNegativeInt | None = Field(default=None, alias="reorderPoint")
    updated_by: PositiveInt | None = Field(default=None, alias="updatedBy")

    model_config = ConfigDict(populate_by_name=True)


class InventoryResponse(BaseModel):
    id: PositiveInt
    product_id: int = Field(alias="productId")
    product_variant_id: int | None = Field(default=None, alias="productVariantId")
    quantity: int
    reserved_quantity: int = Field(alias="reservedQuantity")
    available_quantity: int = Field(alias="availableQuantity")
    min_stock_level: int = Field(alias="minStockLevel")
    max_stock_level: int | None = Field(default=None, alias="maxStockLevel")
    reorder_point: int = Field(alias="reorderPoint")
    is_low_stock: bool = Field(alias="isLowStock")
    is_out_of_stock: bool = Field(alias="isOutOfStock")
    last_restocked: datetime = Field(alias="lastRestocked")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class InventoryListResponse(BaseModel):
    items: list[InventoryResponse]
    total: int
    page: int
    limit: int
    total_pages: int = Field(alias="totalPages")

    model_config = ConfigDict(populate_by_name=True)


class InventorySummaryResponse(BaseModel):
    total_products: int = Field(alias="totalProducts")
    total_variants: int = Field(alias="totalVariants")
    total_quantity: int = Field(alias="totalQuantity")
    total_reserved: int = Field(alias="totalReserved")
    total_available: int = Field(alias="totalAvailable")
    low_stock_items: int = Field(alias="lowStockItems")
    out_of_stock_items: int = Field(alias="outOfStockItems")
    average_stock_level: float = Field(alias="averageStockLevel")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


# Movements ---------------------------------------------------------------------------------


class MovementCreate(BaseModel):
    product_id: PositiveInt = Field(alias="productId")
    product_variant_id: PositiveInt | None = Field(default=None, alias="productVariantId")
    movement_type: MovementType = Field(alias="movementType")
    quantity: NonNegativeInt
    reference_type: Literal["order", "restock", "manual"] = Field(default="manual", alias="referenceType")
    reference: str | None = Field(default=None, max_length=255)
    reason: str | None = Field(default=None, max_length=255)
    notes: str | None = None
    created_by: PositiveInt | None = Field(default=None, alias="createdBy")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("movement_type")
    @classmethod
    def _stock_movements_only(cls, value: MovementType) -> MovementType:
        if value not in STOCK_MOVEMENT_TYPES:
            msg = "movementType must be one of in, out, adjustment, transfer"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def _check_reference(self) -> "MovementCreate":
        if self.reference_type == "order" and not (self.reference or "").isdigit():
            msg = "order movements need the numeric order id as reference"
            raise ValueError(msg)
        return self

    @property
    def key(self) -> InventoryKey:
        return InventoryKey(self.product_id, self.product_variant_id)

    def provenance(self) -> Provenance:
        if self.reference_type == "order":
            return OrderRef(int(self.reference or 0))
        if self.reference_type == "restock":
            return RestockRef(self.reference)
        return ManualAdjustmentRef(self.created_by)


class MovementResponse(BaseModel):
    id: PositiveInt
    product_id: int = Field(alias="productId")
    product_variant_id: int | None = Field(default=None, alias="productVariantId")
    movement_type: str = Field(alias="movementType")
    quantity: int
    previous_quantity: int = Field(alias="previousQuantity")
    new_quantity: int = Field(alias="newQuantity")
    previous_reserved: int = Field(alias="previousReserved")
    new_reserved: int = Field(alias="newReserved")
    reference: str | None = None
    reference_type: str = Field(alias="referenceType")
    reason: str | None = None
    notes: str | None = None
    created_by: int | None = Field(default=None, alias="createdBy")
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class MovementListResponse(BaseModel):
    items: list[MovementResponse]
    total: int
    page: int
    limit: int
    total_pages: int = Field(alias="totalPages")

    model_config = ConfigDict(populate_by_name=True)


class BulkMovementRequest(BaseModel):
    updates: list[MovementCreate] = Field(min_length=1, max_length=100)


class BulkFailureResponse(BaseModel):
    product_id: int = Field(alias="productId")
    product_variant_id: int | None = Field(default=None, alias="productVariantId")
    error: str

    model_config = ConfigDict(populate_by_name=True)


class BulkMovementResponse(BaseModel):
    updated_items: int = Field(alias="updatedItems")
    failed_items: list[BulkFailureResponse] = Field(alias="failedItems")
    success: bool

    model_config = ConfigDict(populate_by_name=True)


# Reservations ------------------------------------------------------------------------------


class ReservationCreate(BaseModel):
    order_id: PositiveInt = Field(alias="orderId")
    product_id: PositiveInt = Field(alias="productId")
    product_variant_id: PositiveInt | None = Field(default=None, alias="productVariantId")
    quantity: PositiveInt
    ttl_seconds: PositiveInt | None = Field(default=None, alias="ttlSeconds")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def key(self) -> InventoryKey:
        return InventoryKey(self.product_id, self.product_variant_id)


class ReservationResponse(BaseModel):
    id: PositiveInt
    order_id: int = Field(alias="orderId")
    product_id: int = Field(alias="productId")
    product_variant_id: int | None = Field(default=None, alias="productVariantId")
    quantity: int
    expires_at: datetime = Field(alias="expiresAt")
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class FulfillmentResponse(BaseModel):
    order_id: int = Field(alias="orderId")
    movements: list[MovementResponse]

    model_config = ConfigDict(populate_by_name=True)


class SweepFailureResponse(BaseModel):
    reservation_id: int = Field(alias="reservationId")
    product_id: int = Field(alias="productId")
    product_variant_id: int | None = Field(default=None, alias="productVariantId")
    error: str

    model_config = ConfigDict(populate_by_name=True)


class SweepResponse(BaseModel):
    released: list[int]
    failed: list[SweepFailureResponse]
    skipped: int

    model_config = ConfigDict(populate_by_name=True)


# Alerts ------------------------------------------------------------------------------------


class AlertResponse(BaseModel):
    id: PositiveInt
    product_id: int = Field(alias="productId")
    product_variant_id: int | None = Field(default=None, alias="productVariantId")
    alert_type: str = Field(alias="alertType")
    current_quantity: int = Field(alias="currentQuantity")
    threshold_quantity: int = Field(alias="thresholdQuantity")
    is_resolved: bool = Field(alias="isResolved")
    resolved_at: datetime | None = Field(default=None, alias="resolvedAt")
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class AlertEvaluationResponse(BaseModel):
    evaluated: int
    open_alerts: list[AlertResponse] = Field(default_factory=list, alias="openAlerts")

    model_config = ConfigDict(populate_by_name=True)
