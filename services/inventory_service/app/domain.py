"""Value types shared by the inventory components."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Union


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken to be UTC already."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class InventoryKey:
    """Identifies one inventory record: a product, or one of its variants."""

    product_id: int
    variant_id: int | None = None

    def __str__(self) -> str:
        if self.variant_id is None:
            return f"product={self.product_id}"
        return f"product={self.product_id} variant={self.variant_id}"


class MovementType(str, Enum):
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    # Reservation bookkeeping: only the reserved/available split changes.
    RESERVE = "reserve"
    RELEASE = "release"

    @property
    def changes_quantity(self) -> bool:
        return self not in (MovementType.RESERVE, MovementType.RELEASE)


STOCK_MOVEMENT_TYPES = (
    MovementType.IN,
    MovementType.OUT,
    MovementType.ADJUSTMENT,
    MovementType.TRANSFER,
)


class AlertType(str, Enum):
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    REORDER_POINT = "reorder_point"


class ReleaseReason(str, Enum):
    RELEASED = "released"
    EXPIRED = "expired"
    FULFILLED = "fulfilled"


# Movement provenance -----------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OrderRef:
    order_id: int


@dataclass(frozen=True, slots=True)
class ReservationRef:
    order_id: int


@dataclass(frozen=True, slots=True)
class RestockRef:
    document: str | None = None


@dataclass(frozen=True, slots=True)
class ManualAdjustmentRef:
    created_by: int | None = None


@dataclass(frozen=True, slots=True)
class SweepRef:
    pass


@dataclass(frozen=True, slots=True)
class InitialStockRef:
    pass


Provenance = Union[OrderRef, ReservationRef, RestockRef, ManualAdjustmentRef, SweepRef, InitialStockRef]


@dataclass(frozen=True, slots=True)
class EncodedProvenance:
    reference: str | None
    reference_type: str
    created_by: int | None = None


def encode_provenance(provenance: Provenance) -> EncodedProvenance:
    """Flatten a provenance variant into the ledger's reference columns."""

    if isinstance(provenance, OrderRef):
        return EncodedProvenance(str(provenance.order_id), "order")
    if isinstance(provenance, ReservationRef):
        return EncodedProvenance(str(provenance.order_id), "reservation")
    if isinstance(provenance, RestockRef):
        return EncodedProvenance(provenance.document, "restock")
    if isinstance(provenance, ManualAdjustmentRef):
        return EncodedProvenance(None, "manual", provenance.created_by)
    if isinstance(provenance, SweepRef):
        return EncodedProvenance(None, "sweep")
    if isinstance(provenance, InitialStockRef):
        return EncodedProvenance("initial_stock", "setup")
    raise TypeError(f"unsupported provenance: {provenance!r}")


def decode_provenance(reference: str | None, reference_type: str, created_by: int | None = None) -> Provenance:
    """Rebuild the provenance variant stored on a ledger row."""

    if reference_type == "order":
        return OrderRef(int(reference or 0))
    if reference_type == "reservation":
        return ReservationRef(int(reference or 0))
    if reference_type == "restock":
        return RestockRef(reference)
    if reference_type == "manual":
        return ManualAdjustmentRef(created_by)
    if reference_type == "sweep":
        return SweepRef()
    if reference_type == "setup":
        return InitialStockRef()
    raise ValueError(f"unknown reference type: {reference_type}")


# Store inputs ------------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Thresholds:
    min_stock_level: int = 0
    max_stock_level: int | None = None
    reorder_point: int = 0


@dataclass(frozen=True, slots=True)
class RecordUpdate:
    """Changes for ``RecordStore.update``; ``None`` leaves a field untouched.

    Counters are accepted only when they describe a valid state; the reserved
    count belongs to the reservation manager and cannot be moved here.
    """

    min_stock_level: int | None = None
    max_stock_level: int | None = None
    reorder_point: int | None = None
    quantity: int | None = None
    reserved_quantity: int | None = None
    available_quantity: int | None = None
    updated_by: int | None = None


@dataclass(frozen=True, slots=True)
class RecordFilter:
    product_id: int | None = None
    variant_id: int | None = None
    low_stock: bool = False
    out_of_stock: bool = False


@dataclass(frozen=True, slots=True)
class MovementFilter:
    product_id: int | None = None
    variant_id: int | None = None
    # Exact record; unlike product_id/variant_id it matches a missing variant.
    key: InventoryKey | None = None
    movement_type: MovementType | None = None
    start: datetime | None = None
    end: datetime | None = None


@dataclass(frozen=True, slots=True)
class Page:
    page: int = 1
    limit: int = 50

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def total_pages(self, total: int) -> int:
        return (total + self.limit - 1) // self.limit


@dataclass(slots=True)
class InventorySummary:
    total_products: int = 0
    total_variants: int = 0
    total_quantity: int = 0
    total_reserved: int = 0
    total_available: int = 0
    low_stock_items: int = 0
    out_of_stock_items: int = 0
    average_stock_level: float = 0.0
