import pytest

from services.inventory_service.app.domain import (
    InitialStockRef,
    InventoryKey,
    ManualAdjustmentRef,
    MovementType,
    OrderRef,
    Page,
    ReservationRef,
    RestockRef,
    SweepRef,
    decode_provenance,
    encode_provenance,
)


@pytest.mark.parametrize(
    ("provenance", "reference", "reference_type", "created_by"),
    [
        (OrderRef(42), "42", "order", None),
        (ReservationRef(7), "7", "reservation", None),
        (RestockRef("PO-991"), "PO-991", "restock", None),
        (RestockRef(), None, "restock", None),
        (ManualAdjustmentRef(created_by=5), None, "manual", 5),
        (SweepRef(), None, "sweep", None),
        (InitialStockRef(), "initial_stock", "setup", None),
    ],
)
def test_provenance_columns(provenance, reference, reference_type, created_by) -> None:
    encoded = encode_provenance(provenance)
    assert (encoded.reference, encoded.reference_type, encoded.created_by) == (
        reference,
        reference_type,
        created_by,
    )
    assert decode_provenance(encoded.reference, encoded.reference_type, encoded.created_by) == provenance


def test_unknown_reference_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        decode_provenance("x", "gift")


def test_reservation_bookkeeping_types_keep_quantity() -> None:
    assert MovementType.IN.changes_quantity
    assert MovementType.ADJUSTMENT.changes_quantity
    assert not MovementType.RESERVE.changes_quantity
    assert not MovementType.RELEASE.changes_quantity


def test_page_offsets_and_totals() -> None:
    page = Page(page=3, limit=20)
    assert page.offset == 40
    assert page.total_pages(0) == 0
    assert page.total_pages(41) == 3


def test_keys_with_and_without_variant_differ() -> None:
    assert InventoryKey(1) != InventoryKey(1, 2)
    assert str(InventoryKey(1, 2)) == "product=1 variant=2"
    assert len({InventoryKey(1), InventoryKey(1, None)}) == 1
