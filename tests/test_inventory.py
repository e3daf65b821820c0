"""Unit tests for the in-memory inventory index."""

from __future__ import annotations

from decimal import Decimal

import pytest

from vapebar_pos import constants, data_manager
from vapebar_pos.exceptions import InsufficientStockError, ItemNotFoundError
from vapebar_pos.inventory import InventoryIndex


def _snapshot(*rows):
    return data_manager.TableSnapshot(
        header=list(constants.SHEET_HEADERS[data_manager.INVENTORY_SHEET]),
        rows=[list(row) for row in rows],
    )


def test_from_snapshot_maps_items_to_sheet_rows():
    """Row numbers should account for the header and blank rows."""

    index = InventoryIndex.from_snapshot(
        _snapshot(
            ["I1", "Vape Device", "Xros", "3", "", "4", "950"],
            ["", "", "", "", "", "", ""],
            ["I2", "Vape Juice/Pod", "Cloud Nine", "", "Mango", "12", "3.50"],
        )
    )
    assert len(index) == 2
    assert index.row_number_of(index.get("I1")) == 2
    assert index.row_number_of(index.get("I2")) == 4
    assert "I3" not in index


def test_duplicate_ids_keep_first_row():
    """A repeated identifier should not shadow the first occurrence."""

    index = InventoryIndex.from_snapshot(
        _snapshot(
            ["I1", "Cat", "First", "", "", "1", "1"],
            ["I1", "Cat", "Second", "", "", "9", "1"],
        )
    )
    assert index.get("I1").item_name == "First"
    assert index.row_number_of(index.get("I1")) == 2


def test_get_unknown_id_raises_item_not_found():
    """Unknown identifiers should raise ItemNotFoundError."""

    index = InventoryIndex.from_snapshot(_snapshot())
    with pytest.raises(ItemNotFoundError, match="Item ID not found in Inventory: I404"):
        index.get("I404")


def test_apply_delta_returns_update_without_mutating():
    """apply_delta computes the write but leaves the snapshot untouched."""

    index = InventoryIndex.from_snapshot(_snapshot(["I1", "Cat", "Pod", "", "Mint", "5", "2"]))
    item = index.get("I1")
    update = index.apply_delta(item, -2)

    assert update.previous_quantity == 5
    assert update.new_quantity == 3
    assert update.address == "F2"
    assert update.values == [["3"]]
    assert index.quantity_of(item) == 5


def test_apply_delta_rejects_negative_result():
    """Driving a quantity below zero should raise InsufficientStockError."""

    index = InventoryIndex.from_snapshot(_snapshot(["I1", "Cat", "Pod", "", "Mint", "2", "2"]))
    with pytest.raises(InsufficientStockError) as excinfo:
        index.apply_delta(index.get("I1"), -3)

    error = excinfo.value
    assert "Insufficient stock for Pod - Mint" in str(error)
    assert (error.item_id, error.available, error.requested) == ("I1", 2, 3)


def test_commit_makes_later_deltas_cumulative():
    """Committed updates should be visible to the next delta on the same item."""

    index = InventoryIndex.from_snapshot(_snapshot(["I1", "Cat", "Pod", "", "Mint", "5", "2"]))
    item = index.get("I1")
    index.commit(index.apply_delta(item, -3))

    with pytest.raises(InsufficientStockError):
        index.apply_delta(item, -3)
    assert index.apply_delta(item, -2).new_quantity == 0


def test_set_quantity_is_absolute():
    """set_quantity should compute the delta from the current quantity."""

    index = InventoryIndex.from_snapshot(_snapshot(["I1", "Cat", "Pod", "", "Mint", "5", "2"]))
    update = index.set_quantity(index.get("I1"), 40)
    assert (update.previous_quantity, update.new_quantity) == (5, 40)


def test_low_stock_is_strictly_below_threshold():
    """Items at the threshold are not low stock."""

    index = InventoryIndex.from_snapshot(
        _snapshot(
            ["I1", "Cat", "A", "", "", "9", "1"],
            ["I2", "Cat", "B", "", "", "10", "1"],
        )
    )
    assert [item.item_id for item in index.low_stock(10)] == ["I1"]


def test_search_matches_name_or_flavor():
    """search should be case-insensitive across name and flavor."""

    index = InventoryIndex.from_snapshot(
        _snapshot(
            ["I1", "Vape Juice/Pod", "Cloud Nine", "", "Mango", "1", "1"],
            ["I2", "Vape Juice/Pod", "Sky", "", "Grape", "1", "1"],
        )
    )
    assert [item.item_id for item in index.search("mango")] == ["I1"]
    assert [item.item_id for item in index.search("SKY")] == ["I2"]


def test_summarize_counts_categories_brands_and_value():
    """summarize should aggregate the analytics figures."""

    index = InventoryIndex.from_snapshot(
        _snapshot(
            ["I1", "Vape Juice/Pod", "Cloud Nine", "", "Mango", "4", "3.50"],
            ["I2", "Vape Juice/Pod", "Cloud Nine", "", "Grape", "2", "3.50"],
            ["I3", "Vape Device", "Xros", "3", "", "1", "950"],
        )
    )
    summary = index.summarize()
    assert summary.total_items == 3
    assert summary.total_quantity == 7
    assert summary.total_value == Decimal("971.00")
    assert (summary.juice_items, summary.device_items) == (2, 1)
    assert summary.brands == ("Cloud Nine", "Xros")
    assert summary.total_brands == 2


def test_load_reads_inventory_table(store, add_item):
    """load should index whatever the store currently holds."""

    add_item("I1", quantity=3)
    index = InventoryIndex.load(store)
    assert index.get("I1").quantity == 3
