"""In-memory projection of the ``Inventory`` table.

An :class:`InventoryIndex` is rebuilt from the row store at the start of
every operation that reads or changes stock and is thrown away afterwards.
It answers lookups, tracks quantities as a request progresses, and turns a
quantity change into the single-cell write that realizes it. It never
writes to the store itself.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from . import data_manager, log
from .constants import DEFAULT_LOW_STOCK_THRESHOLD, Category
from .data_manager import InventoryItem
from .exceptions import InsufficientStockError, ItemNotFoundError


@dataclass(frozen=True)
class QuantityUpdate:
    """A pending quantity change for one inventory row."""

    item_id: str
    previous_quantity: int
    new_quantity: int
    row_number: int

    @property
    def address(self) -> str:
        return data_manager.quantity_address(self.row_number)

    @property
    def values(self) -> List[List[str]]:
        return [[str(self.new_quantity)]]


@dataclass(frozen=True)
class InventorySummary:
    """Aggregate stock figures for the analytics view."""

    total_items: int
    total_quantity: int
    total_value: Decimal
    juice_items: int
    device_items: int
    brands: tuple[str, ...]

    @property
    def total_brands(self) -> int:
        return len(self.brands)


class InventoryIndex:
    """Inventory rows keyed by item identifier, with their sheet row numbers."""

    def __init__(self, items: Sequence[InventoryItem], row_numbers: Sequence[int]) -> None:
        self._items: Dict[str, InventoryItem] = {}
        self._row_numbers: Dict[str, int] = {}
        for item, row_number in zip(items, row_numbers):
            if item.item_id in self._items:
                log.warning(
                    "Duplicate inventory id '%s' on row %d ignored", item.item_id, row_number)
                continue
            self._items[item.item_id] = item
            self._row_numbers[item.item_id] = row_number

    @classmethod
    def from_snapshot(cls, snapshot: data_manager.TableSnapshot) -> "InventoryIndex":
        """Build an index from raw table rows, skipping rows without an ID."""

        items: List[InventoryItem] = []
        row_numbers: List[int] = []
        for index, raw in enumerate(snapshot.rows):
            if not raw or not str(raw[0]).strip():
                continue
            items.append(data_manager.deserialize_inventory_item(raw))
            row_numbers.append(data_manager.row_number_for_index(index))
        log.debug("Built inventory index with %d items", len(items))
        return cls(items, row_numbers)

    @classmethod
    def load(cls, store: data_manager.RowStore) -> "InventoryIndex":
        """Read the ``Inventory`` table and index it."""

        return cls.from_snapshot(store.read_all(data_manager.INVENTORY_SHEET))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def items(self) -> List[InventoryItem]:
        return list(self._items.values())

    def find_by_id(self, item_id: str) -> Optional[InventoryItem]:
        return self._items.get(str(item_id))

    def get(self, item_id: str) -> InventoryItem:
        """Return the item for ``item_id`` or raise :class:`ItemNotFoundError`."""

        item = self.find_by_id(item_id)
        if item is None:
            log.warning("Inventory lookup failed for id '%s'", item_id)
            raise ItemNotFoundError(f"Item ID not found in Inventory: {item_id}")
        return item

    def quantity_of(self, item: InventoryItem) -> int:
        """Current snapshot quantity, including updates committed so far."""

        return self._items[item.item_id].quantity

    def row_number_of(self, item: InventoryItem) -> int:
        return self._row_numbers[item.item_id]

    def apply_delta(self, item: InventoryItem, delta: int) -> QuantityUpdate:
        """Compute the quantity change ``delta`` for ``item`` without writing.

        Raises:
            InsufficientStockError: If the resulting quantity is negative.
        """

        current = self.quantity_of(item)
        new_quantity = current + delta
        if new_quantity < 0:
            log.error(
                "Insufficient stock for '%s': available %d, requested %d",
                item.item_id,
                current,
                -delta,
            )
            raise InsufficientStockError(
                f"Insufficient stock for {item.display_name}. "
                f"Available: {current}, Requested: {-delta}",
                item_id=item.item_id,
                requested=-delta,
                available=current,
            )
        return QuantityUpdate(
            item_id=item.item_id,
            previous_quantity=current,
            new_quantity=new_quantity,
            row_number=self.row_number_of(item),
        )

    def set_quantity(self, item: InventoryItem, quantity: int) -> QuantityUpdate:
        """Compute an absolute quantity correction for ``item``."""

        return self.apply_delta(item, quantity - self.quantity_of(item))

    def commit(self, update: QuantityUpdate) -> None:
        """Record a written update so later lines see the new quantity."""

        item = self._items[update.item_id]
        self._items[update.item_id] = replace(item, quantity=update.new_quantity)

    def by_category(self, category: str) -> List[InventoryItem]:
        return [item for item in self._items.values() if item.category == category]

    def low_stock(self, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> List[InventoryItem]:
        """Items whose quantity is strictly below ``threshold``."""

        return [item for item in self._items.values() if item.quantity < threshold]

    def search(self, query: str) -> List[InventoryItem]:
        """Case-insensitive match on item name or flavor."""

        needle = query.lower()
        return [
            item
            for item in self._items.values()
            if needle in item.item_name.lower() or needle in item.flavor.lower()
        ]

    def summarize(self) -> InventorySummary:
        """Aggregate counts, quantity, and stock value at catalog price."""

        items = self.items()
        total_value = sum((item.price * item.quantity for item in items), Decimal("0"))
        brands = tuple(sorted({item.item_name for item in items}))
        return InventorySummary(
            total_items=len(items),
            total_quantity=sum(item.quantity for item in items),
            total_value=total_value.quantize(Decimal("0.01")),
            juice_items=len(self.by_category(Category.JUICE_OR_POD.value)),
            device_items=len(self.by_category(Category.DEVICE.value)),
            brands=brands,
        )
