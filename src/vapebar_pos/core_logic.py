"""Business logic layer for VapeBar POS.

This module holds the rule engines that reconcile sales, loans, and warranty
replacements against the shop workbook. It consumes the row store adapter
for all I/O and never keeps state between calls: every operation reads a
fresh inventory snapshot, validates the request against it, and then issues
its writes in a fixed order.

The workbook offers no transactions. Sale and loan rows are therefore
written before any inventory quantity, so a failure late in an operation
leaves an auditable sale with a stale stock count rather than a silently
dropped sale. Nothing is rolled back automatically.
"""

from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from . import data_manager, log
from .constants import (
    BULK_CATEGORY,
    BULK_ITEM_ID,
    EXPECTED_SCHEMA_VERSION,
    LOAN_ID_PREFIX,
    SHEET_HEADERS,
    UNKNOWN_CUSTOMER,
    Category,
    ClaimStatus,
    LoanStatus,
    PaymentMethod,
    SaleType,
)
from .data_manager import InventoryItem, LoanRecord, SaleRecord, WarrantyClaim
from .exceptions import (
    BusinessRuleViolation,
    InsufficientStockError,
    ItemNotFoundError,
    LoanNotFoundError,
    NotFoundError,
    PosError,
    StoreError,
    ValidationError,
)
from .inventory import InventoryIndex, InventorySummary, QuantityUpdate


CENT = Decimal("0.01")

_id_guard = threading.Lock()
_last_issued: Dict[str, datetime] = {}


class ItemLocks:
    """Per-item mutexes that serialize read-validate-write sequences.

    When disabled (the default) :meth:`hold` is a no-op and concurrent
    operations on the same item may lose updates: the last quantity write
    wins. When enabled, operations sharing this registry wait for each other
    on every item they touch. Locks are taken in sorted order so two bulk
    sales naming the same items cannot deadlock. Only threads within one
    process are coordinated.
    """

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, item_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(item_id, threading.Lock())

    @contextmanager
    def hold(self, item_ids: Iterable[str]) -> Iterator[None]:
        if not self.enabled:
            yield
            return
        with ExitStack() as stack:
            for item_id in sorted(set(item_ids)):
                stack.enter_context(self._lock_for(item_id))
            yield


@dataclass(frozen=True)
class ChangeEvent:
    """Notification sent to subscribers after a successful mutation."""

    operation: str
    reference_id: str
    tables: Tuple[str, ...]


ChangeListener = Callable[[ChangeEvent], None]


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the row store used by the BLL."""

    settings: data_manager.ConfigSettings
    store: data_manager.WorkbookRowStore
    item_locks: ItemLocks = field(default_factory=ItemLocks, repr=False, compare=False)
    listeners: List[ChangeListener] = field(default_factory=list, repr=False, compare=False)


@dataclass(frozen=True)
class BulkLine:
    """One inventory line of a bulk sale."""

    item_id: str
    qty: Any


@dataclass(frozen=True)
class SaleRequest:
    """User intent for a sale, as received from the counter.

    Numeric fields are kept exactly as received (text or numbers) and are
    parsed by the engine. A non-empty ``bulk_items`` selects a bulk sale.
    """

    item_id: Optional[str] = None
    quantity_sold: Any = None
    applied_price: Any = None
    price_per_unit: Any = None
    payment_method: Optional[str] = None
    customer: Optional[str] = None
    date: Optional[str] = None
    notes: Optional[str] = None
    sale_type: Optional[str] = None
    bulk_items: Tuple[BulkLine, ...] = ()

    @property
    def is_bulk(self) -> bool:
        return bool(self.bulk_items)


@dataclass(frozen=True)
class SaleResult:
    """Confirmation returned after a sale has been written."""

    sale_id: str
    total: Decimal
    sale: SaleRecord
    loan: Optional[LoanRecord] = None
    new_quantity: Optional[int] = None
    updates: Tuple[QuantityUpdate, ...] = ()
    skipped_item_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ClaimRequest:
    """User intent for a warranty replacement."""

    item_id: Optional[str]
    quantity: Any
    reason: Optional[str] = None
    customer: Optional[str] = None
    notes: Optional[str] = None
    date: Optional[str] = None


@dataclass(frozen=True)
class ClaimResult:
    """Confirmation returned after a warranty claim has been written."""

    claim_id: str
    new_quantity: int
    claim: WarrantyClaim
    message: str


@dataclass(frozen=True)
class NewItemCommand:
    """User intent for adding a row to the inventory."""

    category: str
    item_name: str
    version: str = ""
    flavor: str = ""
    quantity: Any = 0
    price: Any = 0
    cost: Any = None
    date_added: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class BulkLineDetail:
    item: InventoryItem
    qty: int
    unit_cost: Decimal


@dataclass(frozen=True)
class BulkBreakdown:
    """Cost, revenue, and profit preview of a bulk sale."""

    lines: Tuple[BulkLineDetail, ...]
    total_quantity: int
    total_cost: Decimal
    total_revenue: Decimal

    @property
    def profit(self) -> Decimal:
        return self.total_revenue - self.total_cost

    @property
    def margin_percent(self) -> Decimal:
        if self.total_cost <= 0 or self.total_revenue <= 0:
            return Decimal("0")
        return (self.profit / self.total_revenue * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SalesSummary:
    total_sales: int
    total_revenue: Decimal
    retail_sales: int
    retail_revenue: Decimal
    bulk_sales: int
    bulk_revenue: Decimal


@dataclass(frozen=True)
class LoanSummary:
    unpaid_count: int
    unpaid_amount: Decimal
    paid_count: int


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Resolves ``config.ini``, parses settings, opens the workbook that stores
    the shop tables, and wraps it in a :class:`data_manager.WorkbookRowStore`.
    Per-item write serialization is switched on when the configuration asks
    for it.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(
        settings=settings,
        store=data_manager.WorkbookRowStore(workbook),
        item_locks=ItemLocks(enabled=settings.serialize_item_writes),
    )


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def ensure_tables(context: RuntimeContext, *names: str) -> None:
    """Create any of the named tables (all four by default) that are missing."""

    for name in names or tuple(SHEET_HEADERS):
        context.store.ensure_table(name, SHEET_HEADERS[name])


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.store.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Locks and change listeners carry over to the new context so that
    callers holding the old one stay coordinated with the new one.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(
        settings=context.settings,
        store=data_manager.WorkbookRowStore(workbook),
        item_locks=context.item_locks,
        listeners=context.listeners,
    )


def subscribe(context: RuntimeContext, listener: ChangeListener) -> None:
    """Register ``listener`` to be called after every successful mutation."""

    context.listeners.append(listener)


def _notify(context: RuntimeContext, event: ChangeEvent) -> None:
    for listener in list(context.listeners):
        try:
            listener(event)
        except Exception:
            log.exception("Change listener %r failed for %s '%s'", listener, event.operation, event.reference_id)


# ---------------------------------------------------------------------------
# Identifiers, dates, and defensive parsing
# ---------------------------------------------------------------------------


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    return candidate if candidate is not None else datetime.now(UTC)


def _today() -> str:
    return _resolve_timestamp(None).date().isoformat()


def generate_record_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier using UTC timestamps.

    Identifiers issued by this process for the same prefix are strictly
    increasing: a timestamp that does not move past the last one issued is
    advanced by one microsecond.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = when or _resolve_timestamp(None)
    with _id_guard:
        previous = _last_issued.get(prefix)
        if previous is not None and when <= previous:
            when = previous + timedelta(microseconds=1)
        _last_issued[prefix] = when
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def _optional_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_quantity(value: Any, field_name: str, *, allow_zero: bool = False) -> int:
    """Parse a whole-number quantity received as text or a number.

    Raises:
        ValidationError: If ``value`` is missing, not a whole number, negative,
            or zero when ``allow_zero`` is ``False``.
    """
    if value is None or isinstance(value, bool):
        log.error("Quantity validation failed for %s: %r", field_name, value)
        raise ValidationError(f"Invalid {field_name}: {value!r}")

    if isinstance(value, int):
        number = value
    else:
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation as exc:
            log.error("Quantity validation failed for %s: %r", field_name, value)
            raise ValidationError(f"Invalid {field_name}: {value!r}") from exc
        if not parsed.is_finite() or parsed != parsed.to_integral_value():
            log.error("Quantity validation failed for %s: %r", field_name, value)
            raise ValidationError(f"Invalid {field_name}: {value!r} is not a whole number")
        number = int(parsed)

    if number < 0 or (number == 0 and not allow_zero):
        log.error("Quantity validation failed for %s: %r", field_name, value)
        qualifier = "zero or positive" if allow_zero else "greater than zero"
        raise ValidationError(f"{field_name} must be {qualifier}")
    return number


def parse_money(value: Any, field_name: str, *, required: bool = True) -> Optional[Decimal]:
    """Parse a non-negative monetary amount received as text or a number.

    Blank values yield ``None`` unless ``required`` is set.

    Raises:
        ValidationError: If the value is required but blank, unparseable,
            non-finite, or negative.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            log.error("Monetary validation failed for %s: missing", field_name)
            raise ValidationError(f"{field_name} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field_name}: {value!r}")

    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as exc:
        log.error("Monetary validation failed for %s: %r", field_name, value)
        raise ValidationError(f"Invalid {field_name}: {value!r}") from exc
    if not amount.is_finite() or amount < 0:
        log.error("Monetary validation failed for %s: %r", field_name, value)
        raise ValidationError(f"{field_name} must be zero or positive")
    return amount


def compute_total(unit_price: Decimal, quantity: int) -> Decimal:
    """Return ``unit_price * quantity`` rounded half-up to cents."""

    return (unit_price * quantity).quantize(CENT, rounding=ROUND_HALF_UP)


def resolve_applied_price(request: SaleRequest, item: InventoryItem) -> Decimal:
    """Pick the unit price charged: applied price, then price per unit, then catalog."""

    applied = parse_money(request.applied_price, "appliedPrice", required=False)
    if applied is not None:
        return applied
    per_unit = parse_money(request.price_per_unit, "pricePerUnit", required=False)
    if per_unit is not None:
        return per_unit
    return item.price


def resolve_payment_method(value: Optional[str]) -> str:
    """Normalize a payment method, defaulting to cash.

    Known methods are matched case-insensitively and returned in their
    canonical spelling; anything else is kept as typed.
    """
    text = _optional_text(value)
    if not text:
        return PaymentMethod.CASH.value
    for method in PaymentMethod:
        if text.lower() == method.value.lower():
            return method.value
    return text


def _parse_iso_date(value: Any, field_name: str) -> str:
    text = _optional_text(value)
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError as exc:
        log.error("Date validation failed for %s: %r", field_name, value)
        raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD): {value!r}") from exc


# ---------------------------------------------------------------------------
# Request translation
# ---------------------------------------------------------------------------


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def sale_request_from_mapping(payload: Mapping[str, Any]) -> SaleRequest:
    """Build a :class:`SaleRequest` from a decoded JSON body or form mapping.

    Both the browser's camelCase keys (``itemId``, ``quantitySold``,
    ``bulkItems`` ...) and snake_case keys are accepted.

    Raises:
        ValidationError: If ``bulkItems`` is not a list of mappings.
    """
    raw_lines = _pick(payload, "bulkItems", "bulk_items") or []
    if not isinstance(raw_lines, (list, tuple)):
        raise ValidationError("bulkItems must be a list")

    lines: List[BulkLine] = []
    for raw in raw_lines:
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Invalid bulk item: {raw!r}")
        lines.append(BulkLine(item_id=_optional_text(_pick(raw, "itemId", "item_id")), qty=_pick(raw, "qty", "quantity")))

    item_id = _pick(payload, "itemId", "item_id")
    return SaleRequest(
        item_id=_optional_text(item_id) or None,
        quantity_sold=_pick(payload, "quantitySold", "quantity_sold"),
        applied_price=_pick(payload, "appliedPrice", "applied_price"),
        price_per_unit=_pick(payload, "pricePerUnit", "price_per_unit"),
        payment_method=_pick(payload, "paymentMethod", "payment_method"),
        customer=_pick(payload, "customer"),
        date=_pick(payload, "date"),
        notes=_pick(payload, "notes"),
        sale_type=_pick(payload, "saleType", "sale_type"),
        bulk_items=tuple(lines),
    )


def claim_request_from_mapping(payload: Mapping[str, Any]) -> ClaimRequest:
    """Build a :class:`ClaimRequest` from a decoded form mapping."""

    return ClaimRequest(
        item_id=_optional_text(_pick(payload, "itemId", "item_id", "productId")) or None,
        quantity=_pick(payload, "quantity"),
        reason=_pick(payload, "reason"),
        customer=_pick(payload, "customer"),
        notes=_pick(payload, "notes"),
        date=_pick(payload, "date"),
    )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


def load_inventory_index(context: RuntimeContext) -> InventoryIndex:
    """Read a fresh :class:`InventoryIndex` from the store."""

    ensure_tables(context, data_manager.INVENTORY_SHEET)
    return InventoryIndex.load(context.store)


def list_inventory(context: RuntimeContext) -> List[InventoryItem]:
    return load_inventory_index(context).items()


def search_inventory(context: RuntimeContext, query: str) -> List[InventoryItem]:
    """Items whose name or flavor contains ``query``, ignoring case."""

    return load_inventory_index(context).search(query)


def low_stock_items(context: RuntimeContext, threshold: Optional[int] = None) -> List[InventoryItem]:
    """Items below ``threshold`` (the configured threshold by default)."""

    limit = context.settings.low_stock_threshold if threshold is None else threshold
    return load_inventory_index(context).low_stock(limit)


def summarize_inventory(context: RuntimeContext) -> InventorySummary:
    return load_inventory_index(context).summarize()


def add_inventory_item(context: RuntimeContext, command: NewItemCommand) -> InventoryItem:
    """Validate and append a new row to the ``Inventory`` table.

    Juice and pod variants are sold per flavor, so they must name one.

    Raises:
        ValidationError: If the name or category is blank, a juice/pod item
            has no flavor, or quantity, price, or cost fail to parse.
    """
    category = _optional_text(command.category)
    item_name = _optional_text(command.item_name)
    flavor = _optional_text(command.flavor)
    if not category:
        raise ValidationError("Category is required")
    if not item_name:
        raise ValidationError("Item name is required")
    if category == Category.JUICE_OR_POD.value and not flavor:
        log.error("Rejected %s item '%s' without a flavor", category, item_name)
        raise ValidationError(f"A flavor is required for {category} items")

    timestamp = _resolve_timestamp(None)
    item = InventoryItem(
        item_id=generate_record_id(prefix="I", when=timestamp),
        category=category,
        item_name=item_name,
        version=_optional_text(command.version),
        flavor=flavor,
        quantity=parse_quantity(command.quantity, "quantity", allow_zero=True),
        price=parse_money(command.price, "price"),
        date_added=_optional_text(command.date_added) or timestamp.date().isoformat(),
        notes=_optional_text(command.notes),
        cost=parse_money(command.cost, "cost", required=False),
    )

    ensure_tables(context, data_manager.INVENTORY_SHEET)
    context.store.append_row(data_manager.INVENTORY_SHEET, data_manager.serialize_inventory_item(item))
    log.info("Added inventory item '%s' (%s, quantity=%d)", item.item_id, item.display_name, item.quantity)
    _notify(context, ChangeEvent("add-item", item.item_id, (data_manager.INVENTORY_SHEET,)))
    return item


def set_item_quantity(context: RuntimeContext, item_id: str, quantity: Any) -> QuantityUpdate:
    """Overwrite an item's quantity after a manual stock count."""

    new_quantity = parse_quantity(quantity, "quantity", allow_zero=True)
    with context.item_locks.hold([item_id]):
        index = load_inventory_index(context)
        item = index.get(item_id)
        update = index.set_quantity(item, new_quantity)
        _write_quantity(context, update, reference="manual count")
        index.commit(update)
    log.info(
        "Set quantity of '%s' from %d to %d",
        item_id,
        update.previous_quantity,
        update.new_quantity,
    )
    _notify(context, ChangeEvent("set-quantity", item_id, (data_manager.INVENTORY_SHEET,)))
    return update


def _write_quantity(context: RuntimeContext, update: QuantityUpdate, *, reference: str) -> None:
    try:
        context.store.write_range(data_manager.INVENTORY_SHEET, update.address, update.values)
    except StoreError:
        log.error(
            "Quantity of '%s' not updated (%s); expected %d -> %d at %s, reconcile manually",
            update.item_id,
            reference,
            update.previous_quantity,
            update.new_quantity,
            update.address,
        )
        raise


@contextmanager
def _records_written() -> Iterator[None]:
    """Flag errors raised inside the block as arriving after a committed write."""
    try:
        yield
    except PosError as exc:
        exc.records_written = True
        raise


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def build_loan_record(sale: SaleRecord) -> LoanRecord:
    """Open an unpaid loan for the full total of ``sale``."""

    return LoanRecord(
        loan_id=f"{LOAN_ID_PREFIX}{sale.sale_id}",
        sale_id=sale.sale_id,
        customer=sale.customer or UNKNOWN_CUSTOMER,
        item_name=sale.item_name,
        amount=sale.total,
        date_issued=sale.date,
        due_date="",
        status=LoanStatus.UNPAID.value,
        date_paid="",
        notes=sale.notes,
    )


def _append_sale_records(context: RuntimeContext, sale: SaleRecord, loan: Optional[LoanRecord]) -> None:
    context.store.append_row(data_manager.SALES_SHEET, data_manager.serialize_sale(sale))
    if loan is not None:
        with _records_written():
            context.store.append_row(data_manager.LOANS_SHEET, data_manager.serialize_loan(loan))
        log.info("Loan recorded: '%s' for %s (%s)", loan.loan_id, loan.customer, loan.amount)


def record_sale(context: RuntimeContext, request: SaleRequest) -> SaleResult:
    """Validate a sale, write its records, and decrement stock.

    Dispatches to :func:`record_bulk_sale` when the request carries bulk
    lines. For a single item the steps are:

    1. Load a fresh inventory index and look the item up.
    2. Parse the quantity and check it against current stock.
    3. Resolve the applied price and compute the rounded total.
    4. Append the sale row, then a loan row when paid by loan.
    5. Write the new quantity into the item's quantity cell.

    Every check runs before the first write, so a rejected sale leaves the
    workbook untouched.

    Args:
        context (RuntimeContext): Runtime context providing the row store.
        request (SaleRequest): The sale as received from the counter.

    Returns:
        SaleResult: Sale id, total, written records, and the new quantity.

    Raises:
        ValidationError: If the item id is missing or a numeric field cannot
            be parsed.
        ItemNotFoundError: If the item is not in the inventory.
        InsufficientStockError: If the quantity exceeds current stock.
        StoreError: If the workbook rejects a read or write. When this
            happens after the sale row was appended, the sale stays
            recorded and the stock count must be reconciled manually. The
            error then has ``records_written`` set.
    """
    if request.is_bulk:
        return record_bulk_sale(context, request)

    item_id = _optional_text(request.item_id)
    if not item_id:
        log.error("Sale rejected: no item id on a non-bulk sale")
        raise ValidationError("Item ID is required for non-bulk sales")

    with context.item_locks.hold([item_id]):
        ensure_tables(context, data_manager.SALES_SHEET, data_manager.LOANS_SHEET)
        index = load_inventory_index(context)
        item = index.get(item_id)
        quantity = parse_quantity(request.quantity_sold, "quantitySold")
        update = index.apply_delta(item, -quantity)
        applied_price = resolve_applied_price(request, item)
        payment_method = resolve_payment_method(request.payment_method)

        timestamp = _resolve_timestamp(None)
        sale = SaleRecord(
            sale_id=generate_record_id(prefix="S", when=timestamp),
            item_id=item.item_id,
            item_name=item.item_name,
            category=item.category,
            quantity_sold=quantity,
            price_per_unit=applied_price,
            total=compute_total(applied_price, quantity),
            date=_optional_text(request.date) or timestamp.date().isoformat(),
            customer=_optional_text(request.customer),
            sale_type=_optional_text(request.sale_type) or SaleType.RETAIL.value,
            payment_method=payment_method,
            notes=_optional_text(request.notes),
        )
        loan = build_loan_record(sale) if payment_method == PaymentMethod.LOAN.value else None

        _append_sale_records(context, sale, loan)
        with _records_written():
            _write_quantity(context, update, reference=f"sale {sale.sale_id}")
        index.commit(update)

    log.info(
        "Recorded sale '%s' of %d x '%s' at %s (total=%s, payment=%s)",
        sale.sale_id,
        quantity,
        item.item_id,
        applied_price,
        sale.total,
        payment_method,
    )
    _notify(context, ChangeEvent("sale", sale.sale_id, _sale_tables(loan)))
    return SaleResult(
        sale_id=sale.sale_id,
        total=sale.total,
        sale=sale,
        loan=loan,
        new_quantity=update.new_quantity,
        updates=(update,),
    )


def record_bulk_sale(context: RuntimeContext, request: SaleRequest) -> SaleResult:
    """Record one sale covering several inventory lines.

    The whole request is parsed up front. One sale row (and one loan row
    when paid by loan) is appended for the entire transaction before any
    stock is touched. Lines are then applied in order against a snapshot
    that reflects earlier lines, so two lines for the same item add up.

    Lines naming unknown items are skipped with a warning. A line whose
    quantity exceeds stock aborts the loop with
    :class:`InsufficientStockError` carrying the recorded ``sale_id``;
    decrements already written for earlier lines are kept. Any error raised
    after the sale row is in place has ``records_written`` set.

    Raises:
        ValidationError: If the quantity, price, or any line fails to parse,
            or no price per piece was given.
        InsufficientStockError: If a line exceeds the stock of its item.
        StoreError: If the workbook rejects a read or write.
    """
    quantity = parse_quantity(request.quantity_sold, "quantitySold")
    applied_price = parse_money(request.applied_price, "appliedPrice", required=False)
    if applied_price is None:
        applied_price = parse_money(request.price_per_unit, "pricePerUnit", required=False)
    if applied_price is None:
        log.error("Bulk sale rejected: no price per piece")
        raise ValidationError("A bulk sale needs an applied price per piece")

    lines: List[Tuple[str, int]] = []
    for position, line in enumerate(request.bulk_items, start=1):
        line_item_id = _optional_text(line.item_id)
        if not line_item_id:
            raise ValidationError(f"Bulk line {position} has no item id")
        lines.append((line_item_id, parse_quantity(line.qty, f"qty of bulk line {position}")))

    line_quantity = sum(qty for _, qty in lines)
    if line_quantity != quantity:
        log.warning(
            "Bulk lines total %d pieces but quantitySold is %d", line_quantity, quantity)

    payment_method = resolve_payment_method(request.payment_method)
    total = compute_total(applied_price, quantity)

    with context.item_locks.hold(item_id for item_id, _ in lines):
        ensure_tables(context, data_manager.SALES_SHEET, data_manager.LOANS_SHEET)
        index = load_inventory_index(context)

        timestamp = _resolve_timestamp(None)
        sale = SaleRecord(
            sale_id=generate_record_id(prefix="S", when=timestamp),
            item_id=BULK_ITEM_ID,
            item_name=f"Bulk Sale ({len(lines)} flavors)",
            category=BULK_CATEGORY,
            quantity_sold=quantity,
            price_per_unit=applied_price,
            total=total,
            date=_optional_text(request.date) or timestamp.date().isoformat(),
            customer=_optional_text(request.customer),
            sale_type=_optional_text(request.sale_type) or SaleType.BULK.value,
            payment_method=payment_method,
            notes=_optional_text(request.notes),
        )
        loan = build_loan_record(sale) if payment_method == PaymentMethod.LOAN.value else None
        _append_sale_records(context, sale, loan)

        updates: List[QuantityUpdate] = []
        skipped: List[str] = []
        with _records_written():
            for line_item_id, qty in lines:
                item = index.find_by_id(line_item_id)
                if item is None:
                    log.warning("Item ID %s not found in Inventory; skipped in bulk sale '%s'", line_item_id, sale.sale_id)
                    skipped.append(line_item_id)
                    continue
                try:
                    update = index.apply_delta(item, -qty)
                except InsufficientStockError as exc:
                    exc.sale_id = sale.sale_id
                    log.error(
                        "Bulk sale '%s' aborted at item '%s' after %d line(s) were decremented",
                        sale.sale_id,
                        line_item_id,
                        len(updates),
                    )
                    raise
                _write_quantity(context, update, reference=f"bulk sale {sale.sale_id}")
                index.commit(update)
                updates.append(update)

    log.info(
        "Recorded bulk sale '%s' of %d pieces across %d line(s) (total=%s, payment=%s, skipped=%d)",
        sale.sale_id,
        quantity,
        len(lines),
        total,
        payment_method,
        len(skipped),
    )
    _notify(context, ChangeEvent("sale", sale.sale_id, _sale_tables(loan)))
    return SaleResult(
        sale_id=sale.sale_id,
        total=total,
        sale=sale,
        loan=loan,
        updates=tuple(updates),
        skipped_item_ids=tuple(skipped),
    )


def _sale_tables(loan: Optional[LoanRecord]) -> Tuple[str, ...]:
    if loan is None:
        return (data_manager.SALES_SHEET, data_manager.INVENTORY_SHEET)
    return (data_manager.SALES_SHEET, data_manager.LOANS_SHEET, data_manager.INVENTORY_SHEET)


def summarize_bulk_lines(index: InventoryIndex, lines: Sequence[BulkLine], applied_price: Any) -> BulkBreakdown:
    """Preview the cost, revenue, and profit of a bulk sale.

    Cost uses each item's unit cost, falling back to its catalog price when
    no cost is recorded. Sums keep full precision.

    Raises:
        ItemNotFoundError: If a line names an unknown item.
        ValidationError: If a quantity or the price fails to parse.
    """
    price = parse_money(applied_price, "appliedPrice")
    details: List[BulkLineDetail] = []
    for line in lines:
        item = index.get(line.item_id)
        qty = parse_quantity(line.qty, "qty")
        unit_cost = item.cost if item.cost is not None else item.price
        details.append(BulkLineDetail(item=item, qty=qty, unit_cost=unit_cost))

    total_quantity = sum(detail.qty for detail in details)
    return BulkBreakdown(
        lines=tuple(details),
        total_quantity=total_quantity,
        total_cost=sum((detail.unit_cost * detail.qty for detail in details), Decimal("0")),
        total_revenue=price * total_quantity,
    )


def describe_bulk_sale(breakdown: BulkBreakdown, notes: str = "") -> str:
    """Render the notes text stored on a bulk sale row."""

    items = ", ".join(f"{detail.qty}× {detail.item.display_name}" for detail in breakdown.lines)
    summary = (
        f"Bulk items: {items}\n"
        f"Cost: ₱{breakdown.total_cost.quantize(CENT, rounding=ROUND_HALF_UP)} | "
        f"Revenue: ₱{breakdown.total_revenue.quantize(CENT, rounding=ROUND_HALF_UP)} | "
        f"Profit: ₱{breakdown.profit.quantize(CENT, rounding=ROUND_HALF_UP)}"
    )
    return f"{notes}\n{summary}" if notes else summary


def list_sales(context: RuntimeContext) -> List[SaleRecord]:
    ensure_tables(context, data_manager.SALES_SHEET)
    snapshot = context.store.read_all(data_manager.SALES_SHEET)
    return [data_manager.deserialize_sale(row) for row in snapshot.rows if row and row[0]]


def summarize_sales(context: RuntimeContext) -> SalesSummary:
    """Count sales and revenue, split into retail and bulk."""

    retail_sales = bulk_sales = 0
    retail_revenue = bulk_revenue = Decimal("0")
    sales = list_sales(context)
    for sale in sales:
        if sale.sale_type == SaleType.BULK.value:
            bulk_sales += 1
            bulk_revenue += sale.total
        else:
            retail_sales += 1
            retail_revenue += sale.total
    return SalesSummary(
        total_sales=len(sales),
        total_revenue=retail_revenue + bulk_revenue,
        retail_sales=retail_sales,
        retail_revenue=retail_revenue,
        bulk_sales=bulk_sales,
        bulk_revenue=bulk_revenue,
    )


# ---------------------------------------------------------------------------
# Loans
# ---------------------------------------------------------------------------


def list_loans(context: RuntimeContext) -> List[LoanRecord]:
    ensure_tables(context, data_manager.LOANS_SHEET)
    snapshot = context.store.read_all(data_manager.LOANS_SHEET)
    return [data_manager.deserialize_loan(row) for row in snapshot.rows if row and row[0]]


def is_loan_paid(status: Optional[str]) -> bool:
    """Return True when a stored loan status reads as Paid, ignoring case."""

    return (status or "").strip().casefold() == LoanStatus.PAID.value.casefold()


def _locate_loan(context: RuntimeContext, loan_id: str) -> Tuple[LoanRecord, int]:
    ensure_tables(context, data_manager.LOANS_SHEET)
    snapshot = context.store.read_all(data_manager.LOANS_SHEET)
    row_number = data_manager.locate_row(snapshot, loan_id)
    if row_number is None:
        log.warning("Loan lookup failed for id '%s'", loan_id)
        raise LoanNotFoundError(f"Loan not found: {loan_id}")
    raw = snapshot.rows[row_number - 2]
    return data_manager.deserialize_loan(raw), row_number


def mark_loan_paid(context: RuntimeContext, loan_id: str) -> LoanRecord:
    """Mark a loan as paid today.

    Only the Status and Date Paid cells are written; the amount is never
    touched. A loan that is already paid is returned unchanged without a
    write, so the first payment date is preserved.

    Raises:
        LoanNotFoundError: If no loan has ``loan_id``.
        StoreError: If the workbook rejects the read or write.
    """
    loan, row_number = _locate_loan(context, loan_id)
    if is_loan_paid(loan.status):
        log.info("Loan '%s' already paid on %s; nothing to do", loan_id, loan.date_paid)
        return loan

    paid_on = _today()
    context.store.write_range(
        data_manager.LOANS_SHEET,
        data_manager.loan_status_address(row_number),
        [[LoanStatus.PAID.value, paid_on]],
    )
    log.info("Marked loan '%s' as paid on %s (amount=%s)", loan_id, paid_on, loan.amount)
    _notify(context, ChangeEvent("mark-paid", loan_id, (data_manager.LOANS_SHEET,)))
    return replace(loan, status=LoanStatus.PAID.value, date_paid=paid_on)


def set_loan_due_date(context: RuntimeContext, loan_id: str, due_date: Any) -> LoanRecord:
    """Write the due date of a loan; nothing else on the row changes."""

    parsed = _parse_iso_date(due_date, "dueDate")
    loan, row_number = _locate_loan(context, loan_id)
    context.store.write_range(
        data_manager.LOANS_SHEET,
        data_manager.loan_due_date_address(row_number),
        [[parsed]],
    )
    log.info("Set due date of loan '%s' to %s", loan_id, parsed)
    _notify(context, ChangeEvent("set-due-date", loan_id, (data_manager.LOANS_SHEET,)))
    return replace(loan, due_date=parsed)


def summarize_loans(context: RuntimeContext) -> LoanSummary:
    """Count unpaid and paid loans; any status other than Paid counts as unpaid."""

    unpaid_count = paid_count = 0
    unpaid_amount = Decimal("0")
    for loan in list_loans(context):
        if is_loan_paid(loan.status):
            paid_count += 1
        else:
            unpaid_count += 1
            unpaid_amount += loan.amount
    return LoanSummary(unpaid_count=unpaid_count, unpaid_amount=unpaid_amount, paid_count=paid_count)


# ---------------------------------------------------------------------------
# Warranty
# ---------------------------------------------------------------------------


def process_warranty_claim(context: RuntimeContext, request: ClaimRequest) -> ClaimResult:
    """Replace defective units: record the claim and decrement stock.

    The claim row is appended before the quantity write. If that write
    fails the claim stays recorded with stock not decremented, which must
    be reconciled manually.

    Raises:
        ValidationError: If the product id is missing or the quantity is not
            a positive whole number.
        ItemNotFoundError: If the product is not in the inventory.
        InsufficientStockError: If stock cannot cover the replacement.
        StoreError: If the workbook rejects a read or write.
    """
    item_id = _optional_text(request.item_id)
    if not item_id:
        raise ValidationError("Product ID is required for a warranty claim")

    with context.item_locks.hold([item_id]):
        ensure_tables(context, data_manager.WARRANTY_SHEET)
        index = load_inventory_index(context)
        item = index.get(item_id)
        quantity = parse_quantity(request.quantity, "quantity")
        update = index.apply_delta(item, -quantity)

        timestamp = _resolve_timestamp(None)
        claim = WarrantyClaim(
            claim_id=generate_record_id(prefix="W", when=timestamp),
            date=_optional_text(request.date) or timestamp.date().isoformat(),
            product_id=item.item_id,
            product_name=item.item_name,
            quantity=quantity,
            reason=_optional_text(request.reason),
            customer=_optional_text(request.customer),
            notes=_optional_text(request.notes),
            status=ClaimStatus.COMPLETED.value,
        )
        context.store.append_row(data_manager.WARRANTY_SHEET, data_manager.serialize_claim(claim))
        with _records_written():
            _write_quantity(context, update, reference=f"warranty claim {claim.claim_id}")
        index.commit(update)

    log.info(
        "Processed warranty claim '%s': replaced %d x '%s'",
        claim.claim_id,
        quantity,
        item.item_id,
    )
    _notify(
        context,
        ChangeEvent("warranty-claim", claim.claim_id, (data_manager.WARRANTY_SHEET, data_manager.INVENTORY_SHEET)),
    )
    return ClaimResult(
        claim_id=claim.claim_id,
        new_quantity=update.new_quantity,
        claim=claim,
        message=f"Warranty claim processed. {quantity} units replaced.",
    )


def list_claims(context: RuntimeContext) -> List[WarrantyClaim]:
    ensure_tables(context, data_manager.WARRANTY_SHEET)
    snapshot = context.store.read_all(data_manager.WARRANTY_SHEET)
    return [data_manager.deserialize_claim(row) for row in snapshot.rows if row and row[0]]


__all__ = [
    "PosError",
    "BusinessRuleViolation",
    "ValidationError",
    "NotFoundError",
    "ItemNotFoundError",
    "LoanNotFoundError",
    "InsufficientStockError",
    "StoreError",
]
