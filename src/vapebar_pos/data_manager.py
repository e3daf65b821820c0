"""Data access layer for VapeBar POS.

This module provides low-level helpers that read from and write to the shop
workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Row store operations: the four calls the business layer is allowed to
   make against a table (ensure, read all, append, write a range) plus the
   conversion between positional rows and named records.
"""


from __future__ import annotations

import configparser
import threading
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.utils.cell import range_boundaries
from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.workbook import Workbook

from . import log
from .constants import DEFAULT_LOW_STOCK_THRESHOLD, SheetName
from .exceptions import StoreError


CONFIG_FILE_NAME = "config.ini"
INVENTORY_SHEET = SheetName.INVENTORY.value
SALES_SHEET = SheetName.SALES.value
LOANS_SHEET = SheetName.LOANS.value
WARRANTY_SHEET = SheetName.WARRANTY.value

# 1-based column positions used for in-place updates.
INVENTORY_QUANTITY_COLUMN = 6
LOAN_DUE_DATE_COLUMN = 7
LOAN_STATUS_COLUMN = 8
LOAN_DATE_PAID_COLUMN = 9


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    serialize_item_writes: bool = False


@dataclass(frozen=True)
class TableSnapshot:
    """Header and data rows of a table, in store order, as strings."""

    header: List[str]
    rows: List[List[str]]


@dataclass(frozen=True)
class InventoryItem:
    """In-memory view of a row from the ``Inventory`` sheet."""

    item_id: str
    category: str
    item_name: str
    version: str
    flavor: str
    quantity: int
    price: Decimal
    date_added: str
    notes: str
    cost: Optional[Decimal] = None

    @property
    def display_name(self) -> str:
        if self.flavor:
            return f"{self.item_name} - {self.flavor}"
        return f"{self.item_name} {self.version}".strip()


@dataclass(frozen=True)
class SaleRecord:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    item_id: str
    item_name: str
    category: str
    quantity_sold: int
    price_per_unit: Decimal
    total: Decimal
    date: str
    customer: str
    sale_type: str
    payment_method: str
    notes: str


@dataclass(frozen=True)
class LoanRecord:
    """In-memory view of a row from the ``Loans`` sheet."""

    loan_id: str
    sale_id: str
    customer: str
    item_name: str
    amount: Decimal
    date_issued: str
    due_date: str
    status: str
    date_paid: str
    notes: str


@dataclass(frozen=True)
class WarrantyClaim:
    """In-memory view of a row from the ``Warranty`` sheet."""

    claim_id: str
    date: str
    product_id: str
    product_name: str
    quantity: int
    reason: str
    customer: str
    notes: str
    status: str


class RowStore(Protocol):
    """Contract the business layer consumes from the tabular store."""

    def ensure_table(self, name: str, header: Sequence[str]) -> None: ...

    def read_all(self, name: str) -> TableSnapshot: ...

    def append_row(self, name: str, row: Sequence[str]) -> None: ...

    def write_range(self, name: str, address: str, rows: Sequence[Sequence[str]]) -> None: ...


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Inventory] LowStockThreshold`` and
    ``[Concurrency] SerializeItemWrites`` are optional and fall back to their
    defaults when the section or option is absent. Relative ``DataFile``
    paths are anchored to ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If an optional entry holds a value of the wrong type.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    low_stock_threshold = parser.getint(
        "Inventory", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD)
    serialize_item_writes = parser.getboolean(
        "Concurrency", "SerializeItemWrites", fallback=False)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        low_stock_threshold=low_stock_threshold,
        serialize_item_writes=serialize_item_writes,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the shop workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


class WorkbookRowStore:
    """Row store backed by an ``openpyxl`` workbook.

    Tables map one-to-one onto worksheets whose first row is the header.
    Every value is written as text, and reads hand back text, so records
    survive a write/read cycle unchanged. The store never retries and never
    batches: each call touches the workbook immediately and surfaces any
    failure as :class:`StoreError`.

    Calls are serialized on one reentrant lock because openpyxl worksheets
    are not safe to mutate from several threads at once.
    """

    def __init__(self, workbook: Workbook) -> None:
        self.workbook = workbook
        self._lock = threading.RLock()

    def ensure_table(self, name: str, header: Sequence[str]) -> None:
        """Create ``name`` with a bold ``header`` row unless it already exists."""

        with self._lock:
            if name in self.workbook.sheetnames:
                return

            sheet = self.workbook.create_sheet(title=name)
            bold_font = Font(bold=True)
            for column_index, column_name in enumerate(header, start=1):
                cell = sheet.cell(row=1, column=column_index)
                cell.value = column_name
                cell.font = bold_font
            log.info("Created table '%s' with %d columns", name, len(header))

    def read_all(self, name: str) -> TableSnapshot:
        """Return the header and every data row of ``name`` in append order.

        Trailing blank rows are dropped. Blank rows in the middle of the
        table are kept so that a row's position still maps to its sheet row.
        """

        with self._lock:
            sheet = self._sheet(name)
            raw_rows = [
                [_cell_text(value) for value in row]
                for row in sheet.iter_rows(values_only=True)
            ]
            while raw_rows and not any(raw_rows[-1]):
                raw_rows.pop()
            if not raw_rows:
                return TableSnapshot(header=[], rows=[])

            header = list(raw_rows[0])
            while header and not header[-1]:
                header.pop()
            log.debug("Read %d rows from table '%s'", len(raw_rows) - 1, name)
            return TableSnapshot(header=header, rows=raw_rows[1:])

    def append_row(self, name: str, row: Sequence[str]) -> None:
        """Append ``row`` after the last row of ``name``."""

        with self._lock:
            sheet = self._sheet(name)
            try:
                sheet.append(list(row))
            except (ValueError, TypeError, IllegalCharacterError) as exc:
                log.error("Append to table '%s' failed: %s", name, exc)
                raise StoreError(f"Failed to append to {name}: {exc}") from exc

    def write_range(self, name: str, address: str, rows: Sequence[Sequence[str]]) -> None:
        """Overwrite the rectangle at ``address`` (``"F5"``, ``"H3:I3"``).

        Raises:
            StoreError: If the table is unknown, the address is malformed or
                lies below the last row of the table, or ``rows`` does not
                match the shape of the addressed rectangle.
        """

        with self._lock:
            sheet = self._sheet(name)
            min_col, min_row, max_col, max_row = _parse_address(name, address)

            if max_row > sheet.max_row:
                log.error(
                    "Range %s is outside table '%s' (last row %d)", address, name, sheet.max_row)
                raise StoreError(f"Range {address} is outside table {name}")

            height = max_row - min_row + 1
            width = max_col - min_col + 1
            if len(rows) != height or any(len(values) != width for values in rows):
                raise StoreError(
                    f"Values do not match the shape of range {address} ({height}x{width})")

            try:
                for row_offset, values in enumerate(rows):
                    for col_offset, value in enumerate(values):
                        sheet.cell(row=min_row + row_offset,
                                   column=min_col + col_offset, value=value)
            except (ValueError, TypeError, IllegalCharacterError) as exc:
                log.error("Write to %s!%s failed: %s", name, address, exc)
                raise StoreError(f"Failed to write {name}!{address}: {exc}") from exc

    def _sheet(self, name: str):
        try:
            return self.workbook[name]
        except KeyError as exc:
            log.error("Table '%s' does not exist in the workbook", name)
            raise StoreError(f"Unknown table: {name}") from exc


def _parse_address(name: str, address: str) -> tuple[int, int, int, int]:
    """Turn an A1 address into ``(min_col, min_row, max_col, max_row)``."""

    target = address.strip()
    if "!" in target:
        sheet_part, target = target.rsplit("!", 1)
        if sheet_part.strip("'") != name:
            raise StoreError(f"Range {address} does not belong to table {name}")

    try:
        bounds = range_boundaries(target)
    except (ValueError, TypeError) as exc:
        raise StoreError(f"Malformed range address: {address}") from exc

    if any(bound is None for bound in bounds):
        raise StoreError(f"Range address must name cells, not whole rows or columns: {address}")
    min_col, min_row, max_col, max_row = bounds
    if min_row < 1 or min_col < 1:
        raise StoreError(f"Malformed range address: {address}")
    return min_col, min_row, max_col, max_row


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def cell_address(column: int, row_number: int) -> str:
    """Return the A1 address of a single cell."""

    return f"{get_column_letter(column)}{row_number}"


def quantity_address(row_number: int) -> str:
    """Address of the Quantity cell of an inventory row."""

    return cell_address(INVENTORY_QUANTITY_COLUMN, row_number)


def loan_status_address(row_number: int) -> str:
    """Address of the Status/Date Paid span of a loan row."""

    return f"{cell_address(LOAN_STATUS_COLUMN, row_number)}:{cell_address(LOAN_DATE_PAID_COLUMN, row_number)}"


def loan_due_date_address(row_number: int) -> str:
    """Address of the Due Date cell of a loan row."""

    return cell_address(LOAN_DUE_DATE_COLUMN, row_number)


def row_number_for_index(index: int) -> int:
    """Map a 0-based position among data rows onto its 1-based sheet row."""

    return index + 2


def locate_row(snapshot: TableSnapshot, key_value: str, *, key_index: int = 0) -> Optional[int]:
    """Find the sheet row whose key column equals ``key_value``.

    Args:
        snapshot (TableSnapshot): Table contents as returned by
            :meth:`WorkbookRowStore.read_all`.
        key_value (str): Value to match.
        key_index (int): 0-based column holding the key. Defaults to the
            identifier column.

    Returns:
        int | None: 1-based sheet row of the first match, or ``None``.
    """

    for index, row in enumerate(snapshot.rows):
        if key_index < len(row) and row[key_index] and row[key_index] == key_value:
            return row_number_for_index(index)
    return None


def format_money(amount: Decimal) -> str:
    """Render a decimal amount the way it is stored in the workbook."""

    return str(amount)


def serialize_inventory_item(record: InventoryItem) -> list[str]:
    """Convert an inventory dataclass into the ``Inventory`` column order."""

    return [
        record.item_id,
        record.category,
        record.item_name,
        record.version,
        record.flavor,
        str(record.quantity),
        format_money(record.price),
        record.date_added,
        record.notes,
        format_money(record.cost) if record.cost is not None else "",
    ]


def serialize_sale(record: SaleRecord) -> list[str]:
    """Convert a sale dataclass into the ``Sales`` column order."""

    return [
        record.sale_id,
        record.item_id,
        record.item_name,
        record.category,
        str(record.quantity_sold),
        format_money(record.price_per_unit),
        format_money(record.total),
        record.date,
        record.customer,
        record.sale_type,
        record.payment_method,
        record.notes,
    ]


def serialize_loan(record: LoanRecord) -> list[str]:
    """Convert a loan dataclass into the ``Loans`` column order."""

    return [
        record.loan_id,
        record.sale_id,
        record.customer,
        record.item_name,
        format_money(record.amount),
        record.date_issued,
        record.due_date,
        record.status,
        record.date_paid,
        record.notes,
    ]


def serialize_claim(record: WarrantyClaim) -> list[str]:
    """Convert a warranty claim dataclass into the ``Warranty`` column order."""

    return [
        record.claim_id,
        record.date,
        record.product_id,
        record.product_name,
        str(record.quantity),
        record.reason,
        record.customer,
        record.notes,
        record.status,
    ]


def _field(raw_row: Sequence[object], index: int) -> str:
    if index >= len(raw_row) or raw_row[index] is None:
        return ""
    return str(raw_row[index])


def _stored_int(text: str, *, column: str, record_id: str) -> int:
    """Parse an integer cell, reading blanks as zero.

    Fractional values are truncated. Unreadable values are logged and read as
    zero so that one damaged cell does not hide the rest of the table.
    """

    if not text.strip():
        return 0
    try:
        return int(Decimal(text.strip()))
    except (InvalidOperation, ValueError, OverflowError):
        log.warning("Unreadable %s '%s' on row '%s'; treating as 0", column, text, record_id)
        return 0


def _stored_decimal(text: str, *, column: str, record_id: str) -> Optional[Decimal]:
    """Parse a decimal cell; blank cells yield ``None``."""

    if not text.strip():
        return None
    try:
        value = Decimal(text.strip())
    except InvalidOperation:
        log.warning("Unreadable %s '%s' on row '%s'; treating as 0", column, text, record_id)
        return Decimal("0")
    if not value.is_finite():
        log.warning("Non-finite %s '%s' on row '%s'; treating as 0", column, text, record_id)
        return Decimal("0")
    return value


def deserialize_inventory_item(raw_row: Sequence[object]) -> InventoryItem:
    """Convert a raw ``Inventory`` row into an :class:`InventoryItem`.

    Short rows are padded with blanks, so rows written before the ``Cost``
    column existed still load with ``cost`` set to ``None``.
    """

    item_id = _field(raw_row, 0)
    price = _stored_decimal(_field(raw_row, 6), column="Price", record_id=item_id)
    return InventoryItem(
        item_id=item_id,
        category=_field(raw_row, 1),
        item_name=_field(raw_row, 2),
        version=_field(raw_row, 3),
        flavor=_field(raw_row, 4),
        quantity=_stored_int(_field(raw_row, 5), column="Quantity", record_id=item_id),
        price=price if price is not None else Decimal("0"),
        date_added=_field(raw_row, 7),
        notes=_field(raw_row, 8),
        cost=_stored_decimal(_field(raw_row, 9), column="Cost", record_id=item_id),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRecord:
    """Convert a raw ``Sales`` row into a :class:`SaleRecord`."""

    sale_id = _field(raw_row, 0)
    price = _stored_decimal(_field(raw_row, 5), column="Price Per Unit", record_id=sale_id)
    total = _stored_decimal(_field(raw_row, 6), column="Total", record_id=sale_id)
    return SaleRecord(
        sale_id=sale_id,
        item_id=_field(raw_row, 1),
        item_name=_field(raw_row, 2),
        category=_field(raw_row, 3),
        quantity_sold=_stored_int(_field(raw_row, 4), column="Quantity Sold", record_id=sale_id),
        price_per_unit=price if price is not None else Decimal("0"),
        total=total if total is not None else Decimal("0"),
        date=_field(raw_row, 7),
        customer=_field(raw_row, 8),
        sale_type=_field(raw_row, 9),
        payment_method=_field(raw_row, 10),
        notes=_field(raw_row, 11),
    )


def deserialize_loan(raw_row: Sequence[object]) -> LoanRecord:
    """Convert a raw ``Loans`` row into a :class:`LoanRecord`."""

    loan_id = _field(raw_row, 0)
    amount = _stored_decimal(_field(raw_row, 4), column="Amount", record_id=loan_id)
    return LoanRecord(
        loan_id=loan_id,
        sale_id=_field(raw_row, 1),
        customer=_field(raw_row, 2),
        item_name=_field(raw_row, 3),
        amount=amount if amount is not None else Decimal("0"),
        date_issued=_field(raw_row, 5),
        due_date=_field(raw_row, 6),
        status=_field(raw_row, 7),
        date_paid=_field(raw_row, 8),
        notes=_field(raw_row, 9),
    )


def deserialize_claim(raw_row: Sequence[object]) -> WarrantyClaim:
    """Convert a raw ``Warranty`` row into a :class:`WarrantyClaim`."""

    claim_id = _field(raw_row, 0)
    return WarrantyClaim(
        claim_id=claim_id,
        date=_field(raw_row, 1),
        product_id=_field(raw_row, 2),
        product_name=_field(raw_row, 3),
        quantity=_stored_int(_field(raw_row, 4), column="Quantity", record_id=claim_id),
        reason=_field(raw_row, 5),
        customer=_field(raw_row, 6),
        notes=_field(raw_row, 7),
        status=_field(raw_row, 8),
    )
