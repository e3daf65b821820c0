"""Command-line entry points for VapeBar POS.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the request objects consumed by the business
layer, and printing the results. The same parser configuration can be
reused by tests, scripts, or any alternative front-end that wants to expose
the package capabilities.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Sequence

from . import core_logic, data_manager, log
from .constants import LoanStatus, PaymentMethod


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    writes: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="vapebar-cli",
        description="Point-of-sale tools for the VapeBar shop workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upwards from the current directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and warranty claims."""
    specs = {
        "init": register_init_command(subparsers),
        "add-item": register_add_item_command(subparsers),
        "set-quantity": register_set_quantity_command(subparsers),
        "sale": register_sale_command(subparsers),
        "bulk-sale": register_bulk_sale_command(subparsers),
        "mark-paid": register_mark_paid_command(subparsers),
        "set-due-date": register_set_due_date_command(subparsers),
        "claim": register_claim_command(subparsers),
        "import-sales": register_import_sales_command(subparsers),
        "import-claims": register_import_claims_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as stock and sales reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "sales": register_sales_command(subparsers),
        "loans": register_loans_command(subparsers),
        "claims": register_claims_command(subparsers),
        "summary": register_summary_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_sale_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--quantity", required=True)
    parser.add_argument("--applied-price", default=None, help="Price per unit actually charged.")
    parser.add_argument(
        "--payment-method",
        default=PaymentMethod.CASH.value,
        help="Cash, GCash, Maya, or Loan (Loan opens an unpaid loan).",
    )
    parser.add_argument("--customer", default=None)
    parser.add_argument("--date", default=None, help="Sale date (defaults to today).")
    parser.add_argument("--notes", dest="notes", default=None)


def register_init_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``init``."""
    name = "init"
    help_text = "Create any missing tables in the configured workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_init, writes=True)


def register_add_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-item``."""
    name = "add-item"
    help_text = "Add a new item to the Inventory sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category", required=True)
        parser.add_argument("--item-name", required=True)
        parser.add_argument("--version", default="")
        parser.add_argument("--flavor", default="")
        parser.add_argument("--quantity", default="0")
        parser.add_argument("--price", required=True)
        parser.add_argument("--cost", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_item, writes=True)


def register_set_quantity_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-quantity``."""
    name = "set-quantity"
    help_text = "Overwrite an item's quantity after a stock count."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        parser.add_argument("--quantity", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_quantity, writes=True)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a retail sale of one item."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        _add_sale_options(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, writes=True)


def register_bulk_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bulk-sale``."""
    name = "bulk-sale"
    help_text = "Record one sale covering several items at a single price per piece."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--line",
            dest="lines",
            action="append",
            required=True,
            metavar="ITEM_ID:QTY",
            help="Inventory line sold; repeat for each item.",
        )
        _add_sale_options(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bulk_sale, writes=True)


def register_mark_paid_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``mark-paid``."""
    name = "mark-paid"
    help_text = "Mark a loan as paid today."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--loan-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_mark_paid, writes=True)


def register_set_due_date_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-due-date``."""
    name = "set-due-date"
    help_text = "Set the due date of a loan."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--loan-id", required=True)
        parser.add_argument("--due-date", required=True, help="ISO date, e.g. 2024-06-30.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_due_date, writes=True)


def register_claim_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``claim``."""
    name = "claim"
    help_text = "Replace defective units under warranty."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        parser.add_argument("--quantity", required=True)
        parser.add_argument("--reason", default=None)
        parser.add_argument("--customer", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_claim, writes=True)


def register_import_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import-sales``."""
    name = "import-sales"
    help_text = "Record sales from a JSON file of counter payloads (itemId, quantitySold, bulkItems, ...)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("file", type=Path, help="JSON object or list of objects.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import_sales, writes=True)


def register_import_claims_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import-claims``."""
    name = "import-claims"
    help_text = "Record warranty claims from a JSON file of form payloads (productId, quantity, reason, ...)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("file", type=Path, help="JSON object or list of objects.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import_claims, writes=True)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category", default=None)
        parser.add_argument("--search", default=None, help="Only items whose name or flavor contains this text.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "Display items below the low-stock threshold."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--threshold", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock_report)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "Display recorded sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_report)


def register_loans_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``loans``."""
    name = "loans"
    help_text = "Display loans and outstanding balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--unpaid", action="store_true", help="Only show unpaid loans.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_loans_report)


def register_claims_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``claims``."""
    name = "claims"
    help_text = "Display warranty claims."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_claims_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display inventory, sales, and loan totals."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report)


def load_runtime_context(config_path: Path | None = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_bulk_lines(raw_lines: Iterable[str]) -> List[core_logic.BulkLine]:
    """Split ``ITEM_ID:QTY`` arguments into bulk lines.

    Quantities are left as text for the business layer to validate.
    """
    lines: List[core_logic.BulkLine] = []
    for raw in raw_lines:
        item_id, separator, qty = raw.rpartition(":")
        if not separator or not item_id.strip():
            raise core_logic.ValidationError(f"Bulk line must look like ITEM_ID:QTY, got {raw!r}")
        lines.append(core_logic.BulkLine(item_id=item_id.strip(), qty=qty.strip()))
    return lines


def translate_add_item(args: argparse.Namespace) -> core_logic.NewItemCommand:
    """Translate CLI args into a new-item command object."""
    return core_logic.NewItemCommand(
        category=args.category,
        item_name=args.item_name,
        version=args.version,
        flavor=args.flavor,
        quantity=args.quantity,
        price=args.price,
        cost=args.cost,
        notes=args.notes,
    )


def translate_sale(args: argparse.Namespace) -> core_logic.SaleRequest:
    """Translate CLI args into a sale request."""
    return core_logic.SaleRequest(
        item_id=args.item_id,
        quantity_sold=args.quantity,
        applied_price=args.applied_price,
        payment_method=args.payment_method,
        customer=args.customer,
        date=args.date,
        notes=args.notes,
    )


def translate_bulk_sale(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
) -> core_logic.SaleRequest:
    """Translate CLI args into a bulk sale request.

    The sale notes get the per-line breakdown appended, the way the counter
    screen records it. Lines naming unknown items are left out of the
    breakdown and skipped by the sale itself.
    """
    lines = parse_bulk_lines(args.lines)
    notes = args.notes or ""
    if args.applied_price is not None:
        index = core_logic.load_inventory_index(context)
        known = [line for line in lines if line.item_id in index]
        if known:
            breakdown = core_logic.summarize_bulk_lines(index, known, args.applied_price)
            notes = core_logic.describe_bulk_sale(breakdown, notes)
    return core_logic.SaleRequest(
        quantity_sold=args.quantity,
        applied_price=args.applied_price,
        payment_method=args.payment_method,
        customer=args.customer,
        date=args.date,
        notes=notes,
        bulk_items=tuple(lines),
    )


def translate_claim(args: argparse.Namespace) -> core_logic.ClaimRequest:
    """Translate CLI args into a warranty claim request."""
    return core_logic.ClaimRequest(
        item_id=args.item_id,
        quantity=args.quantity,
        reason=args.reason,
        customer=args.customer,
        notes=args.notes,
    )


def run_init(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Create missing tables in the workbook."""
    core_logic.ensure_tables(context)
    print(f"Workbook ready: {context.settings.data_file}")
    return 0


def run_add_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-item workflow in the BLL."""
    item = core_logic.add_inventory_item(context, translate_add_item(args))
    print(f"Added {item.item_id}: {item.display_name} (quantity {item.quantity})")
    return 0


def run_set_quantity(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a manual quantity correction via the BLL."""
    update = core_logic.set_item_quantity(context, args.item_id, args.quantity)
    print(f"{update.item_id}: {update.previous_quantity} -> {update.new_quantity}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    result = core_logic.record_sale(context, translate_sale(args))
    print(f"Sale {result.sale_id} recorded: total {result.total}, {result.new_quantity} left in stock")
    if result.loan is not None:
        print(f"Loan {result.loan.loan_id} opened for {result.loan.customer}")
    return 0


def run_bulk_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the bulk sale workflow via the BLL."""
    result = core_logic.record_bulk_sale(context, translate_bulk_sale(context, args))
    print(f"Bulk sale {result.sale_id} recorded: total {result.total}")
    for item_id in result.skipped_item_ids:
        print(f"  skipped unknown item {item_id}")
    if result.loan is not None:
        print(f"Loan {result.loan.loan_id} opened for {result.loan.customer}")
    return 0


def run_mark_paid(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the loan payment workflow via the BLL."""
    loan = core_logic.mark_loan_paid(context, args.loan_id)
    print(f"Loan {loan.loan_id} paid on {loan.date_paid}")
    return 0


def run_set_due_date(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the due date update via the BLL."""
    loan = core_logic.set_loan_due_date(context, args.loan_id, args.due_date)
    print(f"Loan {loan.loan_id} due on {loan.due_date}")
    return 0


def run_claim(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the warranty claim workflow via the BLL."""
    result = core_logic.process_warranty_claim(context, translate_claim(args))
    print(f"{result.message} Claim {result.claim_id}, {result.new_quantity} left in stock")
    return 0


def load_payloads(path: Path) -> List[Mapping[str, Any]]:
    """Read a JSON object, or a list of them, from ``path``."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as error:
        raise core_logic.ValidationError(f"{path} is not valid JSON: {error}") from error
    if isinstance(data, Mapping):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(entry, Mapping) for entry in data):
        raise core_logic.ValidationError(f"{path} must hold a JSON object or a list of objects")
    return data


def record_each(payloads: Sequence[Mapping[str, Any]], record: Callable[[Mapping[str, Any]], None]) -> int:
    """Apply ``record`` to every payload in order, stopping at the first failure.

    Entries recorded before a failure stay written, so the error is flagged
    with ``records_written`` for :func:`main` to save them.
    """
    recorded = 0
    for position, payload in enumerate(payloads, start=1):
        try:
            record(payload)
        except core_logic.PosError as error:
            log.error("Import stopped at entry %d; %d earlier entries were recorded", position, recorded)
            if recorded:
                error.records_written = True
            raise
        recorded += 1
    return recorded


def run_import_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record every sale payload in the file via the BLL."""

    def record(payload: Mapping[str, Any]) -> None:
        result = core_logic.record_sale(context, core_logic.sale_request_from_mapping(payload))
        print(f"Sale {result.sale_id} recorded: total {result.total}")

    count = record_each(load_payloads(args.file), record)
    print(f"Imported {count} sale(s) from {args.file}")
    return 0


def run_import_claims(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record every warranty claim payload in the file via the BLL."""

    def record(payload: Mapping[str, Any]) -> None:
        result = core_logic.process_warranty_claim(context, core_logic.claim_request_from_mapping(payload))
        print(f"{result.message} Claim {result.claim_id}, {result.new_quantity} left in stock")

    count = record_each(load_payloads(args.file), record)
    print(f"Imported {count} claim(s) from {args.file}")
    return 0


def _print_items(items: Iterable[data_manager.InventoryItem]) -> None:
    for item in items:
        print(f"{item.item_id}\t{item.category}\t{item.display_name}\t{item.quantity}\t{item.price}")


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print inventory rows, optionally filtered by search text and category."""
    if args.search:
        items = core_logic.search_inventory(context, args.search)
    else:
        items = core_logic.list_inventory(context)
    if args.category:
        items = [item for item in items if item.category == args.category]
    _print_items(items)
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print items below the low-stock threshold."""
    _print_items(core_logic.low_stock_items(context, args.threshold))
    return 0


def run_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print recorded sales."""
    for sale in core_logic.list_sales(context):
        print(
            f"{sale.sale_id}\t{sale.date}\t{sale.item_name}\t{sale.quantity_sold}\t"
            f"{sale.total}\t{sale.payment_method}\t{sale.customer}"
        )
    return 0


def run_loans_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print loans, optionally only unpaid ones."""
    for loan in core_logic.list_loans(context):
        if args.unpaid and core_logic.is_loan_paid(loan.status):
            continue
        print(
            f"{loan.loan_id}\t{loan.customer}\t{loan.amount}\t{loan.status or LoanStatus.UNPAID.value}\t"
            f"{loan.due_date}\t{loan.date_paid}"
        )
    return 0


def run_claims_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print warranty claims."""
    for claim in core_logic.list_claims(context):
        print(
            f"{claim.claim_id}\t{claim.date}\t{claim.product_name}\t{claim.quantity}\t"
            f"{claim.reason}\t{claim.status}"
        )
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the analytics totals."""
    inventory = core_logic.summarize_inventory(context)
    sales = core_logic.summarize_sales(context)
    loans = core_logic.summarize_loans(context)
    print(f"Shop: {context.settings.shop_name}")
    print(
        f"Items: {inventory.total_items} ({inventory.juice_items} juice/pod, "
        f"{inventory.device_items} devices, {inventory.total_brands} brands)"
    )
    print(f"Stock: {inventory.total_quantity} pieces worth {inventory.total_value}")
    print(
        f"Sales: {sales.total_sales} for {sales.total_revenue} "
        f"(retail {sales.retail_sales}/{sales.retail_revenue}, bulk {sales.bulk_sales}/{sales.bulk_revenue})"
    )
    print(f"Loans: {loans.unpaid_count} unpaid totalling {loans.unpaid_amount}, {loans.paid_count} paid")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, core_logic.ValidationError):
        return 2
    if isinstance(error, FileNotFoundError):
        return 3
    if isinstance(error, core_logic.NotFoundError):
        return 4
    if isinstance(error, core_logic.InsufficientStockError):
        return 5
    if isinstance(error, core_logic.StoreError):
        return 6
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def persist_partial_writes(context: core_logic.RuntimeContext, error: core_logic.PosError) -> None:
    """Save records a failed command already wrote, since nothing is rolled back."""
    sale_id = getattr(error, "sale_id", None)
    log.warning(
        "Saving records written before the failure%s",
        f" (sale '{sale_id}')" if sale_id else "",
    )
    try:
        persist_workbook(context)
    except Exception as save_error:
        log.error("Could not save partially applied changes: %s", save_error)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    context = None
    try:
        context = load_runtime_context(getattr(args, "config", None))
        spec = command_table[args.command]
        if spec.writes:
            core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and spec.writes:
            persist_workbook(context)
        return exit_code
    except core_logic.PosError as error:
        if error.records_written and context is not None:
            persist_partial_writes(context, error)
        return handle_cli_error(error)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":
    raise SystemExit(main())
