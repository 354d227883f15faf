"""Command-line entry points for invoice-guard.

All orchestration in this module is limited to argparse wiring, reading draft
files, and translating command-line arguments into the objects consumed by
the workflow layer. Confirmation prompts are answered interactively unless
``--yes`` pre-approves them.
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, set_console_level
from .constants import AdjustmentReason, PaymentMethod
from .errors import BusinessRuleViolation, StoreError
from .models import InvoiceDraft, SettlementDraft
from .outcomes import Blocked, ConfirmCallback, NeedsConfirmation, Prompt
from .settlement_guard import suggested_settlement_amount
from .stock_adjustment import StockAdjustment
from .store import parse_invoice_draft
from .totals import format_money, totals_for_draft


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="invoice-guard",
        description="Validate and persist invoices, settlements and stock adjustments.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Echo workflow progress to stderr, not only warnings.",
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
    """Declare commands that persist invoices, settlements or stock."""
    specs = {
        "save-invoice": register_save_invoice_command(subparsers),
        "settle": register_settle_command(subparsers),
        "delete-settlement": register_delete_settlement_command(subparsers),
        "adjust-stock": register_adjust_stock_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare commands that only read from the store."""
    specs = {
        "check-invoice": register_check_invoice_command(subparsers),
        "settleable": register_settleable_command(subparsers),
        "stock": register_stock_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_check_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``check-invoice``."""
    name = "check-invoice"
    help_text = "Run the save rules against an invoice draft without saving it."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--draft", type=Path, required=True, help="JSON file holding the invoice draft.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_check_invoice)


def register_save_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``save-invoice``."""
    name = "save-invoice"
    help_text = "Validate an invoice draft and create or update the invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--draft", type=Path, required=True, help="JSON file holding the invoice draft.")
        parser.add_argument("--yes", action="store_true", help="Confirm every prompt without asking.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_save_invoice)


def register_settle_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``settle``."""
    name = "settle"
    help_text = "Record a settlement against an invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--invoice-id", required=True)
        parser.add_argument("--amount", default=None, help="Defaults to the remaining balance.")
        parser.add_argument(
            "--method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--reference", dest="reference", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.add_argument(
            "--detail",
            action="append",
            default=[],
            metavar="FIELD=VALUE",
            help="Payment method field, e.g. card_last4=1234. Repeatable.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_settle)


def register_delete_settlement_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-settlement``."""
    name = "delete-settlement"
    help_text = "Delete a settlement and show the invoice's new balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--settlement-id", required=True)
        parser.add_argument("--invoice-id", required=True)
        parser.add_argument("--yes", action="store_true", help="Delete without asking.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_settlement)


def register_adjust_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``adjust-stock``."""
    name = "adjust-stock"
    help_text = "Set an item's on-hand quantity."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        parser.add_argument("--new-quantity", required=True)
        parser.add_argument(
            "--reason",
            choices=[member.value for member in AdjustmentReason],
            required=True,
        )
        parser.add_argument("--unit-cost", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.add_argument("--yes", action="store_true", help="Confirm the prompt without asking.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_adjust_stock)


def register_settleable_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``settleable``."""
    name = "settleable"
    help_text = "List invoices that still have a balance to settle."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_settleable)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Search items and display their stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.add_argument("--page", type=int, default=0)
        parser.add_argument("--page-size", type=int, default=20)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
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


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def parse_amount(raw: str, label: str) -> Decimal:
    """Parse a decimal command-line value.

    Raises:
        ValueError: If ``raw`` is not a number.
    """
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid {label}: {raw!r}") from exc


def load_draft(path: Path) -> InvoiceDraft:
    """Read an invoice draft from a JSON file.

    Numbers are parsed as :class:`Decimal` so amounts never pass through
    binary floats.
    """
    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Draft file not found: {path}")
    raw = json.loads(path.read_text(encoding="utf-8"), parse_float=Decimal)
    return parse_invoice_draft(raw)


def parse_details(entries: Sequence[str]) -> Dict[str, str]:
    """Turn ``FIELD=VALUE`` arguments into a mapping."""
    details: Dict[str, str] = {}
    for entry in entries:
        field, separator, value = entry.partition("=")
        if not separator or not field.strip():
            raise ValueError(f"Invalid detail, expected FIELD=VALUE: {entry!r}")
        details[field.strip()] = value.strip()
    return details


def translate_settlement(args: argparse.Namespace, amount: Decimal) -> SettlementDraft:
    """Translate CLI args into a settlement draft."""
    return SettlementDraft(
        invoice_id=args.invoice_id,
        amount=amount,
        payment_method=PaymentMethod(args.method),
        reference_number=args.reference,
        notes=args.notes,
        details=parse_details(args.detail),
    )


def translate_adjustment(args: argparse.Namespace) -> StockAdjustment:
    """Translate CLI args into a stock adjustment."""
    return StockAdjustment(
        item_id=args.item_id,
        new_quantity=parse_amount(args.new_quantity, "quantity"),
        reason=AdjustmentReason(args.reason),
        notes=args.notes,
        unit_cost=parse_amount(args.unit_cost, "unit cost") if args.unit_cost is not None else None,
    )


def ask_yes_no(question: str) -> bool:
    """Ask ``question`` on stdin; anything but ``y``/``yes`` declines."""
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def ask_confirmation(prompts: Sequence[Prompt]) -> bool:
    """Show every prompt and ask once for all of them."""
    for prompt in prompts:
        print(prompt.message)
        print()
    return ask_yes_no("Proceed?")


def confirm_callback(args: argparse.Namespace) -> ConfirmCallback:
    if getattr(args, "yes", False):
        return lambda prompts: True
    return ask_confirmation


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_check_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Evaluate a draft and report the outcome."""
    draft = load_draft(args.draft)
    totals = totals_for_draft(draft)
    print(f"Subtotal: {format_money(totals.subtotal)}")
    print(f"Total after discount: {format_money(totals.total_after_discount)}")

    outcome = core_logic.evaluate_invoice(context, draft)
    if isinstance(outcome, Blocked):
        print(f"Blocked: {outcome.message}")
        return 2
    if isinstance(outcome, NeedsConfirmation):
        print("Confirmation required:")
        for prompt in outcome.prompts:
            print(f"- {prompt.message}")
        return 0
    print("Approved")
    return 0


def run_save_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the invoice save workflow."""
    draft = load_draft(args.draft)
    record = core_logic.save_invoice(context, draft, confirm=confirm_callback(args))
    print(
        f"Saved invoice {record.invoice_id}: status {record.status.value}, "
        f"total {format_money(record.total_amount)}, "
        f"remaining {format_money(record.remaining_amount)}"
    )
    return 0


def run_settle(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the settlement workflow."""
    if args.amount is None:
        amount = suggested_settlement_amount(context.store.get_invoice(args.invoice_id))
    else:
        amount = parse_amount(args.amount, "amount")
    settlement = core_logic.record_settlement(context, translate_settlement(args, amount))
    remaining = settlement.invoice_remaining_amount
    print(
        f"Recorded settlement {settlement.settlement_id} of {format_money(settlement.amount)}"
        + (f"; remaining {format_money(remaining)}" if remaining is not None else "")
    )
    return 0


def run_delete_settlement(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the settlement deletion workflow after confirmation."""
    question = f"Delete settlement {args.settlement_id}? The invoice balance will be recalculated."
    if not args.yes and not ask_yes_no(question):
        print("Cancelled")
        return 2
    record = core_logic.delete_settlement(context, args.settlement_id, args.invoice_id)
    print(
        f"Invoice {record.invoice_id}: status {record.status.value}, "
        f"remaining {format_money(record.remaining_amount)}"
    )
    return 0


def run_adjust_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock adjustment workflow."""
    item = core_logic.adjust_stock(context, translate_adjustment(args), confirm_callback(args))
    print(f"{item.name or item.item_id}: {item.available} on hand ({item.status})")
    return 0


def run_settleable(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List invoices that can still be settled."""
    records = core_logic.list_settleable_invoices(context)
    if not records:
        print("No invoices with an outstanding balance")
        return 0
    for record in records:
        print(
            f"{record.invoice_number or record.invoice_id}\t{record.client_name or record.client_id}\t"
            f"{record.status.value}\t{format_money(record.total_amount)}\t"
            f"{format_money(suggested_settlement_amount(record))}"
        )
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Search items and print their stock figures."""
    result = core_logic.search_items(context, args.search, page=args.page, page_size=args.page_size)
    for item in result.items:
        available = item.available if item.available is not None else "?"
        print(f"{item.item_id}\t{item.code}\t{item.name}\t{available}\t(min {item.min_stock})\t{item.status or ''}")
    print(f"{result.total_elements} item(s), page {args.page + 1} of {max(result.total_pages, 1)}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, StoreError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    if args.verbose:
        set_console_level(logging.INFO)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
