"""Shared pytest fixtures and utilities for invoice-guard tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from invoice_guard import cli, core_logic  # noqa: E402
from invoice_guard.config import Policy, Settings, StoreSettings  # noqa: E402
from invoice_guard.constants import InvoiceStatus, PaymentMethod  # noqa: E402
from invoice_guard.models import (  # noqa: E402
    BaselineSnapshot,
    InvoiceDraft,
    InvoiceLine,
    InvoiceRecord,
    StockEntry,
)
from invoice_guard.setup_workbook import create_store_workbook  # noqa: E402
from invoice_guard.stock_cache import StockCache  # noqa: E402
from invoice_guard.workbook_store import ItemRow  # noqa: E402

SEED_ITEMS = (
    ItemRow("I1", "C-001", "Widget", Decimal("10.00"), Decimal("20"), Decimal("5")),
    ItemRow("I2", "C-002", "Gadget", Decimal("25.00"), Decimal("6"), Decimal("2")),
    ItemRow("I3", "C-003", "Bolt", Decimal("1.50"), Decimal("100"), Decimal("10")),
)

_CONFIG_TEMPLATE = (
    "[Store]\n"
    "Backend = workbook\n"
    "DataFile = {data_file}\n\n"
    "[Policy]\n"
    "MinimumInvoiceAmount = {minimum}\n"
    "LargeAdjustmentPercent = {threshold}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


# ---------------------------------------------------------------------------
# Domain builders
# ---------------------------------------------------------------------------


@pytest.fixture
def line_factory() -> Callable[..., InvoiceLine]:
    """Factory for invoice lines with sensible defaults."""

    def _make_line(
        item_id: str | None = "I1",
        quantity: str = "1",
        price: str = "10",
        *,
        name: str = "",
        code: str = "",
        is_free: bool = False,
    ) -> InvoiceLine:
        return InvoiceLine(
            item_id=item_id,
            quantity=Decimal(quantity),
            price=Decimal(price),
            name=name,
            code=code,
            is_free=is_free,
        )

    return _make_line


@pytest.fixture
def draft_factory(line_factory: Callable[..., InvoiceLine]) -> Callable[..., InvoiceDraft]:
    """Factory for invoice drafts; a single 5 x 10.00 line by default."""

    def _make_draft(*lines: InvoiceLine, **overrides) -> InvoiceDraft:
        fields = {
            "client_id": "CL-1",
            "lines": tuple(lines) or (line_factory("I1", "5", "10", name="Widget"),),
            "status": InvoiceStatus.PENDING,
            "deduct_from_stock": False,
        }
        fields.update(overrides)
        return InvoiceDraft(**fields)

    return _make_draft


@pytest.fixture
def record_factory(line_factory: Callable[..., InvoiceLine]) -> Callable[..., InvoiceRecord]:
    """Factory for invoice records as a store would report them."""

    def _make_record(**overrides) -> InvoiceRecord:
        fields = {
            "invoice_id": "INV-1",
            "client_id": "CL-1",
            "status": InvoiceStatus.PENDING,
            "lines": (line_factory("I1", "5", "10", name="Widget"),),
            "discount": Decimal("0"),
            "vat_percentage": Decimal("0"),
            "payment_method": PaymentMethod.CASH,
            "deduct_from_stock": False,
            "total_before_discount": Decimal("50"),
            "total_amount": Decimal("50"),
            "amount_settled": Decimal("0"),
            "remaining_amount": Decimal("50"),
        }
        fields.update(overrides)
        return InvoiceRecord(**fields)

    return _make_record


@pytest.fixture
def baseline_factory(record_factory: Callable[..., InvoiceRecord]) -> Callable[..., BaselineSnapshot]:
    """Capture a baseline from a record built with ``record_factory``."""

    def _make_baseline(**overrides) -> BaselineSnapshot:
        return BaselineSnapshot.capture(record_factory(**overrides))

    return _make_baseline


@pytest.fixture
def stock_factory() -> Callable[..., StockCache]:
    """Build a stock cache from ``item_id -> (available, min_stock)`` pairs."""

    def _make_stock(**entries: tuple[str, str]) -> StockCache:
        return StockCache(
            StockEntry(item_id=item_id, available=Decimal(available), min_stock=Decimal(minimum))
            for item_id, (available, minimum) in entries.items()
        )

    return _make_stock


# ---------------------------------------------------------------------------
# Workbook and configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates a seeded store workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        items=SEED_ITEMS,
        filename: str = "store.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_store_workbook(workbook_path, items=items, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def store_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh seeded workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        minimum: str = "10.00",
        threshold: str = "20",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(data_file=data_file_entry, minimum=minimum, threshold=threshold)
        )
        return ConfigBundle(directory=bundle_dir, config_path=config_path, workbook_path=workbook_path)

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a workbook-backed runtime context through the public API."""

    return core_logic.load_runtime_context(config_file)


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="invoice-guard", description="Invoice guard CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """Provide a placeholder command table entry for dispatch tests."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    def register(
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> argparse.ArgumentParser:
        return subparsers.add_parser("probe")

    spec = cli.CommandSpec(name="probe", help_text="help", register=register, execute=execute)
    return "probe", spec


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Workflow fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Settings for an HTTP store with the default policy."""

    return Settings(store=StoreSettings(backend="http"), policy=Policy())


@pytest.fixture
def store() -> Mock:
    """Return a mock store for workflow tests."""

    return Mock(name="store")


@pytest.fixture
def context(settings: Settings, store: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and a store mock."""

    return core_logic.RuntimeContext(settings=settings, store=store)
