"""Utility for initializing the workbook used by the workbook store backend.

The module doubles as a script (``python -m invoice_guard.setup_workbook``)
and as a library used by tests. Items can be seeded from a JSON file so that
a fresh workbook is immediately usable for invoicing.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from .config import BACKEND_WORKBOOK, load_settings
from .store import to_decimal
from .workbook_store import ITEMS_SHEET, SHEET_COLUMNS, ItemRow, serialize_item


CONFIG_FILE = "config.ini"


def create_store_workbook(
    destination: Path,
    *,
    items: Iterable[ItemRow] = (),
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the store workbook at ``destination``.

    Every sheet gets a bold header row; ``items`` are appended to the items
    sheet. When ``overwrite`` is ``False`` (the default) an existing file is
    left alone and ``FileExistsError`` is raised.
    """
    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing store workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    items_sheet = workbook[ITEMS_SHEET]
    for item in items:
        items_sheet.append(serialize_item(item))

    workbook.save(destination)
    return destination


def load_seed_items(seed_path: Path) -> list[ItemRow]:
    """Read items to seed from a JSON list.

    Each entry uses the backend's item field names: ``id``, ``code``,
    ``name``, ``final_price``, ``total_quantity`` and ``min_stock``.

    Raises:
        FileNotFoundError: If ``seed_path`` does not exist.
        ValueError: If the file is not a JSON list or an entry has no ``id``.
    """
    if not seed_path.exists():
        raise FileNotFoundError(f"Seed file not found: {seed_path}")
    entries = json.loads(seed_path.read_text(encoding="utf-8"))
    if not isinstance(entries, list):
        raise ValueError("Seed file must contain a JSON list of items")

    items = []
    for entry in entries:
        if not entry.get("id"):
            raise ValueError(f"Seed item without id: {entry}")
        items.append(
            ItemRow(
                item_id=str(entry["id"]),
                code=str(entry.get("code") or ""),
                name=str(entry.get("name") or ""),
                price=to_decimal(entry.get("final_price")),
                total_quantity=to_decimal(entry.get("total_quantity")),
                min_stock=to_decimal(entry.get("min_stock")),
            )
        )
    return items


def run_from_config(config_path: Path, *, seed_path: Path | None = None, overwrite: bool = False) -> Path:
    """Create the workbook named by the ``[Store] DataFile`` of ``config_path``."""
    settings = load_settings(config_path)
    if settings.store.backend != BACKEND_WORKBOOK or settings.store.data_file is None:
        raise KeyError("Configuration does not use the workbook backend")
    items = load_seed_items(seed_path) if seed_path is not None else []
    return create_store_workbook(settings.store.data_file, items=items, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""
    parser = argparse.ArgumentParser(description="Initialize the invoice-guard store workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--items",
        default=None,
        help="JSON file with items to seed the workbook with.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""
    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()
    seed_path = Path(args.items).expanduser().resolve() if args.items else None

    print("--- invoice-guard workbook setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, seed_path=seed_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created store workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
