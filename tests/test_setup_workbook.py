"""Tests for the workbook setup script."""

from __future__ import annotations

import json
from decimal import Decimal

import openpyxl
import pytest

from invoice_guard import setup_workbook
from invoice_guard.workbook_store import SHEET_COLUMNS, ItemRow


def test_create_store_workbook_writes_headers(tmp_path):
    """Each sheet is created with its bold header row."""

    path = setup_workbook.create_store_workbook(tmp_path / "store.xlsx")
    workbook = openpyxl.load_workbook(path)
    assert workbook.sheetnames == list(SHEET_COLUMNS)
    for sheet_name, columns in SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[sheet_name][1]]
        assert header == columns
        assert workbook[sheet_name]["A1"].font.bold


def test_create_store_workbook_seeds_items(tmp_path):
    """Seed items are appended below the header."""

    item = ItemRow("I1", "C-1", "Widget", Decimal("10"), Decimal("3"), Decimal("1"))
    path = setup_workbook.create_store_workbook(tmp_path / "store.xlsx", items=[item])
    rows = list(openpyxl.load_workbook(path)["Items"].iter_rows(min_row=2, values_only=True))
    assert rows == [("I1", "C-1", "Widget", 10, 3, 1)]


def test_create_store_workbook_refuses_overwrite(tmp_path):
    """Existing files are kept unless overwrite is requested."""

    path = setup_workbook.create_store_workbook(tmp_path / "store.xlsx")
    with pytest.raises(FileExistsError):
        setup_workbook.create_store_workbook(path)
    setup_workbook.create_store_workbook(path, overwrite=True)


def test_load_seed_items(tmp_path):
    """Seed files use the backend's item field names."""

    seed = tmp_path / "items.json"
    seed.write_text(
        json.dumps([{"id": "I1", "code": "C-1", "name": "Widget", "final_price": 9.5, "total_quantity": 4}])
    )
    (item,) = setup_workbook.load_seed_items(seed)
    assert item.price == Decimal("9.5")
    assert item.total_quantity == Decimal("4")
    assert item.min_stock == Decimal("0")


def test_load_seed_items_requires_ids(tmp_path):
    """Entries without an id are rejected."""

    seed = tmp_path / "items.json"
    seed.write_text(json.dumps([{"name": "Nameless"}]))
    with pytest.raises(ValueError):
        setup_workbook.load_seed_items(seed)


def test_main_creates_workbook_from_config(tmp_path, capsys):
    """The script reads DataFile from the configuration."""

    config_path = tmp_path / "config.ini"
    config_path.write_text("[Store]\nBackend = workbook\nDataFile = out/store.xlsx\n")
    seed = tmp_path / "items.json"
    seed.write_text(json.dumps([{"id": "I1", "total_quantity": 2}]))

    assert setup_workbook.main(["--config", str(config_path), "--items", str(seed)]) == 0
    assert (tmp_path / "out" / "store.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out

    assert setup_workbook.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out


def test_main_rejects_http_config(tmp_path, capsys):
    """An HTTP configuration has no workbook to create."""

    config_path = tmp_path / "config.ini"
    config_path.write_text("[Store]\nBackend = http\n")
    assert setup_workbook.main(["--config", str(config_path)]) == 1
    assert "[ERROR]" in capsys.readouterr().out
