"""Unit tests for manual stock adjustment rules."""

from __future__ import annotations

from decimal import Decimal

import pytest

from invoice_guard import stock_adjustment
from invoice_guard.config import Policy
from invoice_guard.constants import AdjustmentReason, PromptKind, StockStatus
from invoice_guard.errors import InvalidAdjustment
from invoice_guard.models import ItemRecord
from invoice_guard.outcomes import Approved, Blocked, NeedsConfirmation
from invoice_guard.stock_adjustment import StockAdjustment


@pytest.fixture
def item() -> ItemRecord:
    return ItemRecord(
        item_id="I1",
        code="C-001",
        name="Widget",
        price=Decimal("10"),
        available=Decimal("20"),
        min_stock=Decimal("5"),
        status="IN_STOCK",
    )


def _adjust(quantity: str, reason=AdjustmentReason.PHYSICAL_COUNT, unit_cost=None) -> StockAdjustment:
    return StockAdjustment(
        item_id="I1",
        new_quantity=Decimal(quantity),
        reason=reason,
        unit_cost=Decimal(unit_cost) if unit_cost is not None else None,
    )


def test_predict_status():
    """Zero is out of stock, at or under the minimum is low."""

    assert stock_adjustment.predict_status(Decimal("0"), Decimal("5")) is StockStatus.OUT_OF_STOCK
    assert stock_adjustment.predict_status(Decimal("5"), Decimal("5")) is StockStatus.LOW_STOCK
    assert stock_adjustment.predict_status(Decimal("6"), Decimal("5")) is StockStatus.IN_STOCK


@pytest.mark.parametrize(
    ("adjustment", "message"),
    [
        (_adjust("-1"), "zero or positive"),
        (_adjust("20"), "No quantity change"),
        (_adjust("30", AdjustmentReason.PURCHASE), "unit cost"),
        (_adjust("30", AdjustmentReason.PURCHASE, "0.001"), "unit cost"),
    ],
)
def test_blocking_adjustments(item, adjustment, message):
    """Invalid adjustments are blocked with a readable reason."""

    outcome = stock_adjustment.evaluate_adjustment(item, adjustment)
    assert isinstance(outcome, Blocked)
    assert isinstance(outcome.reason, InvalidAdjustment)
    assert message in outcome.message


def test_adjustment_for_other_item_is_invalid(item):
    """The adjustment must target the fetched item."""

    with pytest.raises(InvalidAdjustment):
        stock_adjustment.validate_adjustment(
            item, StockAdjustment("I2", Decimal("3"), AdjustmentReason.CORRECTION)
        )


@pytest.mark.parametrize(
    ("quantity", "kind"),
    [
        ("0", PromptKind.OUT_OF_STOCK),
        ("4", PromptKind.LOW_STOCK),
        ("30", PromptKind.LARGE_ADJUSTMENT),
    ],
)
def test_single_prompt_by_priority(item, quantity, kind):
    """Exactly one prompt is raised, the most severe one."""

    outcome = stock_adjustment.evaluate_adjustment(item, _adjust(quantity))
    assert isinstance(outcome, NeedsConfirmation)
    assert [prompt.kind for prompt in outcome.prompts] == [kind]


def test_small_change_without_status_change_is_approved(item):
    """A 10% change that keeps the item in stock needs no confirmation."""

    assert isinstance(stock_adjustment.evaluate_adjustment(item, _adjust("22")), Approved)


def test_status_change_notice_when_change_is_small():
    """Leaving low stock with a small change still shows a status notice."""

    low_item = ItemRecord("I1", "C-001", "Widget", Decimal("10"), Decimal("10"), Decimal("10"), "LOW_STOCK")
    outcome = stock_adjustment.evaluate_adjustment(low_item, _adjust("11"))
    assert [prompt.kind for prompt in outcome.prompts] == [PromptKind.STATUS_CHANGE]
    assert "LOW STOCK -> IN STOCK" in outcome.prompts[0].message


def test_threshold_comes_from_policy(item):
    """A higher threshold turns a large change into a silent one."""

    outcome = stock_adjustment.evaluate_adjustment(
        item, _adjust("30"), Policy(large_adjustment_percent=Decimal("60"))
    )
    assert isinstance(outcome, Approved)


def test_build_adjustment_payload():
    """The payload uses the backend's field names."""

    payload = stock_adjustment.build_adjustment_payload(
        _adjust("30", AdjustmentReason.PURCHASE, "2.50")
    )
    assert payload == {
        "newQuantity": Decimal("30"),
        "reason": "PURCHASE",
        "notes": "",
        "unitCost": Decimal("2.50"),
    }
