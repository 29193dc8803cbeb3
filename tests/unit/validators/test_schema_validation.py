from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from dealdesk.schemas import LineItem, LineItemPatch, Opportunity, OpportunitySavePayload


def test_opportunity_reads_wire_names_and_normalizes_currency():
    record = Opportunity.model_validate(
        {
            "ID": 9,
            "Name": "Renewal",
            "Amount": 199.99,
            "CurrencyCode": " usd ",
            "Stage": 6,
            "LineItems": [{"ProductID": 1, "Quantity": 2, "UnitPrice": 50}],
            "Account": {"ID": 7, "Name": "Acme"},
            "UnknownField": "ignored",
        }
    )
    assert record.id == 9
    assert record.amount == Decimal("199.99")
    assert record.currency_code == "USD"
    assert record.line_items[0].unit_price == Decimal("50")
    assert record.account == {"ID": 7, "Name": "Acme"}


def test_wire_form_drops_navigation_and_none_values():
    record = Opportunity(id=3, name="Deal", amount=Decimal("10.50"), currency_code="eur")
    wire = record.to_wire()
    assert wire["Amount"] == 10.5
    assert wire["CurrencyCode"] == "EUR"
    assert "Account" not in wire
    assert "ClosedAt" not in wire
    assert "StageHistory" not in wire


def test_probability_outside_range_is_rejected():
    with pytest.raises(ValidationError):
        Opportunity(probability=101)


def test_line_item_rejects_negative_price():
    with pytest.raises(ValidationError):
        LineItem(unit_price=Decimal("-1"))


def test_line_item_is_priced_once_product_selected():
    assert LineItem().is_priced is False
    assert LineItem(product_id=4).is_priced is True


def test_patch_clamps_numeric_inputs():
    patch = LineItemPatch(quantity=0, unit_price="-5", discount_amount="", discount_percent=140)
    assert patch.quantity == 1
    assert patch.unit_price == Decimal("0")
    assert patch.discount_amount == Decimal("0")
    assert patch.discount_percent == Decimal("100")


def test_patch_accepts_wire_aliases():
    patch = LineItemPatch.model_validate({"ProductID": 2, "Quantity": "3"})
    assert patch.product_id == 2
    assert patch.quantity == 3


def test_save_payload_needs_a_line_item():
    with pytest.raises(ValidationError):
        OpportunitySavePayload(
            name="Deal",
            amount=Decimal("0"),
            currency_code="USD",
            probability=50,
            stage=1,
            line_items=[],
        )


def test_line_item_quantity_below_one_reads_as_one():
    assert LineItem.model_validate({"Quantity": 0}).quantity == 1
    assert LineItem.model_validate({"Quantity": "-2"}).quantity == 1
