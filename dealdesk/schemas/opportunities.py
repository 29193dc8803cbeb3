"""Opportunity, line-item and lookup schemas matching the record-store wire format."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator

from dealdesk.utils.validators import clamp_money, clamp_percent, clamp_quantity, normalize_currency_code

# Decimal on the Python side, plain JSON number on the wire.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class RecordModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        """Serialize with PascalCase field names, dropping absent values."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Product(RecordModel):
    id: int = Field(alias="ID")
    name: str = Field(default="", alias="Name")
    price: Money = Field(default=Decimal("0"), ge=0, alias="Price")
    currency_code: str = Field(default="", alias="CurrencyCode")

    @field_validator("currency_code")
    @classmethod
    def currency_is_normalized(cls, value: str) -> str:
        return normalize_currency_code(value)


class LineItem(RecordModel):
    id: int | None = Field(default=None, alias="ID")
    opportunity_id: int | None = Field(default=None, alias="OpportunityID")
    product_id: int | None = Field(default=None, alias="ProductID")
    quantity: int = Field(default=1, ge=1, alias="Quantity")
    unit_price: Money = Field(default=Decimal("0"), ge=0, alias="UnitPrice")
    discount_amount: Money = Field(default=Decimal("0"), ge=0, alias="DiscountAmount")
    discount_percent: Money = Field(default=Decimal("0"), ge=0, le=100, alias="DiscountPercent")
    currency_code: str = Field(default="", alias="CurrencyCode")
    subtotal: Money = Field(default=Decimal("0"), alias="Subtotal")
    total: Money = Field(default=Decimal("0"), alias="Total")
    product: Product | None = Field(default=None, alias="Product", exclude=True)

    @field_validator("currency_code")
    @classmethod
    def currency_is_normalized(cls, value: str) -> str:
        return normalize_currency_code(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def quantity_at_least_one(cls, value: Any) -> int:
        return clamp_quantity(value)

    @property
    def is_priced(self) -> bool:
        """A line item is save-eligible once a product is selected."""
        return bool(self.product_id)


class LineItemPatch(BaseModel):
    """Partial edit of one draft line item. Numeric inputs are clamped, not rejected."""

    model_config = ConfigDict(populate_by_name=True)

    product: Product | None = None
    product_id: int | None = Field(default=None, alias="ProductID")
    quantity: int | None = Field(default=None, alias="Quantity")
    unit_price: Decimal | None = Field(default=None, alias="UnitPrice")
    discount_amount: Decimal | None = Field(default=None, alias="DiscountAmount")
    discount_percent: Decimal | None = Field(default=None, alias="DiscountPercent")

    @field_validator("quantity", mode="before")
    @classmethod
    def sanitize_quantity(cls, value: Any) -> int | None:
        return None if value is None else clamp_quantity(value)

    @field_validator("unit_price", "discount_amount", mode="before")
    @classmethod
    def sanitize_money(cls, value: Any) -> Decimal | None:
        return None if value is None else clamp_money(value)

    @field_validator("discount_percent", mode="before")
    @classmethod
    def sanitize_percent(cls, value: Any) -> Decimal | None:
        return None if value is None else clamp_percent(value)


class StageHistoryEntry(RecordModel):
    id: int | None = Field(default=None, alias="ID")
    opportunity_id: int | None = Field(default=None, alias="OpportunityID")
    stage: int = Field(alias="Stage")
    previous_stage: int | None = Field(default=None, alias="PreviousStage")
    changed_at: datetime | None = Field(default=None, alias="ChangedAt")
    changed_by_employee_id: int | None = Field(default=None, alias="ChangedByEmployeeID")


class Opportunity(RecordModel):
    id: int | None = Field(default=None, alias="ID")
    account_id: int | None = Field(default=None, alias="AccountID")
    contact_id: int | None = Field(default=None, alias="ContactID")
    owner_employee_id: int | None = Field(default=None, alias="OwnerEmployeeID")
    name: str = Field(default="", alias="Name")
    amount: Money = Field(default=Decimal("0"), alias="Amount")
    currency_code: str = Field(default="", alias="CurrencyCode")
    probability: int = Field(default=50, ge=0, le=100, alias="Probability")
    expected_close_date: datetime | None = Field(default=None, alias="ExpectedCloseDate")
    stage: int = Field(default=1, alias="Stage")
    description: str | None = Field(default=None, alias="Description")
    closed_at: datetime | None = Field(default=None, alias="ClosedAt")
    close_reason: str | None = Field(default=None, alias="CloseReason")
    closed_by_employee_id: int | None = Field(default=None, alias="ClosedByEmployeeID")
    created_at: datetime | None = Field(default=None, alias="CreatedAt")
    updated_at: datetime | None = Field(default=None, alias="UpdatedAt")
    line_items: list[LineItem] = Field(default_factory=list, alias="LineItems")
    stage_history: list[StageHistoryEntry] = Field(default_factory=list, alias="StageHistory", exclude=True)

    # Expanded navigation records, kept for display only.
    account: dict[str, Any] | None = Field(default=None, alias="Account", exclude=True)
    contact: dict[str, Any] | None = Field(default=None, alias="Contact", exclude=True)
    owner: dict[str, Any] | None = Field(default=None, alias="Owner", exclude=True)
    closed_by: dict[str, Any] | None = Field(default=None, alias="ClosedBy", exclude=True)
    activities: list[dict[str, Any]] = Field(default_factory=list, alias="Activities", exclude=True)
    tasks: list[dict[str, Any]] = Field(default_factory=list, alias="Tasks", exclude=True)

    @field_validator("currency_code")
    @classmethod
    def currency_is_normalized(cls, value: str) -> str:
        return normalize_currency_code(value)


class OpportunitySavePayload(RecordModel):
    """Body sent to the record store on create or update."""

    account_id: int | None = Field(default=None, alias="AccountID")
    contact_id: int | None = Field(default=None, alias="ContactID")
    owner_employee_id: int | None = Field(default=None, alias="OwnerEmployeeID")
    name: str = Field(alias="Name")
    amount: Money = Field(alias="Amount")
    currency_code: str = Field(alias="CurrencyCode")
    probability: int = Field(ge=0, le=100, alias="Probability")
    expected_close_date: datetime | None = Field(default=None, alias="ExpectedCloseDate")
    stage: int = Field(alias="Stage")
    description: str | None = Field(default=None, alias="Description")
    closed_at: datetime | None = Field(default=None, alias="ClosedAt")
    close_reason: str | None = Field(default=None, alias="CloseReason")
    closed_by_employee_id: int | None = Field(default=None, alias="ClosedByEmployeeID")
    line_items: list[LineItem] = Field(min_length=1, alias="LineItems")
