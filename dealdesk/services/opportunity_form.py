"""Editable draft of a single opportunity and its save workflow."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from dealdesk.core.config import get_config
from dealdesk.core.enums import FIRST_OPEN_STAGE, FieldRule
from dealdesk.core.exceptions import NotFoundError, StaleReferenceError, TransportError, ValidationError
from dealdesk.orchestration.query_cache import (
    OPPORTUNITY_LIST_KEY,
    CacheKey,
    QueryCache,
    account_key,
    opportunity_key,
)
from dealdesk.orchestration.stage_rules import CloseState, apply_field_rules, required_fields_for, transition
from dealdesk.schemas.opportunities import LineItem, LineItemPatch, Opportunity, OpportunitySavePayload, Product
from dealdesk.services.pricing import AggregateTotals, aggregate, line_totals
from dealdesk.services.record_store import OpportunityStore
from dealdesk.utils.odata import FORM_EXPAND
from dealdesk.utils.validators import normalize_currency_code, resolve_currency_code, sanitize_text

logger = logging.getLogger(__name__)

NO_PRICED_LINE_ITEMS = "at least one priced line item is required"

_SCALAR_FIELDS = {
    "Name": "name",
    "Description": "description",
    "Probability": "probability",
    "ExpectedCloseDate": "expected_close_date",
    "OwnerEmployeeID": "owner_employee_id",
    "ContactID": "contact_id",
    "CurrencyCode": "currency_code",
}
_CLOSE_ATTRIBUTES = {
    "ClosedAt": "closed_at",
    "CloseReason": "close_reason",
    "ClosedByEmployeeID": "closed_by_employee_id",
}


@dataclass
class OpportunityDraft:
    id: int | None
    account_id: int | None
    contact_id: int | None
    owner_employee_id: int | None
    name: str
    currency_code: str
    probability: int
    expected_close_date: datetime | None
    description: str
    close: CloseState
    line_items: list[LineItem] = field(default_factory=list)

    @property
    def stage(self) -> int:
        return self.close.stage

    @property
    def is_new(self) -> bool:
        return self.id is None


@dataclass(frozen=True)
class SaveResult:
    opportunity: Opportunity
    created: bool
    stale_keys: tuple[CacheKey, ...] = ()
    applied: bool = True


def _optional_id(value: Any) -> int | None:
    if value in (None, "", 0):
        return None
    return int(value)


def _currency_mismatch(index: int, currency: str, expected: str) -> ValidationError:
    return ValidationError(
        f"Line item currency {currency} does not match opportunity currency {expected}.",
        field=f"LineItems[{index}].CurrencyCode",
    )


class OpportunityFormController:
    """Owns one opportunity draft: live totals, stage rules and save payloads.

    The draft is replaced wholesale on every ``initialize``/``load``; a
    generation counter lets in-flight responses detect that the draft they
    were started for is gone.
    """

    def __init__(
        self,
        store: OpportunityStore,
        cache: QueryCache | None = None,
        products: Iterable[Product] | Mapping[int, Product] | None = None,
        default_currency: str | None = None,
        default_probability: int | None = None,
    ) -> None:
        config = get_config()
        self.store = store
        self.cache = cache if cache is not None else QueryCache()
        if isinstance(products, Mapping):
            self.products = dict(products)
        else:
            self.products = {product.id: product for product in products or ()}
        self.default_currency = normalize_currency_code(default_currency or config.DEFAULT_CURRENCY_CODE)
        self.default_probability = (
            config.DEFAULT_PROBABILITY if default_probability is None else default_probability
        )
        self.draft: OpportunityDraft | None = None
        self._generation = 0
        self._closed = False

    # -- lifecycle -----------------------------------------------------

    def initialize(
        self,
        existing: Opportunity | Mapping[str, Any] | None = None,
        account_id: int | None = None,
        contact_id: int | None = None,
    ) -> OpportunityDraft:
        """Seed a fresh draft from ``existing`` (edit mode) or defaults (create mode)."""
        self._generation += 1
        self._closed = False
        return self._seed(existing, account_id=account_id, contact_id=contact_id)

    async def load(self, opportunity_id: int) -> OpportunityDraft | None:
        """Fetch a record and seed the draft with it.

        Returns ``None`` when the controller was re-initialized or closed while
        the fetch was in flight.
        """
        self._generation += 1
        self._closed = False
        self.draft = None
        token = self._generation

        body = await self.store.get_opportunity(opportunity_id, expand=FORM_EXPAND)
        if not self._is_current(token):
            logger.info(
                "opportunity_form.load.discarded",
                extra={"event": "opportunity_form.load.discarded", "opportunity_id": opportunity_id},
            )
            return None

        opportunity = Opportunity.model_validate(body)
        self.cache.set(opportunity_key(opportunity_id), opportunity)
        return self._seed(opportunity)

    def close(self) -> None:
        """Tear down; results of in-flight calls will not be applied."""
        self._closed = True
        self._generation += 1
        self.draft = None

    def _is_current(self, token: int) -> bool:
        return not self._closed and token == self._generation

    def _seed(
        self,
        existing: Opportunity | Mapping[str, Any] | None,
        account_id: int | None = None,
        contact_id: int | None = None,
    ) -> OpportunityDraft:
        if existing is None:
            currency = self.default_currency
            self.draft = OpportunityDraft(
                id=None,
                account_id=_optional_id(account_id),
                contact_id=_optional_id(contact_id),
                owner_employee_id=None,
                name="",
                currency_code=currency,
                probability=self.default_probability,
                expected_close_date=None,
                description="",
                close=CloseState(stage=int(FIRST_OPEN_STAGE)),
                line_items=[LineItem(currency_code=currency)],
            )
            return self.draft

        record = existing if isinstance(existing, Opportunity) else Opportunity.model_validate(existing)
        record = record.model_copy(deep=True)
        currency = resolve_currency_code(record.currency_code, default=self.default_currency)
        for item in record.line_items:
            if item.product is not None:
                self.products.setdefault(item.product.id, item.product)

        previous = CloseState(
            stage=record.stage,
            closed_at=record.closed_at,
            close_reason=record.close_reason,
            closed_by_employee_id=record.closed_by_employee_id,
        )
        items = [self._with_totals(item, currency) for item in record.line_items]
        self.draft = OpportunityDraft(
            id=record.id,
            account_id=record.account_id,
            contact_id=record.contact_id,
            owner_employee_id=record.owner_employee_id,
            name=record.name,
            currency_code=currency,
            probability=record.probability,
            expected_close_date=record.expected_close_date,
            description=record.description or "",
            # Re-applying the record's own stage drops close metadata left on an open record.
            close=transition(previous, record.stage),
            line_items=items or [LineItem(currency_code=currency)],
        )
        return self.draft

    def _require_draft(self) -> OpportunityDraft:
        if self.draft is None:
            raise NotFoundError("No opportunity draft is loaded.")
        return self.draft

    # -- scalar fields -------------------------------------------------

    def set_field(self, name: str, value: Any) -> None:
        draft = self._require_draft()
        if name == "Amount":
            raise ValidationError("Amount is derived from line items and cannot be edited.", field="Amount")
        if name == "Stage":
            self.set_stage(value)
            return
        if name == "AccountID":
            self.set_account(value)
            return

        if name in _CLOSE_ATTRIBUTES:
            if required_fields_for(draft.stage)[name] is FieldRule.FORBIDDEN:
                raise ValidationError(f"{name} can only be set on a closed opportunity.", field=name)
            if name == "CloseReason":
                value = sanitize_text(value) or None
            elif name == "ClosedByEmployeeID":
                value = _optional_id(value)
            draft.close = replace(draft.close, **{_CLOSE_ATTRIBUTES[name]: value})
            return

        attribute = _SCALAR_FIELDS.get(name)
        if attribute is None:
            raise ValidationError(f"Unknown opportunity field: {name}", field=name)
        if name == "Probability":
            try:
                value = min(max(int(value or 0), 0), 100)
            except (TypeError, ValueError) as exc:
                raise ValidationError("Probability must be a whole number.", field=name) from exc
        elif name in ("Name", "Description"):
            value = sanitize_text(value)
        elif name in ("OwnerEmployeeID", "ContactID"):
            value = _optional_id(value)
        elif name == "CurrencyCode":
            value = resolve_currency_code(value, default=self.default_currency)
        setattr(draft, attribute, value)

    def set_account(self, account_id: int | None) -> None:
        """Change the owning account; a contact tied to the old account is cleared."""
        draft = self._require_draft()
        new_account = _optional_id(account_id)
        if new_account != draft.account_id:
            draft.contact_id = None
        draft.account_id = new_account

    def reconcile_contact(self, valid_contact_ids: Iterable[int]) -> bool:
        """Clear the contact if it is not among the account's contacts. Returns True if cleared."""
        draft = self._require_draft()
        if draft.contact_id is None or draft.contact_id in set(valid_contact_ids):
            return False
        draft.contact_id = None
        return True

    # -- line items ----------------------------------------------------

    def _item_index(self, index: int) -> int:
        draft = self._require_draft()
        if not 0 <= index < len(draft.line_items):
            raise ValidationError(f"No line item at position {index}.", field="LineItems")
        return index

    def _with_totals(self, item: LineItem, currency: str) -> LineItem:
        totals = line_totals(item)
        return item.model_copy(
            update={
                "subtotal": totals.subtotal,
                "total": totals.total,
                "currency_code": resolve_currency_code(item.currency_code, default=currency),
            }
        )

    def set_line_item(self, index: int, patch: LineItemPatch | Mapping[str, Any]) -> LineItem:
        """Apply an edit to one line item and recompute its totals.

        A product priced in another currency is rejected and the draft is left
        unchanged.
        """
        draft = self._require_draft()
        index = self._item_index(index)
        if not isinstance(patch, LineItemPatch):
            try:
                patch = LineItemPatch.model_validate(patch)
            except PydanticValidationError as exc:
                error = exc.errors()[0]
                location = ".".join(str(part) for part in error["loc"])
                raise ValidationError(
                    f"Invalid line item input: {error['msg']}",
                    field=f"LineItems[{index}].{location}",
                ) from exc

        current = draft.line_items[index]
        updates: dict[str, Any] = {}

        product = patch.product
        if product is None and patch.product_id is not None:
            product = self.products.get(patch.product_id)
        if product is not None:
            self.products.setdefault(product.id, product)
            if product.currency_code and product.currency_code != draft.currency_code:
                raise ValidationError(
                    f"Product currency {product.currency_code} does not match "
                    f"opportunity currency {draft.currency_code}.",
                    field=f"LineItems[{index}].ProductID",
                )
            if product.id != current.product_id and patch.unit_price is None:
                updates["unit_price"] = product.price
            updates["product_id"] = product.id
            updates["product"] = product
            updates["currency_code"] = product.currency_code or draft.currency_code
        elif patch.product_id is not None:
            updates["product_id"] = patch.product_id
            updates["product"] = None

        for attribute in ("quantity", "unit_price", "discount_amount", "discount_percent"):
            value = getattr(patch, attribute)
            if value is not None:
                updates[attribute] = value

        updated = self._with_totals(current.model_copy(update=updates), draft.currency_code)
        draft.line_items[index] = updated
        return updated

    def add_line_item(self) -> int:
        draft = self._require_draft()
        draft.line_items.append(LineItem(currency_code=draft.currency_code))
        return len(draft.line_items) - 1

    def remove_line_item(self, index: int) -> None:
        """Remove one item; the draft always keeps at least one (possibly empty) item."""
        draft = self._require_draft()
        del draft.line_items[self._item_index(index)]
        if not draft.line_items:
            draft.line_items.append(LineItem(currency_code=draft.currency_code))

    @property
    def totals(self) -> AggregateTotals:
        return aggregate(self._require_draft().line_items)

    # -- stage ---------------------------------------------------------

    def set_stage(self, new_stage: Any) -> CloseState:
        """Move the draft to ``new_stage``; invalid codes raise and change nothing."""
        draft = self._require_draft()
        draft.close = transition(draft.close, new_stage, owner_employee_id=draft.owner_employee_id)
        return draft.close

    # -- save ----------------------------------------------------------

    def _check_currency(self, index: int, item: LineItem, expected: str) -> None:
        currency = resolve_currency_code(item.currency_code, default=expected)
        if currency != expected:
            raise _currency_mismatch(index, currency, expected)
        product = item.product or self.products.get(item.product_id)
        if product is not None and product.currency_code and product.currency_code != expected:
            raise _currency_mismatch(index, product.currency_code, expected)

    def build_save_payload(self) -> OpportunitySavePayload:
        """Validate the draft and produce the body for create/update."""
        draft = self._require_draft()
        currency = resolve_currency_code(draft.currency_code, default=self.default_currency)

        priced = [(index, item) for index, item in enumerate(draft.line_items) if item.is_priced]
        if not priced:
            raise ValidationError(NO_PRICED_LINE_ITEMS, field="LineItems")
        for index, item in priced:
            self._check_currency(index, item, currency)
        line_items = [self._with_totals(item, currency) for _index, item in priced]

        close = apply_field_rules(draft.close, owner_employee_id=draft.owner_employee_id)

        if not sanitize_text(draft.name):
            raise ValidationError("Opportunity name is required.", field="Name")
        if draft.account_id is None:
            raise ValidationError("An account is required.", field="AccountID")

        return OpportunitySavePayload(
            account_id=draft.account_id,
            contact_id=draft.contact_id,
            owner_employee_id=draft.owner_employee_id,
            name=sanitize_text(draft.name),
            amount=aggregate(line_items).total,
            currency_code=currency,
            probability=draft.probability,
            expected_close_date=draft.expected_close_date,
            stage=close.stage,
            description=draft.description,
            closed_at=close.closed_at,
            close_reason=close.close_reason,
            closed_by_employee_id=close.closed_by_employee_id,
            line_items=line_items,
        )

    async def save(self) -> SaveResult:
        """Create or update the record. Validation errors raise before any network call.

        Transport errors propagate with the draft untouched so the caller can retry.
        """
        draft = self._require_draft()
        payload = self.build_save_payload()
        body = payload.to_wire()
        token = self._generation
        created = draft.is_new

        try:
            if created:
                response = await self.store.create_opportunity(body)
            else:
                response = await self.store.update_opportunity(draft.id, body)
        except StaleReferenceError:
            logger.warning(
                "opportunity_form.save.stale",
                extra={"event": "opportunity_form.save.stale", "opportunity_id": draft.id},
            )
            raise
        except TransportError as exc:
            logger.warning(
                "opportunity_form.save.failed",
                extra={"event": "opportunity_form.save.failed", "opportunity_id": draft.id, "error": str(exc)},
            )
            raise

        saved = Opportunity.model_validate(response or {**body, "ID": draft.id})
        if not self._is_current(token):
            logger.info(
                "opportunity_form.save.discarded",
                extra={"event": "opportunity_form.save.discarded", "opportunity_id": saved.id},
            )
            return SaveResult(opportunity=saved, created=created, applied=False)

        if response and "LineItems" in response:
            self._seed(saved)
        else:
            draft.id = saved.id

        stale_keys: list[CacheKey] = [OPPORTUNITY_LIST_KEY]
        if saved.id is not None:
            stale_keys.append(opportunity_key(saved.id))
        if payload.account_id is not None:
            stale_keys.append(account_key(payload.account_id))
        for key in stale_keys:
            self.cache.invalidate(key)

        logger.info(
            "opportunity_form.saved",
            extra={"event": "opportunity_form.saved", "opportunity_id": saved.id, "stage": saved.stage},
        )
        return SaveResult(opportunity=saved, created=created, stale_keys=tuple(stale_keys))
