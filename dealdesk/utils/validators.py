"""Deterministic sanitizers for form input and currency codes."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def sanitize_text(value: str | None, max_len: int = 20000) -> str:
    """Sanitize free-form content before it enters a draft."""
    if value is None:
        return ""
    cleaned = str(value).replace("\x00", "").strip()
    cleaned = cleaned[:max_len]
    return cleaned


def is_blank(value: str | None) -> bool:
    return not sanitize_text(value)


def normalize_currency_code(code: str | None) -> str:
    """Trim and upper-case an ISO-4217 code. Blank stays blank."""
    if code is None:
        return ""
    return str(code).strip().upper()


def resolve_currency_code(*candidates: str | None, default: str) -> str:
    """Return the first non-blank normalized candidate, else the default."""
    for candidate in candidates:
        normalized = normalize_currency_code(candidate)
        if normalized:
            return normalized
    return normalize_currency_code(default)


def to_decimal(value: Any) -> Decimal:
    """Parse a form or wire value into a finite Decimal. Blank means zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return ZERO
        try:
            parsed = Decimal(text)
        except InvalidOperation as exc:
            raise ValueError(f"not a number: {value!r}") from exc
    if not parsed.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return parsed


def clamp_quantity(value: Any) -> int:
    """Quantities below one (or missing) are treated as one."""
    quantity = to_decimal(value)
    return max(int(quantity), 1)


def clamp_money(value: Any) -> Decimal:
    return max(to_decimal(value), ZERO)


def clamp_percent(value: Any) -> Decimal:
    return min(max(to_decimal(value), ZERO), HUNDRED)


def format_currency(amount: Decimal | float | int, currency_code: str) -> str:
    """Plain-text money rendering used for board summaries, e.g. ``USD 1,250.00``."""
    code = normalize_currency_code(currency_code) or "USD"
    return f"{code} {to_decimal(amount):,.2f}"
