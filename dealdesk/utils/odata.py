"""Helpers for building OData query parameters against the record store."""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import parse_qsl, urlencode

OPPORTUNITIES = "Opportunities"

BOARD_QUERY = {
    "$expand": "Account,Contact,Owner",
    "$orderby": "Stage asc,Probability desc",
}

LIST_QUERY = {
    "$expand": "Account,Contact,Owner,LineItems($expand=Product)",
    "$orderby": "Stage asc,ExpectedCloseDate asc",
    "$count": "true",
}

FORM_EXPAND = "LineItems($expand=Product)"

DETAIL_EXPAND = (
    "Account,Contact,Owner,ClosedBy,"
    "LineItems($expand=Product),"
    "StageHistory($orderby=ChangedAt desc;$expand=ChangedBy),"
    "Activities($expand=Contact,Employee),"
    "Tasks($expand=Contact,Employee)"
)


def entity_path(collection: str, key: int) -> str:
    """Return the OData path for a single entity, e.g. ``Opportunities(42)``."""
    return f"{collection}({int(key)})"


def query_params(search_query: str) -> dict[str, str]:
    """Parse ``?$filter=...&$top=10`` (leading ``?`` optional) into a parameter dict."""
    raw = search_query[1:] if search_query.startswith("?") else search_query
    return dict(parse_qsl(raw, keep_blank_values=True))


def merge_query(search_query: str, additional: Mapping[str, str] | None = None) -> str:
    """Merge extra parameters into a query string without overriding existing ones."""
    params = query_params(search_query)
    for key, value in (additional or {}).items():
        params.setdefault(key, value)
    encoded = urlencode(params, safe="$,()=;")
    return f"?{encoded}" if encoded else ""
