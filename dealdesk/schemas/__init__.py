"""Pydantic schema package for record-store contracts."""

from dealdesk.schemas.opportunities import (
    LineItem,
    LineItemPatch,
    Opportunity,
    OpportunitySavePayload,
    Product,
    StageHistoryEntry,
)

__all__ = [
    "LineItem",
    "LineItemPatch",
    "Opportunity",
    "OpportunitySavePayload",
    "Product",
    "StageHistoryEntry",
]
