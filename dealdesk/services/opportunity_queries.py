"""Read-side queries for the opportunity list and detail views."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from dealdesk.orchestration.query_cache import OPPORTUNITY_LIST_KEY, CacheKey, QueryCache, opportunity_key
from dealdesk.schemas.opportunities import Opportunity
from dealdesk.services.record_store import OpportunityStore
from dealdesk.utils.odata import DETAIL_EXPAND, LIST_QUERY, merge_query, query_params

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpportunityPage:
    items: list[Opportunity]
    count: int | None = None


def list_key(query: str) -> CacheKey:
    return (*OPPORTUNITY_LIST_KEY, query)


def detail_key(opportunity_id: int) -> CacheKey:
    return (*opportunity_key(opportunity_id), "detail")


class OpportunityQueryService:
    """Cached list and detail reads.

    Results are served from the cache until a save or board move marks them
    stale. Callers always get a copy, never the cached object.
    """

    def __init__(self, store: OpportunityStore, cache: QueryCache | None = None) -> None:
        self.store = store
        self.cache = cache if cache is not None else QueryCache()

    async def list_opportunities(self, search_query: str = "") -> OpportunityPage:
        """Fetch one page of the list view; the search box's own params win over the defaults."""
        query = merge_query(search_query, LIST_QUERY)
        key = list_key(query)
        if not self.cache.is_stale(key):
            return self.cache.snapshot(key)

        result = await self.store.list_opportunities(query_params(query))
        page = OpportunityPage(
            items=[Opportunity.model_validate(item) for item in result.items],
            count=result.count,
        )
        self.cache.set(key, page)
        logger.debug(
            "opportunity_queries.list.fetched",
            extra={"event": "opportunity_queries.list.fetched", "path": query},
        )
        return self.cache.snapshot(key)

    async def load_detail(self, opportunity_id: int) -> Opportunity:
        """Fetch a record with line items, stage history, tasks and activities.

        Stage history is returned newest first.
        """
        key = detail_key(opportunity_id)
        if not self.cache.is_stale(key):
            return self.cache.snapshot(key)

        body = await self.store.get_opportunity(opportunity_id, expand=DETAIL_EXPAND)
        record = Opportunity.model_validate(body)
        history = sorted(
            record.stage_history,
            key=lambda entry: (entry.changed_at is not None, entry.changed_at),
            reverse=True,
        )
        record = record.model_copy(update={"stage_history": history})
        self.cache.set(key, record)
        return self.cache.snapshot(key)
