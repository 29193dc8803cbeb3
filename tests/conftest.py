from __future__ import annotations

import asyncio
import copy
from collections.abc import Mapping
from typing import Any

import pytest

from dealdesk.core.exceptions import StaleReferenceError
from dealdesk.orchestration.query_cache import QueryCache
from dealdesk.schemas.opportunities import Product
from dealdesk.services.record_store import CollectionResult, OpportunityStore


def make_opportunity(opportunity_id: int, stage: int = 1, amount: float = 0.0, **fields: Any) -> dict[str, Any]:
    record = {
        "ID": opportunity_id,
        "AccountID": 7,
        "Name": f"Deal {opportunity_id}",
        "Amount": amount,
        "CurrencyCode": "USD",
        "Probability": 50,
        "Stage": stage,
        "UpdatedAt": "2026-01-01T00:00:00Z",
    }
    record.update(fields)
    return record


class FakeOpportunityStore(OpportunityStore):
    """In-memory record store. Queue exceptions in ``failures[method]`` to make calls fail."""

    def __init__(self, records: list[Mapping[str, Any]] | None = None) -> None:
        self.records: dict[int, dict[str, Any]] = {int(r["ID"]): dict(r) for r in records or []}
        self.calls: list[tuple[Any, ...]] = []
        self.failures: dict[str, list[Exception]] = {}
        self.metadata: dict[str, Any] = {}
        self.hold: asyncio.Event | None = None
        self._next_id = 100

    async def _wait(self) -> None:
        if self.hold is not None:
            await self.hold.wait()

    def _maybe_fail(self, method: str) -> None:
        queued = self.failures.get(method)
        if queued:
            raise queued.pop(0)

    async def list_opportunities(self, params: Mapping[str, str] | None = None) -> CollectionResult:
        self.calls.append(("list", dict(params or {})))
        self._maybe_fail("list")
        items = [copy.deepcopy(record) for record in self.records.values()]
        return CollectionResult(items=items, count=len(items))

    async def get_opportunity(self, opportunity_id: int, expand: str | None = None) -> dict[str, Any]:
        self.calls.append(("get", opportunity_id, expand))
        await self._wait()
        self._maybe_fail("get")
        if opportunity_id not in self.records:
            raise StaleReferenceError(f"Opportunities({opportunity_id}) no longer exists.", status_code=404)
        return copy.deepcopy(self.records[opportunity_id])

    async def create_opportunity(self, body: Mapping[str, Any]) -> dict[str, Any]:
        self.calls.append(("create", copy.deepcopy(dict(body))))
        await self._wait()
        self._maybe_fail("create")
        self._next_id += 1
        record = {**copy.deepcopy(dict(body)), "ID": self._next_id}
        self.records[self._next_id] = record
        return copy.deepcopy(record)

    async def update_opportunity(self, opportunity_id: int, body: Mapping[str, Any]) -> dict[str, Any] | None:
        self.calls.append(("update", opportunity_id, copy.deepcopy(dict(body))))
        await self._wait()
        self._maybe_fail("update")
        if opportunity_id not in self.records:
            raise StaleReferenceError(f"Opportunities({opportunity_id}) no longer exists.", status_code=404)
        self.records[opportunity_id].update(copy.deepcopy(dict(body)))
        return None

    async def get_metadata(self) -> dict[str, Any]:
        return self.metadata

    def writes(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] in ("create", "update")]


class ControlledStore(FakeOpportunityStore):
    """Updates block on a future the test resolves, to interleave board moves."""

    def __init__(self, records: list[Mapping[str, Any]] | None = None) -> None:
        super().__init__(records)
        self.pending: list[asyncio.Future] = []

    async def update_opportunity(self, opportunity_id: int, body: Mapping[str, Any]) -> dict[str, Any] | None:
        self.calls.append(("update", opportunity_id, dict(body)))
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def cache():
    return QueryCache()


@pytest.fixture
def store():
    return FakeOpportunityStore()


@pytest.fixture
def products():
    return [
        Product(ID=1, Name="Seat licence", Price=50, CurrencyCode="USD"),
        Product(ID=2, Name="Onboarding", Price=40, CurrencyCode="usd"),
        Product(ID=3, Name="EU support", Price=75, CurrencyCode="EUR"),
    ]


@pytest.fixture
def make_record():
    return make_opportunity


@pytest.fixture
def controlled_store():
    return ControlledStore


@pytest.fixture
def yield_loop():
    return settle
