"""Client for the remote record store (OData-style REST)."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import requests

from dealdesk.core.config import get_config
from dealdesk.core.exceptions import StaleReferenceError, TransportError
from dealdesk.utils.odata import OPPORTUNITIES, entity_path

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
    "OData-Version": "4.0",
}


@dataclass(frozen=True)
class CollectionResult:
    items: list[dict[str, Any]] = field(default_factory=list)
    count: int | None = None


def normalize_collection(body: Any) -> CollectionResult:
    """Unwrap ``{"value": [...], "@odata.count": n}``; bare lists are accepted too."""
    if isinstance(body, list):
        return CollectionResult(items=body, count=len(body))
    if isinstance(body, Mapping) and "value" in body:
        items = list(body.get("value") or [])
        count = body.get("@odata.count")
        return CollectionResult(items=items, count=int(count) if count is not None else None)
    raise TransportError("Record store returned an unexpected collection payload.")


class OpportunityStore(ABC):
    """Awaitable contract the controllers depend on."""

    @abstractmethod
    async def list_opportunities(self, params: Mapping[str, str] | None = None) -> CollectionResult:
        raise NotImplementedError

    @abstractmethod
    async def get_opportunity(self, opportunity_id: int, expand: str | None = None) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    async def create_opportunity(self, body: Mapping[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    async def update_opportunity(self, opportunity_id: int, body: Mapping[str, Any]) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    async def get_metadata(self) -> dict[str, Any]:
        raise NotImplementedError


class RecordStoreClient:
    """Blocking HTTP client built on ``requests``.

    Reads are retried on connection errors and timeouts. Writes are sent once
    so a timed-out create is never duplicated.
    """

    def __init__(
        self,
        base_url: str | None = None,
        session: requests.Session | None = None,
        timeout_seconds: int | None = None,
        max_retries: int | None = None,
        backoff_seconds: float = 1.0,
    ) -> None:
        config = get_config()
        self.base_url = (base_url or config.RECORD_STORE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or config.RECORD_STORE_TIMEOUT_SECONDS
        self.max_retries = config.RECORD_STORE_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = backoff_seconds
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Mapping[str, Any] | None = None,
        retry: bool = False,
    ) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        total_attempts = self.max_retries + 1 if retry else 1
        last_error: Exception | None = None

        for attempt in range(1, total_attempts + 1):
            try:
                response = self.session.request(
                    method,
                    url,
                    params=dict(params) if params else None,
                    json=dict(json) if json is not None else None,
                    timeout=(5, self.timeout_seconds),
                )
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
                last_error = exc
                logger.warning(
                    "record_store.request.failed",
                    extra={
                        "event": "record_store.request.failed",
                        "method": method,
                        "path": path,
                        "attempt": attempt,
                        "attempts_total": total_attempts,
                        "error": str(exc),
                    },
                )
                if attempt < total_attempts:
                    time.sleep(min(self.backoff_seconds * attempt, 5))
                continue
            except requests.exceptions.RequestException as exc:
                raise TransportError(f"{method} {path} failed: {exc}") from exc

            return self._parse_response(method, path, response)

        logger.error(
            "record_store.request.unavailable",
            extra={"event": "record_store.request.unavailable", "method": method, "path": path},
        )
        raise TransportError(f"{method} {path} failed after {total_attempts} attempt(s): {last_error}")

    def _parse_response(self, method: str, path: str, response: requests.Response) -> Any:
        if response.status_code == 404:
            raise StaleReferenceError(f"{path} no longer exists.", status_code=404)
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as exc:
            logger.warning(
                "record_store.response.error",
                extra={
                    "event": "record_store.response.error",
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                },
            )
            raise TransportError(f"{method} {path} returned {response.status_code}.", response.status_code) from exc

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"{method} {path} returned invalid JSON.", response.status_code) from exc

    def list_opportunities(self, params: Mapping[str, str] | None = None) -> CollectionResult:
        body = self._request("GET", OPPORTUNITIES, params=params, retry=True)
        return normalize_collection(body)

    def get_opportunity(self, opportunity_id: int, expand: str | None = None) -> dict[str, Any]:
        params = {"$expand": expand} if expand else None
        body = self._request("GET", entity_path(OPPORTUNITIES, opportunity_id), params=params, retry=True)
        if not isinstance(body, dict):
            raise TransportError(f"Opportunity {opportunity_id} response was empty.")
        return body

    def create_opportunity(self, body: Mapping[str, Any]) -> dict[str, Any]:
        created = self._request("POST", OPPORTUNITIES, json=body)
        if not isinstance(created, dict):
            raise TransportError("Create response did not include the new record.")
        return created

    def update_opportunity(self, opportunity_id: int, body: Mapping[str, Any]) -> dict[str, Any] | None:
        return self._request("PATCH", entity_path(OPPORTUNITIES, opportunity_id), json=body)

    def get_metadata(self) -> dict[str, Any]:
        body = self._request("GET", "$metadata", retry=True)
        return body if isinstance(body, dict) else {}


class AsyncRecordStore(OpportunityStore):
    """Runs the blocking client in a worker thread so the event loop stays free."""

    def __init__(self, client: RecordStoreClient | None = None) -> None:
        self.client = client or RecordStoreClient()

    async def list_opportunities(self, params: Mapping[str, str] | None = None) -> CollectionResult:
        return await asyncio.to_thread(self.client.list_opportunities, params)

    async def get_opportunity(self, opportunity_id: int, expand: str | None = None) -> dict[str, Any]:
        return await asyncio.to_thread(self.client.get_opportunity, opportunity_id, expand)

    async def create_opportunity(self, body: Mapping[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self.client.create_opportunity, body)

    async def update_opportunity(self, opportunity_id: int, body: Mapping[str, Any]) -> dict[str, Any] | None:
        return await asyncio.to_thread(self.client.update_opportunity, opportunity_id, body)

    async def get_metadata(self) -> dict[str, Any]:
        return await asyncio.to_thread(self.client.get_metadata)
