"""Clients for the remote system of record."""

import logging
from typing import Optional

import httpx

from automate_pos.config import Config
from automate_pos.sync.errors import (
    RATE_LIMITED,
    TIMEOUT,
    TRANSPORT,
    UNAVAILABLE,
    FatalRemoteError,
    RetryableNetworkError,
)

logger = logging.getLogger(__name__)

APPLICATION_NAME = "AutoMatePOS"

_RETRYABLE_STATUS_REASONS = {
    429: RATE_LIMITED,
    503: UNAVAILABLE,
    504: TIMEOUT,
}


class RemoteClient:
    """Collection-scoped operations the sync engine needs from the remote.

    Implementations must be idempotent per ``mutation_id``: the engine
    delivers at least once and may replay a mutation after an interruption.
    """

    async def insert(self, collection: str, record: dict, mutation_id: str):
        raise NotImplementedError

    async def update(self, collection: str, record_id: str, record: dict,
                     mutation_id: str):
        raise NotImplementedError

    async def delete(self, collection: str, record_id: str, mutation_id: str):
        raise NotImplementedError

    async def fetch_since(self, collection: str, since: Optional[str],
                          business_id: Optional[str] = None) -> list[dict]:
        raise NotImplementedError

    async def aclose(self):
        """Release network resources."""


class HttpRemote(RemoteClient):
    """PostgREST-style REST backend reached over httpx."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=f"{self.base_url}/rest/v1",
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "x-application-name": APPLICATION_NAME,
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_config(cls) -> Optional["HttpRemote"]:
        """Build a client from Config, or None when no remote is configured."""
        if not Config.remote_configured():
            return None
        return cls(Config.REMOTE_URL, Config.REMOTE_API_KEY,
                   Config.REMOTE_TIMEOUT)

    async def _request(self, method: str, collection: str,
                       mutation_id: Optional[str] = None,
                       **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if mutation_id:
            headers["Idempotency-Key"] = mutation_id
        try:
            response = await self.client.request(
                method, f"/{collection}", headers=headers, **kwargs
            )
        except httpx.TimeoutException as e:
            raise RetryableNetworkError(
                f"{method} {collection} timed out: {e}", TIMEOUT
            ) from e
        except httpx.TransportError as e:
            raise RetryableNetworkError(
                f"{method} {collection} failed: {e}", TRANSPORT
            ) from e

        status = response.status_code
        if status in _RETRYABLE_STATUS_REASONS:
            raise RetryableNetworkError(
                f"{method} {collection} returned {status}",
                _RETRYABLE_STATUS_REASONS[status], status,
            )
        if status >= 400:
            raise FatalRemoteError(
                f"{method} {collection} rejected ({status}): "
                f"{response.text[:500]}",
                status,
            )
        return response

    async def insert(self, collection: str, record: dict, mutation_id: str):
        # merge-duplicates turns a replayed insert into an upsert
        await self._request(
            "POST", collection, mutation_id, json=record,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def update(self, collection: str, record_id: str, record: dict,
                     mutation_id: str):
        await self._request(
            "PATCH", collection, mutation_id, json=record,
            params={"id": f"eq.{record_id}"},
            headers={"Prefer": "return=minimal"},
        )

    async def delete(self, collection: str, record_id: str, mutation_id: str):
        await self._request(
            "DELETE", collection, mutation_id,
            params={"id": f"eq.{record_id}"},
        )

    async def fetch_since(self, collection: str, since: Optional[str],
                          business_id: Optional[str] = None) -> list[dict]:
        params = {"select": "*", "order": "updated_at.asc"}
        if since:
            params["updated_at"] = f"gte.{since}"
        if business_id:
            params["business_id"] = f"eq.{business_id}"
        response = await self._request("GET", collection, params=params)
        try:
            rows = response.json()
        except ValueError as e:
            raise FatalRemoteError(
                f"GET {collection} returned invalid JSON: {e}",
                response.status_code,
            ) from e
        return rows if isinstance(rows, list) else []

    async def aclose(self):
        await self.client.aclose()
