"""HTTP client for the remote object store.

The store exposes one endpoint per collection:

    GET    {base}/{collection}?cursor=N&limit=M[&constraints=...]
    POST   {base}/{collection}
    PATCH  {base}/{collection}/{id}

List responses carry ``results``, ``remaining`` and ``cursor`` (the cursor
to request next), optionally wrapped in a ``response`` object.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx

from pricesync import metrics
from pricesync.config import settings
from pricesync.remote.errors import (
    MalformedResponseError,
    RemoteRequestError,
    TransientRemoteError,
)
from pricesync.remote.retry import linear_delay, retry_async

logger = logging.getLogger(__name__)

# Transport errors worth another attempt
RETRYABLE_EXC = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)


class FetchStopReason(str, Enum):
    """Why a paginated fetch stopped."""

    EMPTY_PAGE = "empty_page"  # Page returned zero records
    EXHAUSTED = "exhausted"  # Server reported nothing remaining
    STALLED = "stalled"  # Cursor did not advance while records remain
    PAGE_LIMIT = "page_limit"  # Hard page ceiling reached


@dataclass
class FetchAllResult:
    """Records gathered by a paginated fetch plus how it ended."""

    collection: str
    records: list[dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    stop_reason: Optional[FetchStopReason] = None


@dataclass
class Page:
    results: list[dict[str, Any]]
    remaining: int
    cursor: Optional[int]


class RemoteStoreClient:
    """
    Async client for the three-collection object store.

    Features:
    - Cursor pagination with stall and page-ceiling guards
    - Linear-backoff retries for transient failures
    - Per-attempt timeout
    - Static bearer credential
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client. Unset arguments fall back to settings.

        Args:
            base_url: Store base URL (collections are appended)
            api_token: Static credential sent as a bearer token
            page_size: Records per page
            max_pages: Page ceiling per fetch
            max_attempts: Attempts per call
            retry_base_delay: Linear backoff base in seconds
            timeout: Per-attempt timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = (base_url or settings.remote_api_url).rstrip("/")
        self.api_token = api_token if api_token is not None else settings.remote_api_token
        self.page_size = page_size or settings.remote_page_size
        self.max_pages = max_pages or settings.remote_max_pages
        self.max_attempts = max_attempts or settings.remote_max_attempts
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.remote_retry_base_delay
        )
        self.timeout = timeout or settings.remote_request_timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            headers = {"Accept": "application/json"}
            if self.api_token:
                headers["Authorization"] = f"Bearer {self.api_token}"
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "RemoteStoreClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def fetch_all(
        self,
        collection: str,
        filters: Optional[list[dict[str, Any]]] = None,
    ) -> list[dict[str, Any]]:
        """Fetch every record of a collection, following the cursor."""
        result = await self.fetch_pages(collection, filters)
        return result.records

    async def fetch_pages(
        self,
        collection: str,
        filters: Optional[list[dict[str, Any]]] = None,
    ) -> FetchAllResult:
        """
        Paginate through a collection and report why pagination stopped.

        Args:
            collection: Collection name
            filters: Optional list of constraint objects passed through to the store

        Returns:
            FetchAllResult with the accumulated records and stop reason

        Raises:
            RemoteIOError: If a page still fails after retries
            MalformedResponseError: If a page lacks the expected envelope
        """
        result = FetchAllResult(collection=collection)
        cursor = 0

        while True:
            if result.pages >= self.max_pages:
                result.stop_reason = FetchStopReason.PAGE_LIMIT
                logger.error(
                    f"{collection}: page limit ({self.max_pages}) reached with "
                    f"{len(result.records)} records, stopping"
                )
                break

            page = await self._fetch_page(collection, cursor, filters)
            result.pages += 1
            result.records.extend(page.results)

            if not page.results:
                result.stop_reason = FetchStopReason.EMPTY_PAGE
                break

            if page.remaining <= 0:
                result.stop_reason = FetchStopReason.EXHAUSTED
                break

            next_cursor = page.cursor if page.cursor is not None else cursor + len(page.results)
            if next_cursor == cursor:
                result.stop_reason = FetchStopReason.STALLED
                logger.warning(
                    f"{collection}: cursor stalled at {cursor} with {page.remaining} "
                    f"remaining, stopping with {len(result.records)} records"
                )
                break

            cursor = next_cursor

        metrics.remote_pagination_stops_total.labels(
            collection=collection, reason=result.stop_reason.value
        ).inc()
        logger.debug(
            f"{collection}: fetched {len(result.records)} records in {result.pages} pages "
            f"({result.stop_reason.value})"
        )
        return result

    async def create(self, collection: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Create a record and return it with its store-assigned id."""

        async def attempt() -> dict[str, Any]:
            response = await self._request("POST", collection, f"/{collection}", json=payload)
            body = self._json(response, collection)
            record_id = body.get("id") if isinstance(body, dict) else None
            if record_id is None:
                raise MalformedResponseError(f"{collection}: create response has no id")
            return {**payload, "id": record_id}

        return await self._with_retry(attempt, "create", collection)

    async def update(
        self,
        collection: str,
        record_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Partially update a record; returns the changed fields with the id."""

        async def attempt() -> dict[str, Any]:
            await self._request("PATCH", collection, f"/{collection}/{record_id}", json=payload)
            return {**payload, "id": record_id}

        return await self._with_retry(attempt, "update", collection)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetch_page(
        self,
        collection: str,
        cursor: int,
        filters: Optional[list[dict[str, Any]]],
    ) -> Page:
        params: dict[str, Any] = {"cursor": cursor, "limit": self.page_size}
        if filters:
            params["constraints"] = json.dumps(filters)

        async def attempt() -> Page:
            response = await self._request("GET", collection, f"/{collection}", params=params)
            return self._parse_page(self._json(response, collection), collection)

        return await self._with_retry(attempt, "fetch", collection)

    async def _with_retry(self, call, operation: str, collection: str):
        def on_retry(attempt: int, exc: BaseException) -> None:
            metrics.remote_retries_total.labels(collection=collection, operation=operation).inc()

        return await retry_async(
            call,
            operation=operation,
            collection=collection,
            max_attempts=self.max_attempts,
            delay=linear_delay(self.retry_base_delay),
            timeout=self.timeout,
            on_retry=on_retry,
        )

    async def _request(self, method: str, collection: str, path: str, **kwargs) -> httpx.Response:
        """Issue one request and translate failures into store errors."""
        client = await self._get_client()

        try:
            response = await client.request(method, path, **kwargs)
        except RETRYABLE_EXC as e:
            metrics.remote_requests_total.labels(
                collection=collection, method=method, status="transport_error"
            ).inc()
            raise TransientRemoteError(
                f"{method} {path}: transport error ({type(e).__name__}) {e}"
            ) from e

        sc = response.status_code
        metrics.remote_requests_total.labels(
            collection=collection, method=method, status=str(sc)
        ).inc()

        if 200 <= sc < 300:
            return response

        if sc == 429 or 500 <= sc < 600:
            raise TransientRemoteError(f"{method} {path}: HTTP {sc}", status_code=sc)

        raise RemoteRequestError(f"{method} {path}: HTTP {sc} {response.text[:200]}", status_code=sc)

    @staticmethod
    def _json(response: httpx.Response, collection: str) -> Any:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"{collection}: response is not JSON") from e

    @staticmethod
    def _parse_page(body: Any, collection: str) -> Page:
        if isinstance(body, dict) and isinstance(body.get("response"), dict):
            body = body["response"]

        if not isinstance(body, dict) or "results" not in body or "remaining" not in body:
            raise MalformedResponseError(
                f"{collection}: list response missing 'results' or 'remaining'"
            )

        results = body["results"]
        if not isinstance(results, list):
            raise MalformedResponseError(f"{collection}: 'results' is not a list")

        try:
            remaining = int(body["remaining"])
            cursor = int(body["cursor"]) if body.get("cursor") is not None else None
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(f"{collection}: non-numeric 'remaining' or 'cursor'") from e

        records = []
        for record in results:
            if isinstance(record, dict):
                if "id" not in record and "_id" in record:
                    record = {**record, "id": record["_id"]}
                records.append(record)

        return Page(results=records, remaining=remaining, cursor=cursor)
