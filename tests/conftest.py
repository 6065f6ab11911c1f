"""Shared fixtures: an in-memory stand-in for the remote object store."""

import asyncio
import itertools
from collections import defaultdict
from typing import Any, Callable, Optional

import pytest

from pricesync.config import settings
from pricesync.ingest.extract_parser import LineItem
from pricesync.ingest.identifier import resolve_identifier
from pricesync.remote.errors import RemoteIOError, RemoteRequestError

SUPPLIERS = settings.supplier_collection
PRODUCTS = settings.product_collection
QUOTES = settings.quote_collection


class FakeRemoteStore:
    """Implements fetch_all/create/update over plain lists of dicts."""

    def __init__(self):
        self.collections: dict[str, list[dict]] = defaultdict(list)
        self.calls: list[tuple[str, str, Any]] = []
        self.fail_create: Optional[Callable[[str, dict], bool]] = None
        self.fail_fetch: set[str] = set()
        self._ids = itertools.count(1)

    def seed(self, collection: str, **fields) -> dict:
        record = {"id": f"{collection}-{next(self._ids)}", **fields}
        self.collections[collection].append(record)
        return record

    def records(self, collection: str) -> list[dict]:
        return self.collections[collection]

    def find(self, collection: str, **match) -> list[dict]:
        return [
            record for record in self.collections[collection]
            if all(record.get(k) == v for k, v in match.items())
        ]

    def writes(self, action: str, collection: Optional[str] = None) -> list:
        return [
            call for call in self.calls
            if call[0] == action and (collection is None or call[1] == collection)
        ]

    async def fetch_all(self, collection: str, filters=None) -> list[dict]:
        await asyncio.sleep(0)
        if collection in self.fail_fetch:
            raise RemoteIOError("fetch", collection, 3, "HTTP 503")
        records = [dict(record) for record in self.collections[collection]]
        for constraint in filters or []:
            records = [r for r in records if r.get(constraint["key"]) == constraint["value"]]
        return records

    async def create(self, collection: str, payload: dict) -> dict:
        await asyncio.sleep(0)
        self.calls.append(("create", collection, dict(payload)))
        if self.fail_create and self.fail_create(collection, payload):
            raise RemoteIOError("create", collection, 3, "HTTP 500")
        record = {**payload, "id": f"{collection}-{next(self._ids)}"}
        self.collections[collection].append(record)
        return dict(record)

    async def update(self, collection: str, record_id: str, payload: dict) -> dict:
        await asyncio.sleep(0)
        self.calls.append(("update", collection, (record_id, dict(payload))))
        for record in self.collections[collection]:
            if record["id"] == record_id:
                record.update(payload)
                return {**payload, "id": record_id}
        raise RemoteRequestError(f"PATCH /{collection}/{record_id}: HTTP 404", status_code=404)

    def reset_calls(self) -> None:
        self.calls.clear()


def make_item(supplier: str, code: str, model: str, price: float) -> LineItem:
    key = resolve_identifier(code, model)
    assert key is not None
    return LineItem(supplier_name=supplier, raw_code=code, raw_model=model, price=price, key=key)


@pytest.fixture
def store() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def batch_options() -> dict:
    return {"batch_size": 3, "max_concurrency": 2, "pause_seconds": 0}
