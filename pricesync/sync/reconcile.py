"""Reconciliation of extract line items against the remote store.

A run moves through strictly ordered phases:

1. load      - fetch suppliers, products and quotes; build indexes
2. plan      - queue supplier/product creates and one quote operation per
               (supplier, product identity)
3. suppliers - create missing suppliers
4. products  - create missing products
5. quotes    - collapse operations that resolve to the same (product,
               supplier) pair, create new quotes, update changed prices
6. decay     - zero quotes a supplier no longer lists

All indexes live on the run object. They are only mutated between awaited
remote calls, so concurrent batch items never observe a half-written entry.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from pricesync import metrics
from pricesync.config import settings
from pricesync.ingest.extract_parser import LineItem
from pricesync.ingest.identifier import IdentifierKind, ProductKey, resolve_identifier
from pricesync.logging_config import log_context
from pricesync.remote.client import RemoteStoreClient
from pricesync.sync.batch import BatchError, run_batch
from pricesync.sync.models import (
    Product,
    Quote,
    Supplier,
    SyncResult,
    adjusted_price,
    sort_price,
)

logger = logging.getLogger(__name__)


class OperationAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    UPSERT = "upsert"  # Decided against the quote index at apply time


class QuoteChange(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class BatchOperation:
    """A planned write with its target collection and resolved keys."""

    action: OperationAction
    collection: str
    payload: Dict[str, Any] = field(default_factory=dict)
    supplier_name: Optional[str] = None
    product_key: Optional[ProductKey] = None
    record_id: Optional[str] = None

    def describe(self) -> str:
        parts = [self.action.value, self.collection]
        if self.supplier_name:
            parts.append(f"supplier={self.supplier_name}")
        if self.product_key:
            parts.append(f"product={self.product_key}")
        if self.record_id:
            parts.append(f"id={self.record_id}")
        return " ".join(parts)


@dataclass
class SyncPlan:
    suppliers: List[BatchOperation] = field(default_factory=list)
    products: List[BatchOperation] = field(default_factory=list)
    quotes: List[BatchOperation] = field(default_factory=list)


class ReconciliationRun:
    """
    One reconciliation of an extract against the remote store.

    Usage:
        run = ReconciliationRun(client, markup=10)
        result = await run.execute(extract.line_items)
    """

    def __init__(
        self,
        client: RemoteStoreClient,
        markup: Optional[float] = None,
        batch_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        pause_seconds: Optional[float] = None,
        invalid_sort_price: Optional[float] = None,
    ):
        self.client = client
        self.markup = markup if markup is not None else settings.default_markup
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.pause_seconds = pause_seconds
        self.invalid_sort_price = (
            invalid_sort_price if invalid_sort_price is not None else settings.invalid_sort_price
        )

        self.supplier_collection = settings.supplier_collection
        self.product_collection = settings.product_collection
        self.quote_collection = settings.quote_collection

        # Indexes
        self.suppliers_by_name: Dict[str, Supplier] = {}
        self.suppliers_by_id: Dict[str, Supplier] = {}
        self.products_by_key: Dict[ProductKey, Product] = {}
        self.products_by_id: Dict[str, Product] = {}
        self.quotes_by_pair: Dict[Tuple[str, str], Quote] = {}
        self.prior_quotes: List[Quote] = []

        # Identities each supplier quoted in this run
        self.quoted_keys: Dict[str, Set[ProductKey]] = defaultdict(set)

        self.result = SyncResult()

    async def execute(self, items: Iterable[LineItem]) -> SyncResult:
        """Run every phase in order and return the counters."""
        await self.load()
        plan = self.plan(items)
        await self.apply_suppliers(plan.suppliers)
        await self.apply_products(plan.products)
        await self.apply_quotes(plan.quotes)
        await self.decay()

        logger.info(
            f"Reconciliation done: {self.result.suppliers_created} suppliers, "
            f"{self.result.products_created} products, {self.result.quotes_created} quotes created; "
            f"{self.result.quotes_updated} updated, {self.result.quotes_zeroed} zeroed, "
            f"{len(self.result.errors)} errors"
        )
        return self.result

    # ------------------------------------------------------------------
    # Phase 1: load
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Fetch current remote state and build the lookup indexes."""
        supplier_records, product_records, quote_records = await asyncio.gather(
            self.client.fetch_all(self.supplier_collection),
            self.client.fetch_all(self.product_collection),
            self.client.fetch_all(self.quote_collection),
        )

        for record in supplier_records:
            supplier = Supplier.from_record(record)
            if supplier.name:
                self.suppliers_by_name.setdefault(supplier.name, supplier)
            self.suppliers_by_id[supplier.id] = supplier

        products = [Product.from_record(record) for record in product_records]
        # Name-kind products own their name key; code-kind products only fill gaps
        products.sort(key=lambda p: p.identifier_kind != IdentifierKind.NAME)
        for product in products:
            self._index_product(product)

        for record in quote_records:
            quote = Quote.from_record(record)
            self.prior_quotes.append(quote)
            self.quotes_by_pair.setdefault(quote.pair, quote)

        logger.info(
            f"Loaded {len(self.suppliers_by_id)} suppliers, {len(self.products_by_id)} products, "
            f"{len(self.prior_quotes)} quotes"
        )

    def _index_product(self, product: Product) -> None:
        self.products_by_id[product.id] = product
        for key in product.keys():
            if key.kind == IdentifierKind.NAME and product.identifier_kind == IdentifierKind.NAME:
                self.products_by_key[key] = product
            else:
                self.products_by_key.setdefault(key, product)

    def _index_supplier(self, supplier: Supplier) -> None:
        self.suppliers_by_name.setdefault(supplier.name, supplier)
        self.suppliers_by_id[supplier.id] = supplier

    # ------------------------------------------------------------------
    # Phase 2: plan
    # ------------------------------------------------------------------

    def plan(self, items: Iterable[LineItem]) -> SyncPlan:
        """Queue the creates and quote operations needed for ``items``."""
        plan = SyncPlan()
        queued_suppliers: Set[str] = set()
        planned_keys: Set[ProductKey] = set()
        quote_ops: Dict[Tuple[str, ProductKey], BatchOperation] = {}

        for item in items:
            supplier_name = item.supplier_name.strip()
            key = resolve_identifier(item.raw_code, item.raw_model)
            if key is None or not supplier_name:
                self._record_error("plan", f"row {supplier_name or '?'}: no usable identity")
                continue

            if supplier_name not in self.suppliers_by_name and supplier_name not in queued_suppliers:
                queued_suppliers.add(supplier_name)
                plan.suppliers.append(BatchOperation(
                    action=OperationAction.CREATE,
                    collection=self.supplier_collection,
                    payload={"name": supplier_name},
                    supplier_name=supplier_name,
                ))

            if key not in self.products_by_key and key not in planned_keys:
                operation = self._product_create(key, item)
                plan.products.append(operation)
                planned_keys.add(key)
                if key.kind == IdentifierKind.CODE and operation.payload["display_name"]:
                    planned_keys.add(ProductKey.name(operation.payload["display_name"]))

            price = item.price if item.price > 0 else 0.0
            # Last row wins; reinserting keeps operations in last-seen row order
            quote_ops.pop((supplier_name, key), None)
            quote_ops[(supplier_name, key)] = BatchOperation(
                action=OperationAction.UPSERT,
                collection=self.quote_collection,
                payload={
                    "raw_price": price,
                    "adjusted_price": adjusted_price(price, self.markup),
                    "sort_price": sort_price(price, self.invalid_sort_price),
                },
                supplier_name=supplier_name,
                product_key=key,
            )
            self.quoted_keys[supplier_name].add(key)

        plan.quotes = list(quote_ops.values())
        logger.info(
            f"Planned {len(plan.suppliers)} supplier creates, {len(plan.products)} product creates, "
            f"{len(plan.quotes)} quote operations"
        )
        return plan

    def _product_create(self, key: ProductKey, item: LineItem) -> BatchOperation:
        display_name = item.raw_model.strip() or key.value
        return BatchOperation(
            action=OperationAction.CREATE,
            collection=self.product_collection,
            payload={
                "code": key.value if key.kind == IdentifierKind.CODE else "",
                "display_name": display_name,
                "identifier_kind": key.kind.value,
                "avg_price": 0,
                "min_price": 0,
                "supplier_count": 0,
            },
            product_key=key,
        )

    # ------------------------------------------------------------------
    # Phase 3: suppliers
    # ------------------------------------------------------------------

    async def apply_suppliers(self, operations: List[BatchOperation]) -> None:
        async def create(operation: BatchOperation) -> Optional[Supplier]:
            if operation.supplier_name in self.suppliers_by_name:
                logger.debug(f"Supplier {operation.supplier_name} already exists, skipping create")
                return None
            record = await self.client.create(operation.collection, operation.payload)
            supplier = Supplier.from_record(record)
            self._index_supplier(supplier)
            return supplier

        outcomes, errors = await self._run(operations, create, "suppliers")
        created = sum(1 for o in outcomes if o.success and o.value is not None)
        self.result.suppliers_created += created
        metrics.sync_records_written_total.labels(
            collection=self.supplier_collection, action="create"
        ).inc(created)

    # ------------------------------------------------------------------
    # Phase 4: products
    # ------------------------------------------------------------------

    async def apply_products(self, operations: List[BatchOperation]) -> None:
        async def create(operation: BatchOperation) -> Optional[Product]:
            if operation.product_key in self.products_by_key:
                logger.debug(f"Product {operation.product_key} already exists, skipping create")
                return None
            record = await self.client.create(operation.collection, operation.payload)
            product = Product.from_record(record)
            self._index_product(product)
            return product

        outcomes, errors = await self._run(operations, create, "products")
        created = sum(1 for o in outcomes if o.success and o.value is not None)
        self.result.products_created += created
        metrics.sync_records_written_total.labels(
            collection=self.product_collection, action="create"
        ).inc(created)

    # ------------------------------------------------------------------
    # Phase 5: quotes
    # ------------------------------------------------------------------

    async def apply_quotes(self, operations: List[BatchOperation]) -> None:
        operations = self._collapse_by_pair(operations)
        outcomes, errors = await self._run(operations, self._process_quote, "quotes")

        for outcome in outcomes:
            if not outcome.success:
                continue
            if outcome.value == QuoteChange.CREATED:
                self.result.quotes_created += 1
            elif outcome.value == QuoteChange.UPDATED:
                self.result.quotes_updated += 1
            else:
                self.result.quotes_unchanged += 1

        metrics.sync_records_written_total.labels(
            collection=self.quote_collection, action="create"
        ).inc(self.result.quotes_created)
        metrics.sync_records_written_total.labels(
            collection=self.quote_collection, action="update"
        ).inc(self.result.quotes_updated)

    def _collapse_by_pair(self, operations: List[BatchOperation]) -> List[BatchOperation]:
        """
        Keep one operation per resolved (product, supplier) pair.

        A code row and a name row can resolve to the same product, so the
        per-key dedup done while planning is not enough. The last row wins.
        Operations that do not resolve are kept so they surface as errors.
        """
        collapsed: Dict[Tuple[str, ...], BatchOperation] = {}
        for index, operation in enumerate(operations):
            supplier = self.suppliers_by_name.get(operation.supplier_name)
            product = self.products_by_key.get(operation.product_key)
            if supplier is None or product is None:
                collapsed[("unresolved", str(index))] = operation
                continue
            pair = (product.id, supplier.id)
            if pair in collapsed:
                logger.debug(
                    f"{operation.describe()} replaces an earlier row for the same product"
                )
            collapsed[pair] = operation
        return list(collapsed.values())

    async def _process_quote(self, operation: BatchOperation) -> QuoteChange:
        supplier = self.suppliers_by_name.get(operation.supplier_name)
        if supplier is None:
            raise LookupError(f"supplier {operation.supplier_name!r} not found")

        product = self.products_by_key.get(operation.product_key)
        if product is None:
            raise LookupError(f"product {operation.product_key} not found")

        existing = self.quotes_by_pair.get((product.id, supplier.id))
        prices = operation.payload

        if existing is None:
            payload = {
                "product_id": product.id,
                "supplier_id": supplier.id,
                **prices,
                "is_best_price": False,
            }
            record = await self.client.create(self.quote_collection, payload)
            quote = Quote.from_record(record)
            self.quotes_by_pair[quote.pair] = quote
            return QuoteChange.CREATED

        if (
            existing.raw_price == prices["raw_price"]
            and existing.adjusted_price == prices["adjusted_price"]
        ):
            return QuoteChange.UNCHANGED

        await self.client.update(self.quote_collection, existing.id, prices)
        existing.raw_price = prices["raw_price"]
        existing.adjusted_price = prices["adjusted_price"]
        existing.sort_price = prices["sort_price"]
        return QuoteChange.UPDATED

    # ------------------------------------------------------------------
    # Phase 6: decay
    # ------------------------------------------------------------------

    def plan_decay(self) -> List[BatchOperation]:
        """Zeroing updates for previously priced quotes missing from this run."""
        operations = []
        for quote in self.prior_quotes:
            supplier = self.suppliers_by_id.get(quote.supplier_id)
            if supplier is None or quote.raw_price <= 0:
                continue

            quoted = self.quoted_keys.get(supplier.name, set())
            product = self.products_by_id.get(quote.product_id)
            if product is not None and any(key in quoted for key in product.keys()):
                continue

            operations.append(BatchOperation(
                action=OperationAction.UPDATE,
                collection=self.quote_collection,
                payload={
                    "raw_price": 0,
                    "adjusted_price": 0,
                    "sort_price": self.invalid_sort_price,
                },
                supplier_name=supplier.name,
                record_id=quote.id,
            ))
        return operations

    async def decay(self) -> None:
        operations = self.plan_decay()
        if not operations:
            return

        quotes_by_id = {quote.id: quote for quote in self.prior_quotes}

        async def zero(operation: BatchOperation) -> str:
            await self.client.update(operation.collection, operation.record_id, operation.payload)
            quote = quotes_by_id[operation.record_id]
            quote.raw_price = 0.0
            quote.adjusted_price = 0.0
            quote.sort_price = self.invalid_sort_price
            return operation.record_id

        outcomes, errors = await self._run(operations, zero, "decay")
        zeroed = sum(1 for o in outcomes if o.success)
        self.result.quotes_zeroed += zeroed
        metrics.sync_records_written_total.labels(
            collection=self.quote_collection, action="zero"
        ).inc(zeroed)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run(self, operations: List[BatchOperation], operation, phase: str):
        with log_context(phase=phase):
            outcomes, errors = await run_batch(
                operations,
                operation,
                batch_size=self.batch_size,
                max_concurrency=self.max_concurrency,
                pause_seconds=self.pause_seconds,
                label=phase,
            )
        for error in errors:
            self._record_batch_error(phase, error)
        return outcomes, errors

    def _record_batch_error(self, phase: str, error: BatchError) -> None:
        self._record_error(phase, f"{error.item.describe()}: {error.message}")

    def _record_error(self, phase: str, message: str) -> None:
        self.result.errors.append(f"{phase}: {message}")
        metrics.sync_item_errors_total.labels(phase=phase).inc()


async def reconcile(
    client: RemoteStoreClient,
    items: Iterable[LineItem],
    markup: Optional[float] = None,
    **options,
) -> SyncResult:
    """Reconcile ``items`` against the store with a fresh run."""
    return await ReconciliationRun(client, markup=markup, **options).execute(items)
