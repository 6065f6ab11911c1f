"""Per-product price aggregates and best-price flags.

Recomputed from the full quote set, independent of any extract, so the
pass doubles as a repair tool. Only quotes with a positive adjusted price
take part; every write is idempotent and the pass can be re-run freely.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from pricesync import metrics
from pricesync.config import settings
from pricesync.logging_config import log_context
from pricesync.remote.client import RemoteStoreClient
from pricesync.sync.batch import run_batch
from pricesync.sync.models import AggregationResult, Product, Quote

logger = logging.getLogger(__name__)


@dataclass
class ProductStats:
    """Aggregates for one product over its priced quotes."""

    product_id: str
    supplier_count: int
    min_price: float
    avg_price: float
    cheapest_supplier_id: str

    def as_payload(self) -> dict:
        return {
            "avg_price": self.avg_price,
            "min_price": self.min_price,
            "supplier_count": self.supplier_count,
            "cheapest_supplier_id": self.cheapest_supplier_id,
        }


RESET_PAYLOAD = {
    "avg_price": 0,
    "min_price": 0,
    "supplier_count": 0,
    "cheapest_supplier_id": None,
}


def compute_product_stats(quotes: Iterable[Quote]) -> Dict[str, ProductStats]:
    """
    Group priced quotes by product and compute aggregates.

    Ties for the cheapest supplier go to the first quote in input order.
    The store does not guarantee a stable listing order, so a tie may
    resolve to a different supplier between runs.
    """
    groups: Dict[str, List[Quote]] = {}
    for quote in quotes:
        if quote.adjusted_price > 0:
            groups.setdefault(quote.product_id, []).append(quote)

    stats = {}
    for product_id, group in groups.items():
        prices = [quote.adjusted_price for quote in group]
        min_price = min(prices)
        cheapest = next(quote for quote in group if quote.adjusted_price == min_price)
        stats[product_id] = ProductStats(
            product_id=product_id,
            supplier_count=len(group),
            min_price=min_price,
            avg_price=round(sum(prices) / len(group), 2),
            cheapest_supplier_id=cheapest.supplier_id,
        )
    return stats


def best_price_flags(quotes: Iterable[Quote], stats: Dict[str, ProductStats]) -> Dict[str, bool]:
    """Map quote id -> whether it carries its product's minimum price."""
    flags = {}
    for quote in quotes:
        product_stats = stats.get(quote.product_id)
        flags[quote.id] = (
            quote.adjusted_price > 0
            and product_stats is not None
            and quote.adjusted_price == product_stats.min_price
        )
    return flags


def _needs_reset(product: Product) -> bool:
    return (
        product.supplier_count != 0
        or product.min_price != 0
        or product.avg_price != 0
        or product.cheapest_supplier_id is not None
    )


class AggregationPass:
    """
    Recomputes product aggregates and quote best-price flags.

    Usage:
        result = await AggregationPass(client).run()
    """

    def __init__(
        self,
        client: RemoteStoreClient,
        batch_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        pause_seconds: Optional[float] = None,
    ):
        self.client = client
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.pause_seconds = pause_seconds
        self.product_collection = settings.product_collection
        self.quote_collection = settings.quote_collection

    async def run(self) -> AggregationResult:
        result = AggregationResult()

        quote_records, product_records = await asyncio.gather(
            self.client.fetch_all(self.quote_collection),
            self.client.fetch_all(self.product_collection),
        )
        quotes = [Quote.from_record(record) for record in quote_records]
        products = {
            product.id: product
            for product in (Product.from_record(record) for record in product_records)
        }

        stats = compute_product_stats(quotes)
        logger.info(
            f"Aggregating {len(quotes)} quotes: {len(stats)} products with priced quotes"
        )

        await self._write_products(products, stats, result)
        await self._write_flags(quotes, best_price_flags(quotes, stats), result)

        logger.info(
            f"Aggregation done: {result.products_updated} products updated, "
            f"{result.products_reset} reset, {result.quotes_flagged} flagged, "
            f"{result.quotes_unflagged} unflagged, {len(result.errors)} errors"
        )
        return result

    async def _write_products(
        self,
        products: Dict[str, Product],
        stats: Dict[str, ProductStats],
        result: AggregationResult,
    ) -> None:
        updates = []
        for product_id, product_stats in stats.items():
            payload = product_stats.as_payload()
            product = products.get(product_id)
            if product is not None and product.aggregates() == payload:
                continue
            updates.append((product_id, payload))

        resets = [
            (product.id, dict(RESET_PAYLOAD))
            for product in products.values()
            if product.id not in stats and _needs_reset(product)
        ]

        async def write(update) -> str:
            product_id, payload = update
            await self.client.update(self.product_collection, product_id, payload)
            return product_id

        outcomes, errors = await self._run(updates + resets, write, "aggregates")
        written = {o.value for o in outcomes if o.success}
        result.products_updated += sum(1 for product_id, _ in updates if product_id in written)
        result.products_reset += sum(1 for product_id, _ in resets if product_id in written)
        result.errors.extend(f"aggregates: product {e.item[0]}: {e.message}" for e in errors)

        metrics.sync_records_written_total.labels(
            collection=self.product_collection, action="aggregate"
        ).inc(len(written))

    async def _write_flags(
        self,
        quotes: List[Quote],
        flags: Dict[str, bool],
        result: AggregationResult,
    ) -> None:
        changes = [
            (quote.id, flags[quote.id])
            for quote in quotes
            if quote.is_best_price != flags[quote.id]
        ]

        async def write(change) -> tuple:
            quote_id, flag = change
            await self.client.update(self.quote_collection, quote_id, {"is_best_price": flag})
            return change

        outcomes, errors = await self._run(changes, write, "best_price")
        for outcome in outcomes:
            if not outcome.success:
                continue
            if outcome.value[1]:
                result.quotes_flagged += 1
            else:
                result.quotes_unflagged += 1
        result.errors.extend(f"best_price: quote {e.item[0]}: {e.message}" for e in errors)

        metrics.sync_records_written_total.labels(
            collection=self.quote_collection, action="best_price"
        ).inc(result.quotes_flagged + result.quotes_unflagged)

    async def _run(self, items, operation, label: str):
        with log_context(phase=label):
            outcomes, errors = await run_batch(
                items,
                operation,
                batch_size=self.batch_size,
                max_concurrency=self.max_concurrency,
                pause_seconds=self.pause_seconds,
                label=label,
            )
        for _ in errors:
            metrics.sync_item_errors_total.labels(phase=label).inc()
        return outcomes, errors


async def recompute_aggregates(client: RemoteStoreClient, **options) -> AggregationResult:
    """Run a standalone aggregation pass."""
    return await AggregationPass(client, **options).run()
