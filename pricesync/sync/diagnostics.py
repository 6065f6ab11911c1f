"""Read-only views over the remote store."""

import asyncio
import logging
from typing import Optional

from pricesync.config import settings
from pricesync.ingest.identifier import IdentifierKind
from pricesync.remote.client import RemoteStoreClient
from pricesync.sync.models import Product, Quote, Supplier

logger = logging.getLogger(__name__)


async def collection_counts(client: RemoteStoreClient) -> dict:
    """Totals per collection plus code coverage and priced quotes."""
    supplier_records, product_records, quote_records = await asyncio.gather(
        client.fetch_all(settings.supplier_collection),
        client.fetch_all(settings.product_collection),
        client.fetch_all(settings.quote_collection),
    )
    products = [Product.from_record(record) for record in product_records]
    quotes = [Quote.from_record(record) for record in quote_records]
    with_code = sum(1 for product in products if product.has_usable_code)

    return {
        "suppliers": len(supplier_records),
        "products": len(products),
        "products_with_code": with_code,
        "products_without_code": len(products) - with_code,
        "quotes": len(quotes),
        "priced_quotes": sum(1 for quote in quotes if quote.adjusted_price > 0),
    }


async def lookup_product(
    client: RemoteStoreClient,
    value: str,
    kind: IdentifierKind,
) -> Optional[dict]:
    """
    Find a product by code or display name, with its quotes.

    Returns None if no product matches.
    """
    value = value.strip()
    field = "code" if kind == IdentifierKind.CODE else "display_name"
    records = await client.fetch_all(
        settings.product_collection,
        filters=[{"key": field, "constraint_type": "equals", "value": value}],
    )
    # Filters are advisory; match locally as well
    matches = [
        product for product in (Product.from_record(record) for record in records)
        if (product.code if kind == IdentifierKind.CODE else product.display_name) == value
    ]
    if not matches:
        return None
    product = matches[0]

    quote_records, supplier_records = await asyncio.gather(
        client.fetch_all(
            settings.quote_collection,
            filters=[{"key": "product_id", "constraint_type": "equals", "value": product.id}],
        ),
        client.fetch_all(settings.supplier_collection),
    )
    supplier_names = {
        supplier.id: supplier.name
        for supplier in (Supplier.from_record(record) for record in supplier_records)
    }
    quotes = [
        quote for quote in (Quote.from_record(record) for record in quote_records)
        if quote.product_id == product.id
    ]
    quotes.sort(key=lambda quote: quote.sort_price)

    return {
        "product": {
            "id": product.id,
            "code": product.code,
            "display_name": product.display_name,
            "identifier_kind": product.identifier_kind.value,
            **product.aggregates(),
        },
        "duplicates": len(matches) - 1,
        "quotes": [
            {
                "id": quote.id,
                "supplier_id": quote.supplier_id,
                "supplier_name": supplier_names.get(quote.supplier_id),
                "is_best_price": quote.is_best_price,
                **quote.price_fields(),
            }
            for quote in quotes
        ],
    }


async def products_without_code(client: RemoteStoreClient) -> dict:
    """Products lacking a usable code, most widely quoted first."""
    records = await client.fetch_all(settings.product_collection)
    products = [
        product for product in (Product.from_record(record) for record in records)
        if not product.has_usable_code
    ]
    products.sort(key=lambda product: (-product.supplier_count, product.display_name))

    return {
        "total": len(products),
        "products": [
            {
                "id": product.id,
                "display_name": product.display_name,
                "supplier_count": product.supplier_count,
                "min_price": product.min_price,
            }
            for product in products
        ],
    }
