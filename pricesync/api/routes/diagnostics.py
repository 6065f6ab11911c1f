"""Read-only diagnostic routes."""

from fastapi import APIRouter, Depends, HTTPException

from pricesync.api.deps import get_remote_client
from pricesync.ingest.identifier import IdentifierKind
from pricesync.remote.client import RemoteStoreClient
from pricesync.remote.errors import RemoteStoreError
from pricesync.sync import diagnostics

router = APIRouter(prefix="/api/diagnostics", tags=["diagnostics"])


@router.get("/counts")
async def get_counts(client: RemoteStoreClient = Depends(get_remote_client)):
    """Collection totals and code coverage."""
    try:
        return await diagnostics.collection_counts(client)
    except RemoteStoreError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/products/{kind}/{value}")
async def get_product(
    kind: IdentifierKind,
    value: str,
    client: RemoteStoreClient = Depends(get_remote_client),
):
    """Look up a product by code or by name."""
    try:
        found = await diagnostics.lookup_product(client, value, kind)
    except RemoteStoreError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if found is None:
        raise HTTPException(status_code=404, detail=f"No product with {kind.value} {value!r}")
    return found


@router.get("/products-without-code")
async def get_products_without_code(client: RemoteStoreClient = Depends(get_remote_client)):
    """Products that are identified by name only."""
    try:
        return await diagnostics.products_without_code(client)
    except RemoteStoreError as e:
        raise HTTPException(status_code=502, detail=str(e))
