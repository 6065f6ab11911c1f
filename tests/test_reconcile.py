"""Tests for the reconciliation engine."""

import pytest

from conftest import PRODUCTS, QUOTES, SUPPLIERS, make_item
from pricesync.ingest.extract_parser import parse_extract
from pricesync.remote.errors import RemoteIOError
from pricesync.sync.reconcile import ReconciliationRun

EXTRACT = (
    "Loja A,,,Loja B,,\n"
    "Código,Modelo,Preço,Código,Modelo,Preço\n"
    'A1,iPhone 12,"R$ 1.000,00",A1,iPhone 12,"R$ 950,00"\n'
    'NO CODE,Moto G,"R$ 500,00",B2,Redmi 9,"R$ 700,00"\n'
)


async def reconcile(store, items, batch_options, markup=10.0):
    run = ReconciliationRun(store, markup=markup, **batch_options)
    return await run.execute(items)


@pytest.mark.asyncio
async def test_first_run_creates_everything(store, batch_options):
    items = parse_extract(EXTRACT).line_items

    result = await reconcile(store, items, batch_options)

    assert result.suppliers_created == 2
    assert result.products_created == 3
    assert result.quotes_created == 4
    assert result.quotes_updated == 0
    assert result.errors == []

    phone = store.find(PRODUCTS, code="A1")[0]
    assert phone["identifier_kind"] == "code"
    assert phone["display_name"] == "iPhone 12"

    moto = store.find(PRODUCTS, display_name="Moto G")[0]
    assert moto["code"] == ""
    assert moto["identifier_kind"] == "name"

    loja_b = store.find(SUPPLIERS, name="Loja B")[0]
    quote = store.find(QUOTES, product_id=phone["id"], supplier_id=loja_b["id"])[0]
    assert quote["raw_price"] == 950.0
    assert quote["adjusted_price"] == 960.0
    assert quote["sort_price"] == 950.0
    assert quote["is_best_price"] is False


@pytest.mark.asyncio
async def test_second_run_with_same_extract_writes_nothing(store, batch_options):
    items = parse_extract(EXTRACT).line_items
    await reconcile(store, items, batch_options)
    store.reset_calls()

    result = await reconcile(store, parse_extract(EXTRACT).line_items, batch_options)

    assert result.suppliers_created == 0
    assert result.products_created == 0
    assert result.quotes_created == 0
    assert result.quotes_updated == 0
    assert result.quotes_zeroed == 0
    assert result.quotes_unchanged == 4
    assert store.calls == []
    assert len(store.records(PRODUCTS)) == 3
    assert len(store.records(QUOTES)) == 4


@pytest.mark.asyncio
async def test_changed_price_updates_quote(store, batch_options):
    await reconcile(store, [make_item("S", "A1", "Phone", 100.0)], batch_options)

    result = await reconcile(store, [make_item("S", "A1", "Phone", 120.0)], batch_options)

    assert result.quotes_updated == 1
    quote = store.records(QUOTES)[0]
    assert quote["raw_price"] == 120.0
    assert quote["adjusted_price"] == 130.0
    assert quote["sort_price"] == 120.0


@pytest.mark.asyncio
async def test_markup_change_updates_adjusted_price(store, batch_options):
    await reconcile(store, [make_item("S", "A1", "Phone", 100.0)], batch_options, markup=10)

    result = await reconcile(store, [make_item("S", "A1", "Phone", 100.0)], batch_options, markup=25)

    assert result.quotes_updated == 1
    assert store.records(QUOTES)[0]["adjusted_price"] == 125.0


@pytest.mark.asyncio
async def test_unpriced_row_gets_sentinel_sort_price(store, batch_options):
    await reconcile(store, [make_item("S", "A1", "Phone", 0.0)], batch_options)

    quote = store.records(QUOTES)[0]
    assert quote["raw_price"] == 0.0
    assert quote["adjusted_price"] == 0.0
    assert quote["sort_price"] == 999999


@pytest.mark.asyncio
async def test_missing_product_is_zeroed(store, batch_options):
    supplier = store.seed(SUPPLIERS, name="S")
    kept = store.seed(PRODUCTS, code="A1", display_name="Phone", identifier_kind="code")
    dropped = store.seed(PRODUCTS, code="B2", display_name="Tablet", identifier_kind="code")
    store.seed(QUOTES, product_id=kept["id"], supplier_id=supplier["id"],
               raw_price=100, adjusted_price=110, sort_price=100)
    stale = store.seed(QUOTES, product_id=dropped["id"], supplier_id=supplier["id"],
                       raw_price=200, adjusted_price=210, sort_price=200)

    result = await reconcile(store, [make_item("S", "A1", "Phone", 100.0)], batch_options)

    assert result.quotes_zeroed == 1
    assert stale["raw_price"] == 0
    assert stale["adjusted_price"] == 0
    assert stale["sort_price"] == 999999


@pytest.mark.asyncio
async def test_already_zero_quote_is_not_rewritten(store, batch_options):
    supplier = store.seed(SUPPLIERS, name="S")
    product = store.seed(PRODUCTS, code="B2", display_name="Tablet", identifier_kind="code")
    store.seed(QUOTES, product_id=product["id"], supplier_id=supplier["id"],
               raw_price=0, adjusted_price=0, sort_price=999999)

    result = await reconcile(store, [make_item("S", "A1", "Phone", 50.0)], batch_options)

    assert result.quotes_zeroed == 0
    assert store.writes("update") == []


@pytest.mark.asyncio
async def test_supplier_absent_from_extract_is_decayed(store, batch_options):
    gone = store.seed(SUPPLIERS, name="Gone")
    product = store.seed(PRODUCTS, code="A1", display_name="Phone", identifier_kind="code")
    quote = store.seed(QUOTES, product_id=product["id"], supplier_id=gone["id"],
                       raw_price=80, adjusted_price=90, sort_price=80)

    result = await reconcile(store, [make_item("Other", "A1", "Phone", 100.0)], batch_options)

    assert result.quotes_zeroed == 1
    assert quote["raw_price"] == 0


@pytest.mark.asyncio
async def test_product_quoted_by_name_is_not_decayed(store, batch_options):
    supplier = store.seed(SUPPLIERS, name="S")
    product = store.seed(PRODUCTS, code="A1", display_name="Phone", identifier_kind="code")
    quote = store.seed(QUOTES, product_id=product["id"], supplier_id=supplier["id"],
                       raw_price=80, adjusted_price=90, sort_price=80)

    result = await reconcile(store, [make_item("S", "NO CODE", "Phone", 80.0)], batch_options, markup=10)

    assert result.quotes_zeroed == 0
    assert result.products_created == 0
    assert quote["raw_price"] == 80


@pytest.mark.asyncio
async def test_name_row_matches_existing_code_product(store, batch_options):
    product = store.seed(PRODUCTS, code="A1", display_name="Phone", identifier_kind="code")

    result = await reconcile(store, [make_item("S", "", "Phone", 100.0)], batch_options)

    assert result.products_created == 0
    assert store.records(QUOTES)[0]["product_id"] == product["id"]


@pytest.mark.asyncio
async def test_code_row_does_not_merge_into_name_only_product(store, batch_options):
    # A product first seen without a code is not merged when a code shows up
    # later; a second product is created for the code.
    store.seed(PRODUCTS, code="", display_name="Phone", identifier_kind="name")

    result = await reconcile(store, [make_item("S", "A1", "Phone", 100.0)], batch_options)

    assert result.products_created == 1
    assert len(store.find(PRODUCTS, display_name="Phone")) == 2


@pytest.mark.asyncio
async def test_code_and_name_rows_for_same_item_share_a_product(store, batch_options):
    items = [
        make_item("S1", "A1", "Phone", 100.0),
        make_item("S2", "NO CODE", "Phone", 90.0),
    ]

    result = await reconcile(store, items, batch_options)

    assert result.products_created == 1
    assert result.quotes_created == 2
    assert len({q["product_id"] for q in store.records(QUOTES)}) == 1


@pytest.mark.asyncio
async def test_same_supplier_code_and_name_rows_make_one_quote(store, batch_options):
    items = [
        make_item("S", "A1", "Phone", 100.0),
        make_item("S", "NO CODE", "Phone", 90.0),
    ]

    result = await reconcile(store, items, batch_options, markup=0)

    quotes = store.records(QUOTES)
    assert result.products_created == 1
    assert result.quotes_created == 1
    assert len(quotes) == 1
    assert quotes[0]["raw_price"] == 90.0


@pytest.mark.asyncio
async def test_same_supplier_code_and_name_rows_update_existing_quote(store, batch_options):
    supplier = store.seed(SUPPLIERS, name="S")
    product = store.seed(PRODUCTS, code="A1", display_name="Phone", identifier_kind="code")
    quote = store.seed(QUOTES, product_id=product["id"], supplier_id=supplier["id"],
                       raw_price=50, adjusted_price=50, sort_price=50, is_best_price=False)
    items = [
        make_item("S", "A1", "Phone", 100.0),
        make_item("S", "", "Phone", 90.0),
        make_item("S", "A1", "Phone", 80.0),
    ]

    result = await reconcile(store, items, batch_options, markup=0)

    assert result.quotes_created == 0
    assert result.quotes_updated == 1
    assert len(store.records(QUOTES)) == 1
    assert quote["raw_price"] == 80.0


@pytest.mark.asyncio
async def test_repeated_rows_collapse_to_one_quote(store, batch_options):
    items = [
        make_item("S", "A1", "Phone", 100.0),
        make_item("S", "A1", "Phone", 90.0),
    ]

    result = await reconcile(store, items, batch_options)

    assert result.quotes_created == 1
    assert store.records(QUOTES)[0]["raw_price"] == 90.0
    assert len(store.writes("create", SUPPLIERS)) == 1


@pytest.mark.asyncio
async def test_failed_product_create_is_item_level(store, batch_options):
    store.fail_create = lambda collection, payload: (
        collection == PRODUCTS and payload.get("code") == "BAD"
    )
    items = [
        make_item("S", "BAD", "Broken", 10.0),
        make_item("S", "A1", "Phone", 100.0),
        make_item("S", "A2", "Tablet", 200.0),
    ]

    result = await reconcile(store, items, batch_options)

    assert result.products_created == 2
    assert result.quotes_created == 2
    assert len(result.errors) == 2
    assert any(e.startswith("products:") and "BAD" in e for e in result.errors)
    assert any(e.startswith("quotes:") and "not found" in e for e in result.errors)


@pytest.mark.asyncio
async def test_load_failure_aborts_run(store, batch_options):
    store.fail_fetch.add(QUOTES)

    with pytest.raises(RemoteIOError):
        await reconcile(store, [make_item("S", "A1", "Phone", 100.0)], batch_options)

    assert store.calls == []


@pytest.mark.asyncio
async def test_existing_supplier_is_reused(store, batch_options):
    supplier = store.seed(SUPPLIERS, name="S")

    result = await reconcile(store, [make_item("S", "A1", "Phone", 100.0)], batch_options)

    assert result.suppliers_created == 0
    assert store.records(QUOTES)[0]["supplier_id"] == supplier["id"]
