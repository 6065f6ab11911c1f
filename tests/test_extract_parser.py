"""Tests for extract parsing."""

import pytest

from pricesync.ingest.extract_parser import (
    ExtractParser,
    decode_extract,
    extract_price,
    parse_extract,
    split_line,
)
from pricesync.ingest.identifier import IdentifierKind

SAMPLE = (
    "Loja A,,,Loja B,,,Loja C,,\n"
    "Código,Modelo,Preço,Código,Modelo,Preço,Código,Modelo,Preço\n"
    'A1,iPhone 12,"R$ 1.234,56",NO CODE,Galaxy S21,"R$ 999,00",,,\n'
    ',Moto G,"R$ 500,00",B2,Redmi 9,"R$ 700,00",,,\n'
    ',,"R$ 10,00",,,,,,\n'
)


def test_split_line_plain():
    assert split_line("a, b ,c") == ["a", "b", "c"]


def test_split_line_quoted_separator():
    assert split_line('A1,"Phone, 128GB","R$ 1.000,00"') == ["A1", "Phone, 128GB", "R$ 1.000,00"]


def test_split_line_keeps_empty_fields():
    assert split_line(",,x,") == ["", "", "x", ""]


def test_split_line_unterminated_quote_does_not_raise():
    assert split_line('a,"b,c') == ["a", "b,c"]


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("R$ 1.234,56", 1234.56),
        ("R$1,5", 1.5),
        ("1.000", 1000.0),
        ("  99,90 ", 99.9),
        ("US$ 12,00", 12.0),
        ("", 0.0),
        ("   ", 0.0),
        (None, 0.0),
        ("abc", 0.0),
        ("R$", 0.0),
        ("-3,00", 0.0),
    ],
)
def test_extract_price(raw, expected):
    assert extract_price(raw) == pytest.approx(expected)


def test_parse_groups_rows_by_store():
    result = parse_extract(SAMPLE)

    assert [store.name for store in result.stores] == ["Loja A", "Loja B"]
    loja_a, loja_b = result.stores

    assert [item.key.value for item in loja_a.items] == ["A1", "Moto G"]
    assert loja_a.items[0].key.kind == IdentifierKind.CODE
    assert loja_a.items[0].price == pytest.approx(1234.56)
    assert loja_a.items[1].key.kind == IdentifierKind.NAME

    assert loja_b.items[0].key.kind == IdentifierKind.NAME
    assert loja_b.items[0].key.value == "Galaxy S21"


def test_parse_summary_counts():
    summary = parse_extract(SAMPLE).summary()

    assert summary["total_products"] == 4
    assert summary["with_code"] == 2
    assert summary["without_code"] == 2
    assert summary["dropped_rows"] == 1
    assert summary["stores"][0] == {
        "store": "Loja A",
        "total_products": 2,
        "with_code": 1,
        "without_code": 1,
    }


def test_parse_keeps_unpriced_rows_with_identity():
    text = "S,,\nc,m,p\nX1,Phone,\n"
    items = parse_extract(text).line_items

    assert len(items) == 1
    assert items[0].price == 0.0


def test_parse_empty_and_headerless_input():
    assert parse_extract("").stores == []
    assert parse_extract(",,,\n,,,\n").stores == []


def test_parser_custom_layout():
    text = "Store;;\nA;Phone;1,00\n"
    result = ExtractParser(header_rows=1, separator=";").parse(text)

    assert result.line_items[0].key.value == "A"
    assert result.line_items[0].price == pytest.approx(1.0)


def test_decode_extract_falls_back_to_latin1():
    assert decode_extract("Preço".encode("latin-1")) == "Preço"
    assert decode_extract("\ufeffPreço".encode("utf-8")) == "Preço"
