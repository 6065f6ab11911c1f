"""Price-list extract parsing.

The extract is a delimited text file laid out as repeating column groups,
one group per store:

    Store A,,,Store B,,
    Code,Model,Price,Code,Model,Price
    A1,Phone X,"R$ 1.234,56",B7,Phone Y,"R$ 99,90"

The first row names the stores, the second row holds column captions and
is skipped, and every following row carries one item per store.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import List, Optional

from pricesync.config import settings
from pricesync.ingest.identifier import IdentifierKind, ProductKey, resolve_identifier

logger = logging.getLogger(__name__)

# Anything before the first digit/sign/separator, e.g. "R$ " or "US$"
_CURRENCY_PREFIX = re.compile(r"^[^\d\-.,]+")

# Marker returned for rows that carry data but no usable identity
_DROPPED = object()


@dataclass
class LineItem:
    """One store's offer for one product, as read from the extract."""

    supplier_name: str
    raw_code: str
    raw_model: str
    price: float
    key: ProductKey

    @property
    def has_code(self) -> bool:
        return self.key.kind == IdentifierKind.CODE


@dataclass
class StoreExtract:
    """Items read for a single store."""

    name: str
    items: List[LineItem] = field(default_factory=list)

    @property
    def with_code(self) -> int:
        return sum(1 for item in self.items if item.has_code)

    @property
    def without_code(self) -> int:
        return len(self.items) - self.with_code

    def summary(self) -> dict:
        return {
            "store": self.name,
            "total_products": len(self.items),
            "with_code": self.with_code,
            "without_code": self.without_code,
        }


@dataclass
class ExtractResult:
    """Parsed extract: per-store items plus row accounting."""

    stores: List[StoreExtract] = field(default_factory=list)
    dropped_rows: int = 0

    @property
    def line_items(self) -> List[LineItem]:
        return [item for store in self.stores for item in store.items]

    def summary(self) -> dict:
        return {
            "stores": [store.summary() for store in self.stores],
            "total_products": sum(len(store.items) for store in self.stores),
            "with_code": sum(store.with_code for store in self.stores),
            "without_code": sum(store.without_code for store in self.stores),
            "dropped_rows": self.dropped_rows,
        }


def split_line(line: str, separator: str = ",") -> List[str]:
    """
    Split one extract line into trimmed fields.

    Double quotes toggle an "inside quotes" state in which the separator is
    literal. Quote characters are dropped, not unescaped, and malformed
    quoting never raises.
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == separator and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)

    fields.append("".join(current).strip())
    return fields


def extract_price(value: Optional[str]) -> float:
    """
    Parse a localized currency string into a non-negative number.

    "R$ 1.234,56" -> 1234.56. Dots are thousands separators and the comma
    is the decimal separator. Anything unparseable yields 0.
    """
    if value is None:
        return 0.0

    text = _CURRENCY_PREFIX.sub("", str(value).strip())
    text = text.replace(".", "").replace(",", ".").replace(" ", "")
    if not text:
        return 0.0

    try:
        price = float(text)
    except ValueError:
        return 0.0

    if math.isnan(price) or math.isinf(price) or price < 0:
        return 0.0
    return price


def decode_extract(data: bytes) -> str:
    """Decode uploaded bytes as UTF-8 (BOM tolerated), falling back to Latin-1."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("Extract is not valid UTF-8, decoding as latin-1")
        return data.decode("latin-1")


def _cell(fields: List[str], index: int) -> str:
    return fields[index] if index < len(fields) else ""


class ExtractParser:
    """
    Turns extract text into per-store line items.

    Store groups are discovered from the header row: a non-empty cell at a
    column that is a multiple of the group width opens a group.
    """

    def __init__(
        self,
        group_width: Optional[int] = None,
        header_rows: Optional[int] = None,
        separator: str = ",",
    ):
        self.group_width = group_width or settings.extract_group_width
        self.header_rows = header_rows if header_rows is not None else settings.extract_header_rows
        self.separator = separator

    def discover_stores(self, header: List[str]) -> List[tuple[str, int]]:
        """Return (store name, first column) for every store group in the header."""
        stores = []
        for column in range(0, len(header), self.group_width):
            name = header[column].strip()
            if name:
                stores.append((name, column))
        return stores

    def parse(self, text: str) -> ExtractResult:
        lines = [line for line in text.splitlines() if line.strip()]
        if not lines:
            logger.warning("Extract is empty")
            return ExtractResult()

        groups = self.discover_stores(split_line(lines[0], self.separator))
        if not groups:
            logger.warning("Extract header names no stores")
            return ExtractResult()

        stores = {name: StoreExtract(name=name) for name, _ in groups}
        result = ExtractResult()

        for line in lines[self.header_rows:]:
            fields = split_line(line, self.separator)
            for name, column in groups:
                item = self._read_group(name, fields, column)
                if item is None:
                    continue
                if item is _DROPPED:
                    result.dropped_rows += 1
                    continue
                stores[name].items.append(item)

        result.stores = [store for store in stores.values() if store.items]

        logger.info(
            f"Parsed extract: {len(result.stores)} stores, "
            f"{len(result.line_items)} items, {result.dropped_rows} dropped"
        )
        return result

    def _read_group(self, store: str, fields: List[str], column: int):
        code = _cell(fields, column)
        model = _cell(fields, column + 1)
        raw_price = _cell(fields, column + 2)

        if not code and not model and not raw_price:
            return None

        key = resolve_identifier(code, model)
        if key is None:
            logger.debug(f"Dropping row for {store}: no code or model (price={raw_price!r})")
            return _DROPPED

        return LineItem(
            supplier_name=store,
            raw_code=code,
            raw_model=model,
            price=extract_price(raw_price),
            key=key,
        )


def parse_extract(text: str, **kwargs) -> ExtractResult:
    """Parse extract text with default layout settings."""
    return ExtractParser(**kwargs).parse(text)

