"""Records of the three remote collections and the counters a run reports."""

from dataclasses import asdict, dataclass, field
from typing import Any, List, Optional

from pricesync.config import settings
from pricesync.ingest.identifier import IdentifierKind, ProductKey, is_usable_code


def _float(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def adjusted_price(raw_price: float, markup: float) -> float:
    """Raw price plus markup, or 0 when the raw price is not positive."""
    if raw_price > 0:
        return round(raw_price + markup, 2)
    return 0.0


def sort_price(raw_price: float, invalid_sort_price: Optional[float] = None) -> float:
    """Sort key that pushes quotes without a price to the end."""
    if raw_price > 0:
        return raw_price
    return invalid_sort_price if invalid_sort_price is not None else settings.invalid_sort_price


@dataclass
class Supplier:
    id: str
    name: str

    @classmethod
    def from_record(cls, record: dict) -> "Supplier":
        return cls(id=str(record["id"]), name=str(record.get("name") or "").strip())


@dataclass
class Product:
    """A product addressed by code or, lacking a usable code, by name."""

    id: str
    code: str = ""
    display_name: str = ""
    identifier_kind: IdentifierKind = IdentifierKind.NAME
    avg_price: float = 0.0
    min_price: float = 0.0
    supplier_count: int = 0
    cheapest_supplier_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: dict) -> "Product":
        code = str(record.get("code") or "").strip()
        kind = record.get("identifier_kind")
        if kind not in (IdentifierKind.CODE.value, IdentifierKind.NAME.value):
            kind = IdentifierKind.CODE.value if is_usable_code(code) else IdentifierKind.NAME.value
        return cls(
            id=str(record["id"]),
            code=code,
            display_name=str(record.get("display_name") or "").strip(),
            identifier_kind=IdentifierKind(kind),
            avg_price=_float(record.get("avg_price")),
            min_price=_float(record.get("min_price")),
            supplier_count=int(_float(record.get("supplier_count"))),
            cheapest_supplier_id=record.get("cheapest_supplier_id") or None,
        )

    @property
    def has_usable_code(self) -> bool:
        return is_usable_code(self.code)

    def keys(self) -> List[ProductKey]:
        """Every key this product answers to: its code (if usable) and its name."""
        keys = []
        if self.has_usable_code:
            keys.append(ProductKey.code(self.code))
        if self.display_name:
            keys.append(ProductKey.name(self.display_name))
        return keys

    def aggregates(self) -> dict:
        return {
            "avg_price": self.avg_price,
            "min_price": self.min_price,
            "supplier_count": self.supplier_count,
            "cheapest_supplier_id": self.cheapest_supplier_id,
        }


@dataclass
class Quote:
    """One supplier's price for one product."""

    id: str
    product_id: str
    supplier_id: str
    raw_price: float = 0.0
    adjusted_price: float = 0.0
    sort_price: float = 0.0
    is_best_price: bool = False

    @classmethod
    def from_record(cls, record: dict) -> "Quote":
        return cls(
            id=str(record["id"]),
            product_id=str(record.get("product_id") or ""),
            supplier_id=str(record.get("supplier_id") or ""),
            raw_price=_float(record.get("raw_price")),
            adjusted_price=_float(record.get("adjusted_price")),
            sort_price=_float(record.get("sort_price")),
            is_best_price=bool(record.get("is_best_price")),
        )

    @property
    def pair(self) -> tuple[str, str]:
        return (self.product_id, self.supplier_id)

    def price_fields(self) -> dict:
        return {
            "raw_price": self.raw_price,
            "adjusted_price": self.adjusted_price,
            "sort_price": self.sort_price,
        }


@dataclass
class SyncResult:
    """Counters reported by a reconciliation run."""

    suppliers_created: int = 0
    products_created: int = 0
    quotes_created: int = 0
    quotes_updated: int = 0
    quotes_unchanged: int = 0
    quotes_zeroed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AggregationResult:
    """Counters reported by an aggregation pass."""

    products_updated: int = 0
    products_reset: int = 0
    quotes_flagged: int = 0
    quotes_unflagged: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
