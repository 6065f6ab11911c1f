"""Product identity resolution.

A product is addressed by exactly one identifier kind: its code when the
code is usable, otherwise its trimmed name. The same resolver runs at
ingestion time and at reconciliation time so a row always maps to the
same key.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pricesync.config import settings


class IdentifierKind(str, Enum):
    """Which attribute a product key refers to."""

    CODE = "code"
    NAME = "name"


@dataclass(frozen=True)
class ProductKey:
    """Tagged product identifier, hashable for use in every index."""

    kind: IdentifierKind
    value: str

    @classmethod
    def code(cls, value: str) -> "ProductKey":
        return cls(IdentifierKind.CODE, value)

    @classmethod
    def name(cls, value: str) -> "ProductKey":
        return cls(IdentifierKind.NAME, value)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}"


def is_usable_code(code: Optional[str], sentinel: Optional[str] = None) -> bool:
    """True if the code is non-empty and not the "no code" sentinel."""
    if code is None:
        return False
    sentinel = (sentinel if sentinel is not None else settings.no_code_sentinel).upper()
    trimmed = str(code).strip()
    return trimmed != "" and trimmed.upper() != sentinel


def resolve_identifier(
    code: Optional[str],
    name: Optional[str],
    sentinel: Optional[str] = None,
) -> Optional[ProductKey]:
    """
    Decide the identity of a row.

    Args:
        code: Raw product code, possibly empty
        name: Raw model/name text, possibly empty
        sentinel: Override for the "no code" marker

    Returns:
        ProductKey, or None when neither code nor name is usable
    """
    if is_usable_code(code, sentinel):
        return ProductKey.code(str(code).strip())

    trimmed_name = (name or "").strip()
    if trimmed_name:
        return ProductKey.name(trimmed_name)

    return None
