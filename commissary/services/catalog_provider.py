from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol


@dataclass(frozen=True)
class ExternalItem:
    external_id: str
    sku: str | None
    name: str | None
    category: str | None = None
    unit: str | None = None
    status: str | None = None
    description: str | None = None
    rate: Decimal | None = None
    purchase_rate: Decimal | None = None
    stock_on_hand: Decimal | None = None
    vendor_id: str | None = None
    vendor_name: str | None = None


@dataclass
class FetchResult:
    items: list[ExternalItem] = field(default_factory=list)
    pages: int = 0
    skipped: int = 0
    skipped_reasons: list[str] = field(default_factory=list)


class CatalogProvider(Protocol):
    def fetch_all(self) -> FetchResult: ...
