from __future__ import annotations

from decimal import Decimal

from commissary.models import Item, StockStatus


def derive_stock_status(current_stock: Decimal, reorder_point: Decimal, maximum_stock: Decimal) -> StockStatus:
    # First matching rule wins.
    if current_stock <= 0:
        return StockStatus.OUT_OF_STOCK
    if current_stock <= reorder_point:
        return StockStatus.LOW_STOCK
    if current_stock >= maximum_stock:
        return StockStatus.OVERSTOCK
    return StockStatus.IN_STOCK


def compute_total_value(current_stock: Decimal, unit_price: Decimal) -> Decimal:
    return Decimal(current_stock) * Decimal(unit_price)


def refresh_derived_fields(item: Item) -> None:
    item.stock_status = derive_stock_status(
        Decimal(item.current_stock or 0),
        Decimal(item.reorder_point or 0),
        Decimal(item.maximum_stock or 0),
    )
    item.total_value = compute_total_value(item.current_stock or 0, item.unit_price or 0)
