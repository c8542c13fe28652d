from __future__ import annotations

from decimal import Decimal

from commissary.services.catalog_provider import ExternalItem, FetchResult


class MockCatalogProvider:
    def __init__(self) -> None:
        self.catalog_by_category = {
            'Produce': [
                ('ZI-1001', 'RM-TOM-001', 'Roma Tomatoes', 'kgs', '0.850', '42'),
                ('ZI-1002', 'RM-ONI-002', 'Red Onions', 'Kilogram', '0.600', '18'),
                ('ZI-1003', 'RM-BAS-003', 'Fresh Basil', 'grams', '0.015', '900'),
            ],
            'Dairy': [
                ('ZI-2001', 'RM-MOZ-001', 'Mozzarella Block', 'kg', '3.250', '25'),
                ('ZI-2002', 'RM-CRM-002', 'Cooking Cream', 'Litres', '1.900', '0'),
            ],
            'Dry Store': [
                ('ZI-3001', 'RM-FLR-001', 'Tipo 00 Flour', 'kg', '0.450', '1200'),
                ('ZI-3002', '', 'Sea Salt Flakes', 'jar', '2.100', '12'),
            ],
            'Packaging': [
                ('ZI-4001', 'PK-BOX-001', 'Kraft Salad Box', 'pcs', '0.080', '2500'),
                ('ZI-4002', 'PK-CUP-002', 'Soup Cup 12oz', 'packs', '4.500', '15'),
            ],
        }

    def fetch_all(self) -> FetchResult:
        items: list[ExternalItem] = []
        for category in sorted(self.catalog_by_category.keys()):
            for item_id, sku, name, unit, rate, stock in self.catalog_by_category[category]:
                items.append(
                    ExternalItem(
                        external_id=item_id,
                        sku=sku or None,
                        name=name,
                        category=category,
                        unit=unit,
                        status='active',
                        rate=Decimal(rate),
                        purchase_rate=Decimal(rate),
                        stock_on_hand=Decimal(stock),
                    )
                )
        return FetchResult(items=items, pages=1)
