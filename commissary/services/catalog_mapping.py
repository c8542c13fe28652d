from __future__ import annotations

import random
import re
import string
from dataclasses import dataclass
from decimal import Decimal

from commissary.config import settings
from commissary.errors import ValidationError
from commissary.models import CatalogStatus, UnitOfMeasure
from commissary.services.catalog_provider import ExternalItem

DEFAULT_CATEGORY = 'General'
DEFAULT_MINIMUM_STOCK = Decimal('10')
DEFAULT_MAXIMUM_STOCK = Decimal('1000')
DEFAULT_REORDER_POINT = Decimal('20')

UNIT_SYNONYMS = {
    'kg': UnitOfMeasure.KG,
    'kgs': UnitOfMeasure.KG,
    'kilogram': UnitOfMeasure.KG,
    'kilograms': UnitOfMeasure.KG,
    'ltr': UnitOfMeasure.LTR,
    'liter': UnitOfMeasure.LTR,
    'liters': UnitOfMeasure.LTR,
    'litre': UnitOfMeasure.LTR,
    'litres': UnitOfMeasure.LTR,
    'g': UnitOfMeasure.G,
    'gram': UnitOfMeasure.G,
    'grams': UnitOfMeasure.G,
    'ml': UnitOfMeasure.ML,
    'milliliter': UnitOfMeasure.ML,
    'milliliters': UnitOfMeasure.ML,
    'millilitre': UnitOfMeasure.ML,
    'millilitres': UnitOfMeasure.ML,
    'piece': UnitOfMeasure.PIECE,
    'pieces': UnitOfMeasure.PIECE,
    'pcs': UnitOfMeasure.PIECE,
    'pc': UnitOfMeasure.PIECE,
    'unit': UnitOfMeasure.PIECE,
    'units': UnitOfMeasure.PIECE,
    'box': UnitOfMeasure.BOX,
    'boxes': UnitOfMeasure.BOX,
    'pack': UnitOfMeasure.PACK,
    'packs': UnitOfMeasure.PACK,
    'package': UnitOfMeasure.PACK,
    'packages': UnitOfMeasure.PACK,
    'serving': UnitOfMeasure.SERVING,
    'servings': UnitOfMeasure.SERVING,
}

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class MappedItem:
    code: str
    external_id: str | None
    fields: dict
    code_synthesized: bool = False
    unit_defaulted: bool = False


def normalize_unit(value: str | None) -> tuple[UnitOfMeasure, bool]:
    """Returns the canonical unit and whether the default had to be used."""
    unit = UNIT_SYNONYMS.get((value or '').strip().lower())
    if unit is not None:
        return unit, False
    return UnitOfMeasure(settings.default_unit), True


def synthesize_code(category: str, name: str, *, rng: random.Random | None = None) -> str:
    rng = rng or random
    category_part = re.sub(r'[^A-Z0-9]', '', category.upper())[:3] or 'GEN'
    name_part = re.sub(r'[^A-Z0-9]', '', name.upper())[:3] or 'ITM'
    suffix = ''.join(rng.choice(_SUFFIX_ALPHABET) for _ in range(4))
    return f'{category_part}-{name_part}-{suffix}'


def _amount(value: Decimal | None, *, field: str, label: str) -> Decimal | None:
    if value is not None and not value.is_finite():
        raise ValidationError(f'External item {label} has an invalid {field}: {value}')
    return value


def map_catalog_status(value: str | None) -> CatalogStatus:
    return CatalogStatus.ACTIVE if (value or '').strip().lower() == 'active' else CatalogStatus.INACTIVE


def map_external_item(external: ExternalItem, *, rng: random.Random | None = None) -> MappedItem:
    name = (external.name or '').strip()
    if not name:
        raise ValidationError(f'External item {external.external_id or external.sku or "<unknown>"} has no name')

    label = external.external_id or external.sku or name
    rate = _amount(external.rate, field='rate', label=label)
    purchase_rate = _amount(external.purchase_rate, field='purchase_rate', label=label)
    stock = _amount(external.stock_on_hand, field='stock_on_hand', label=label)

    category = (external.category or '').strip() or DEFAULT_CATEGORY
    sku = (external.sku or '').strip()
    code = sku or synthesize_code(category, name, rng=rng)
    unit, unit_defaulted = normalize_unit(external.unit)

    price = rate if rate is not None else purchase_rate
    fields = {
        'external_id': external.external_id or None,
        'name': name,
        'description': external.description or '',
        'category': category,
        'unit_of_measure': unit,
        'unit_price': price if price is not None else Decimal('0'),
        'cost_price': purchase_rate if purchase_rate is not None else Decimal('0'),
        'current_stock': max(stock or Decimal('0'), Decimal('0')),
        'minimum_stock': DEFAULT_MINIMUM_STOCK,
        'maximum_stock': DEFAULT_MAXIMUM_STOCK,
        'reorder_point': DEFAULT_REORDER_POINT,
        'catalog_status': map_catalog_status(external.status),
        'supplier_id': external.vendor_id,
        'supplier_name': external.vendor_name,
    }
    return MappedItem(
        code=code,
        external_id=external.external_id or None,
        fields=fields,
        code_synthesized=not sku,
        unit_defaulted=unit_defaulted,
    )
