from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from math import ceil

from sqlalchemy import Select, delete, func, or_, select, update
from sqlalchemy.orm import Session

from commissary.errors import DuplicateKeyError, InsufficientStockError, NotFoundError, ValidationError
from commissary.models import (
    ALLERGENS,
    FINISHED_GOOD_SUB_CATEGORIES,
    CatalogStatus,
    Item,
    ItemKind,
    Location,
    StockStatus,
    UnitOfMeasure,
)
from commissary.services.stock_status import refresh_derived_fields

logger = logging.getLogger(__name__)

DECIMAL_FIELDS = (
    'unit_price',
    'cost_price',
    'current_stock',
    'minimum_stock',
    'maximum_stock',
    'reorder_point',
)
TEXT_FIELDS = (
    'external_id',
    'name',
    'description',
    'category',
    'sub_category',
    'supplier_id',
    'supplier_name',
)
FLAG_FIELDS = (
    'is_active',
    'is_vegan',
    'is_vegetarian',
    'is_gluten_free',
    'is_halal',
    'is_kosher',
)
WRITABLE_FIELDS = frozenset(
    DECIMAL_FIELDS
    + TEXT_FIELDS
    + FLAG_FIELDS
    + ('unit_of_measure', 'catalog_status', 'allergens', 'last_synced_at')
)
# Never taken from caller input, even on create.
PROTECTED_FIELDS = frozenset({'id', 'code', 'kind', 'location_id', 'created_by', 'created_at', 'updated_at', 'updated_by'})

DIETARY_COLUMNS = {
    'vegan': Item.is_vegan,
    'vegetarian': Item.is_vegetarian,
    'gluten-free': Item.is_gluten_free,
    'halal': Item.is_halal,
    'kosher': Item.is_kosher,
}

SORT_COLUMNS = {
    'name': Item.name,
    'code': Item.code,
    'category': Item.category,
    'current_stock': Item.current_stock,
    'unit_price': Item.unit_price,
    'total_value': Item.total_value,
    'updated_at': Item.updated_at,
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_decimal(value, *, field: str) -> Decimal:
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f'Invalid {field}: {value!r}') from exc
    if not parsed.is_finite():
        raise ValidationError(f'Invalid {field}: {value!r}')
    if parsed < 0:
        raise ValidationError(f'{field} cannot be negative')
    return parsed


@dataclass(frozen=True)
class ItemFilter:
    search: str | None = None
    category: str | None = None
    sub_category: str | None = None
    catalog_status: CatalogStatus | None = None
    stock_status: StockStatus | None = None
    is_active: bool | None = True
    dietary: str | None = None


@dataclass(frozen=True)
class ItemPage:
    items: list[Item]
    page: int
    limit: int
    total_items: int

    @property
    def total_pages(self) -> int:
        return ceil(self.total_items / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


class ItemRepository:
    """Items of one kind held at one location.

    Every write stamps ``updated_at``/``updated_by`` and re-derives the stock
    status and total value. Stock counters are only moved through conditional
    UPDATE statements so concurrent writers cannot drive stock negative.
    """

    def __init__(
        self,
        db: Session,
        *,
        location: Location,
        kind: ItemKind = ItemKind.RAW_MATERIAL,
        actor: str = 'system',
    ) -> None:
        self.db = db
        self.location = location
        self.kind = kind
        self.actor = actor

    def _base(self) -> Select:
        return select(Item).where(Item.location_id == self.location.id, Item.kind == self.kind)

    def _clean_fields(self, fields: dict) -> dict:
        cleaned: dict = {}
        for key, value in fields.items():
            if key in PROTECTED_FIELDS:
                continue
            if key not in WRITABLE_FIELDS:
                raise ValidationError(f'Unknown item field: {key}')
            if key in DECIMAL_FIELDS:
                cleaned[key] = to_decimal(value, field=key)
            elif key in TEXT_FIELDS:
                cleaned[key] = value.strip() if isinstance(value, str) else value
            elif key in FLAG_FIELDS:
                cleaned[key] = bool(value)
            elif key == 'unit_of_measure':
                if isinstance(value, UnitOfMeasure):
                    cleaned[key] = value
                    continue
                try:
                    cleaned[key] = UnitOfMeasure(str(value).strip().lower())
                except ValueError as exc:
                    raise ValidationError(f'Unknown unit of measure: {value!r}') from exc
            elif key == 'catalog_status':
                try:
                    cleaned[key] = CatalogStatus(value)
                except ValueError as exc:
                    raise ValidationError(f'Unknown catalog status: {value!r}') from exc
            elif key == 'allergens':
                unknown = [a for a in value or [] if a not in ALLERGENS]
                if unknown:
                    raise ValidationError(f'Unknown allergens: {", ".join(unknown)}')
                cleaned[key] = list(value or [])
            else:
                cleaned[key] = value

        if 'name' in cleaned and not cleaned['name']:
            raise ValidationError('Item name is required')
        if (
            self.kind == ItemKind.FINISHED_GOOD
            and cleaned.get('sub_category')
            and cleaned['sub_category'] not in FINISHED_GOOD_SUB_CATEGORIES
        ):
            raise ValidationError(f"Unknown finished good sub-category: {cleaned['sub_category']}")
        return cleaned

    def _stamp(self, item: Item) -> None:
        item.updated_by = self.actor
        item.updated_at = _now()
        refresh_derived_fields(item)

    def get_by_code(self, code: str) -> Item | None:
        return self.db.execute(self._base().where(Item.code == code)).scalar_one_or_none()

    def find_by_code(self, code: str) -> Item:
        item = self.get_by_code(code)
        if item is None:
            raise NotFoundError(f'Item {code} not found at {self.location.name}')
        return item

    def find_by_external_id(self, external_id: str) -> Item | None:
        return self.db.execute(
            self._base().where(Item.external_id == external_id).order_by(Item.id.asc())
        ).scalars().first()

    def all_items(self) -> list[Item]:
        return self.db.execute(self._base().order_by(Item.id.asc())).scalars().all()

    def _create(self, code: str, fields: dict) -> Item:
        code = (code or '').strip()
        if not code:
            raise ValidationError('Item code is required')
        if not fields.get('name'):
            raise ValidationError('Item name is required')
        item = Item(
            location_id=self.location.id,
            kind=self.kind,
            code=code,
            created_by=self.actor,
            **{'allergens': [], **fields},
        )
        self._stamp(item)
        self.db.add(item)
        self.db.flush()
        return item

    def insert(self, code: str, fields: dict) -> Item:
        if self.get_by_code(code.strip()) is not None:
            raise DuplicateKeyError(f'Item code {code} already exists at {self.location.name}')
        return self._create(code, self._clean_fields(fields))

    def upsert_by_code(self, code: str, fields: dict) -> tuple[Item, bool]:
        cleaned = self._clean_fields(fields)
        item = self.get_by_code((code or '').strip())
        if item is None:
            return self._create(code, cleaned), True

        for key, value in cleaned.items():
            setattr(item, key, value)
        self._stamp(item)
        self.db.flush()
        return item, False

    def update(self, code: str, fields: dict) -> Item:
        item = self.find_by_code(code)
        for key, value in self._clean_fields(fields).items():
            setattr(item, key, value)
        self._stamp(item)
        self.db.flush()
        return item

    def deactivate(self, code: str) -> Item:
        item = self.find_by_code(code)
        item.is_active = False
        self._stamp(item)
        self.db.flush()
        return item

    def clear(self) -> int:
        result = self.db.execute(
            delete(Item)
            .where(Item.location_id == self.location.id, Item.kind == self.kind)
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()
        logger.warning('Cleared %s %s items at %s', result.rowcount, self.kind.value, self.location.code)
        return result.rowcount

    def _filtered(self, item_filter: ItemFilter) -> Select:
        stmt = self._base()
        if item_filter.is_active is not None:
            stmt = stmt.where(Item.is_active.is_(item_filter.is_active))
        if item_filter.search:
            term = item_filter.search.strip().lower()
            stmt = stmt.where(
                or_(
                    func.lower(Item.name).contains(term, autoescape=True),
                    func.lower(Item.code).contains(term, autoescape=True),
                    func.lower(Item.description).contains(term, autoescape=True),
                )
            )
        if item_filter.category:
            stmt = stmt.where(Item.category == item_filter.category)
        if item_filter.sub_category:
            stmt = stmt.where(Item.sub_category == item_filter.sub_category)
        if item_filter.catalog_status:
            stmt = stmt.where(Item.catalog_status == item_filter.catalog_status)
        if item_filter.stock_status:
            stmt = stmt.where(Item.stock_status == item_filter.stock_status)
        if item_filter.dietary:
            column = DIETARY_COLUMNS.get(item_filter.dietary.strip().lower())
            if column is None:
                raise ValidationError(f'Unknown dietary restriction: {item_filter.dietary}')
            stmt = stmt.where(column.is_(True))
        return stmt

    def query(self, item_filter: ItemFilter | None = None) -> Iterator[Item]:
        stmt = self._filtered(item_filter or ItemFilter()).order_by(Item.id.asc())
        yield from self.db.execute(stmt.execution_options(yield_per=200)).scalars()

    def page(
        self,
        item_filter: ItemFilter | None = None,
        *,
        page: int = 1,
        limit: int = 10,
        sort_by: str = 'name',
        sort_order: str = 'asc',
    ) -> ItemPage:
        if page < 1 or limit < 1:
            raise ValidationError('page and limit must be positive')
        column = SORT_COLUMNS.get(sort_by)
        if column is None:
            raise ValidationError(f'Cannot sort by {sort_by}')

        stmt = self._filtered(item_filter or ItemFilter())
        total = self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        ordering = column.desc() if sort_order == 'desc' else column.asc()
        rows = self.db.execute(
            stmt.order_by(ordering, Item.id.asc()).offset((page - 1) * limit).limit(limit)
        ).scalars().all()
        return ItemPage(items=rows, page=page, limit=limit, total_items=total)

    def find_low_stock(self) -> list[Item]:
        return self.db.execute(
            self._base()
            .where(Item.is_active.is_(True), Item.current_stock <= Item.reorder_point)
            .order_by(Item.current_stock.asc(), Item.code.asc())
        ).scalars().all()

    def categories(self) -> list[str]:
        return self.db.execute(
            select(Item.category)
            .where(Item.location_id == self.location.id, Item.kind == self.kind, Item.is_active.is_(True))
            .distinct()
            .order_by(Item.category.asc())
        ).scalars().all()

    def statistics(self) -> dict:
        scope = (Item.location_id == self.location.id, Item.kind == self.kind)
        total = self.db.execute(select(func.count(Item.id)).where(*scope)).scalar_one()
        active = self.db.execute(select(func.count(Item.id)).where(*scope, Item.is_active.is_(True))).scalar_one()
        low = self.db.execute(
            select(func.count(Item.id)).where(
                *scope,
                Item.is_active.is_(True),
                Item.current_stock <= Item.reorder_point,
            )
        ).scalar_one()
        return {'total_items': total, 'active_items': active, 'low_stock_items': low}

    def _after_stock_move(self, item: Item) -> Item:
        self.db.refresh(item)
        self._stamp(item)
        self.db.flush()
        return item

    def try_decrement(self, code: str, quantity: Decimal) -> bool:
        item = self.find_by_code(code)
        self.db.flush()
        result = self.db.execute(
            update(Item)
            .where(Item.id == item.id, Item.current_stock >= quantity)
            .values(current_stock=Item.current_stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False
        self._after_stock_move(item)
        return True

    def increment(self, code: str, quantity: Decimal) -> Item:
        item = self.find_by_code(code)
        self.db.flush()
        self.db.execute(
            update(Item)
            .where(Item.id == item.id)
            .values(current_stock=Item.current_stock + quantity)
            .execution_options(synchronize_session=False)
        )
        return self._after_stock_move(item)

    def adjust_stock(self, code: str, delta: Decimal, *, reason: str | None = None) -> Item:
        delta = Decimal(delta)
        if delta == 0:
            raise ValidationError('Adjustment quantity cannot be zero')
        if delta > 0:
            item = self.increment(code, delta)
        else:
            if not self.try_decrement(code, -delta):
                item = self.find_by_code(code)
                raise InsufficientStockError(code, item.current_stock, -delta)
            item = self.find_by_code(code)
        logger.info(
            'Adjusted %s at %s by %s (%s), now %s',
            code,
            self.location.code,
            delta,
            reason or 'no reason given',
            item.current_stock,
        )
        return item
