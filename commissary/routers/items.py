from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from commissary.config import settings
from commissary.db import get_db
from commissary.dependencies import get_actor, get_provider, http_error
from commissary.errors import CommissaryError
from commissary.models import CatalogStatus, Item, ItemKind, StockStatus
from commissary.services.audit_service import log_audit
from commissary.services.import_service import import_rows
from commissary.services.item_repository import ItemFilter, ItemRepository
from commissary.services.location_service import get_location
from commissary.services.reconciliation_service import duplicate_as_dict, find_duplicates
from commissary.services.sync_service import build_reconciliation, sync_catalog

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/items', tags=['items'])


class ImportRequest(BaseModel):
    location: str | None = None
    kind: ItemKind = ItemKind.RAW_MATERIAL
    rows: list[dict[str, Any]]


class AdjustRequest(BaseModel):
    location: str | None = None
    kind: ItemKind = ItemKind.RAW_MATERIAL
    quantity: Decimal
    reason: str | None = Field(default=None, max_length=500)


def item_payload(item: Item) -> dict:
    return {
        'id': item.id,
        'location': item.location.code,
        'kind': item.kind.value,
        'code': item.code,
        'external_id': item.external_id,
        'name': item.name,
        'description': item.description,
        'category': item.category,
        'sub_category': item.sub_category,
        'unit_of_measure': item.unit_of_measure.value,
        'unit_price': str(item.unit_price),
        'cost_price': str(item.cost_price),
        'current_stock': str(item.current_stock),
        'minimum_stock': str(item.minimum_stock),
        'maximum_stock': str(item.maximum_stock),
        'reorder_point': str(item.reorder_point),
        'total_value': str(item.total_value),
        'catalog_status': item.catalog_status.value,
        'stock_status': item.stock_status.value,
        'is_active': item.is_active,
        'supplier_name': item.supplier_name,
        'dietary': {
            'vegan': item.is_vegan,
            'vegetarian': item.is_vegetarian,
            'gluten_free': item.is_gluten_free,
            'halal': item.is_halal,
            'kosher': item.is_kosher,
        },
        'allergens': item.allergens or [],
        'created_by': item.created_by,
        'updated_by': item.updated_by,
        'last_synced_at': item.last_synced_at.isoformat() if item.last_synced_at else None,
        'updated_at': item.updated_at.isoformat() if item.updated_at else None,
    }


def _repository(db: Session, location: str | None, kind: ItemKind, actor: str = 'api') -> ItemRepository:
    try:
        resolved = get_location(db, location or settings.default_location_code)
    except CommissaryError as exc:
        raise http_error(exc) from exc
    return ItemRepository(db, location=resolved, kind=kind, actor=actor)


@router.get('')
def list_items(
    location: str | None = None,
    kind: ItemKind = ItemKind.RAW_MATERIAL,
    search: str | None = None,
    category: str | None = None,
    sub_category: str | None = None,
    status: CatalogStatus | None = None,
    stock_status: StockStatus | None = None,
    dietary: str | None = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=200),
    sort_by: str = 'name',
    sort_order: str = Query('asc', pattern='^(asc|desc)$'),
    db: Session = Depends(get_db),
):
    repo = _repository(db, location, kind)
    item_filter = ItemFilter(
        search=search,
        category=category,
        sub_category=sub_category,
        catalog_status=status,
        stock_status=stock_status,
        is_active=None if include_inactive else True,
        dietary=dietary,
    )
    try:
        result = repo.page(item_filter, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)
    except CommissaryError as exc:
        raise http_error(exc) from exc
    return {
        'items': [item_payload(item) for item in result.items],
        'pagination': {
            'current_page': result.page,
            'total_pages': result.total_pages,
            'total_items': result.total_items,
            'items_per_page': result.limit,
            'has_next_page': result.has_next,
            'has_prev_page': result.has_prev,
        },
    }


@router.get('/low-stock')
def low_stock_items(
    location: str | None = None,
    kind: ItemKind = ItemKind.RAW_MATERIAL,
    db: Session = Depends(get_db),
):
    repo = _repository(db, location, kind)
    items = repo.find_low_stock()
    return {'items': [item_payload(item) for item in items], 'count': len(items)}


@router.get('/categories')
def item_categories(
    location: str | None = None,
    kind: ItemKind = ItemKind.RAW_MATERIAL,
    db: Session = Depends(get_db),
):
    return {'categories': _repository(db, location, kind).categories()}


@router.get('/statistics')
def item_statistics(
    location: str | None = None,
    kind: ItemKind = ItemKind.RAW_MATERIAL,
    db: Session = Depends(get_db),
):
    return _repository(db, location, kind).statistics()


@router.post('/sync')
def sync_items(
    location: str | None = None,
    kind: ItemKind = ItemKind.RAW_MATERIAL,
    dry_run: bool = False,
    db: Session = Depends(get_db),
    provider=Depends(get_provider),
    actor: str = Depends(get_actor),
):
    repo = _repository(db, location, kind, actor)
    try:
        summary = sync_catalog(db, location=repo.location, provider=provider, kind=kind, dry_run=dry_run, actor=actor)
    except CommissaryError as exc:
        db.rollback()
        logger.error('Catalog sync for %s failed: %s', repo.location.code, exc)
        raise http_error(exc) from exc
    if dry_run:
        db.rollback()
    else:
        db.commit()
    return {'success': True, 'summary': summary.as_dict()}


@router.get('/reconciliation')
def reconciliation_report(
    location: str | None = None,
    kind: ItemKind = ItemKind.RAW_MATERIAL,
    db: Session = Depends(get_db),
    provider=Depends(get_provider),
):
    repo = _repository(db, location, kind)
    try:
        report, summary = build_reconciliation(db, location=repo.location, provider=provider, kind=kind)
    except CommissaryError as exc:
        logger.error('Reconciliation for %s failed: %s', repo.location.code, exc)
        raise http_error(exc) from exc
    return {
        'location': repo.location.code,
        'fetched': summary.fetched,
        'skipped': summary.skipped,
        'skipped_reasons': summary.skipped_reasons,
        **report.as_dict(),
    }


@router.get('/duplicates')
def duplicate_items(
    location: str | None = None,
    kind: ItemKind = ItemKind.RAW_MATERIAL,
    db: Session = Depends(get_db),
):
    repo = _repository(db, location, kind)
    clusters = find_duplicates(repo.all_items())
    return {'duplicates': [duplicate_as_dict(cluster) for cluster in clusters], 'count': len(clusters)}


@router.post('/import')
def import_items(
    payload: ImportRequest,
    db: Session = Depends(get_db),
):
    repo = _repository(db, payload.location, payload.kind, 'excel-import')
    summary = import_rows(repo, payload.rows)
    db.commit()
    return {'success': True, 'summary': summary.as_dict()}


@router.get('/{code}')
def get_item(
    code: str,
    location: str | None = None,
    kind: ItemKind = ItemKind.RAW_MATERIAL,
    db: Session = Depends(get_db),
):
    repo = _repository(db, location, kind)
    try:
        return item_payload(repo.find_by_code(code))
    except CommissaryError as exc:
        raise http_error(exc) from exc


@router.post('/{code}/adjust')
def adjust_item_stock(
    code: str,
    payload: AdjustRequest,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    repo = _repository(db, payload.location, payload.kind, actor)
    try:
        item = repo.adjust_stock(code, payload.quantity, reason=payload.reason)
    except CommissaryError as exc:
        db.rollback()
        raise http_error(exc) from exc
    log_audit(
        db,
        actor=actor,
        action='STOCK_ADJUSTED',
        location_id=repo.location.id,
        metadata={'item_code': code, 'quantity': str(payload.quantity), 'reason': payload.reason},
    )
    db.commit()
    return item_payload(item)


@router.delete('/{code}')
def delete_item(
    code: str,
    location: str | None = None,
    kind: ItemKind = ItemKind.RAW_MATERIAL,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    repo = _repository(db, location, kind, actor)
    try:
        item = repo.deactivate(code)
    except CommissaryError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(db, actor=actor, action='ITEM_DEACTIVATED', location_id=repo.location.id, metadata={'item_code': code})
    db.commit()
    return item_payload(item)
