from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from commissary.config import settings
from commissary.errors import CommissaryError, ValidationError
from commissary.services.audit_service import log_audit
from commissary.services.catalog_mapping import (
    DEFAULT_CATEGORY,
    DEFAULT_MAXIMUM_STOCK,
    DEFAULT_MINIMUM_STOCK,
    DEFAULT_REORDER_POINT,
    normalize_unit,
)
from commissary.services.item_repository import ItemRepository, to_decimal

logger = logging.getLogger(__name__)

# Row 1 of an import sheet is the header.
FIRST_DATA_ROW = 2


@dataclass
class ImportSummary:
    total_rows: int = 0
    total_processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    skipped_reasons: list[str] = field(default_factory=list)
    error_details: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def _text(row: dict, *keys: str) -> str:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ''


def _row_fields(row: dict, label: str) -> tuple[str, dict]:
    sku = _text(row, 'sku', 'code')
    if not sku:
        raise ValidationError(f'{label}: Empty SKU')
    name = _text(row, 'item_name', 'name')
    if not name:
        raise ValidationError(f'{label}: Missing item name for {sku}')

    unit, _ = normalize_unit(_text(row, 'unit', 'unit_of_measure'))
    fields = {
        'name': name,
        'category': _text(row, 'category') or DEFAULT_CATEGORY,
        'unit_of_measure': unit,
    }
    sub_category = _text(row, 'sub_category')
    if sub_category:
        fields['sub_category'] = sub_category
    price = _text(row, 'unit_price', 'price')
    if price:
        fields['unit_price'] = to_decimal(price, field=f'{label} unit_price')
    quantity = _text(row, 'quantity', 'current_stock')
    if quantity:
        fields['current_stock'] = to_decimal(quantity, field=f'{label} quantity')
    return sku, fields


def import_rows(repo: ItemRepository, rows: list[dict]) -> ImportSummary:
    """Validates and upserts already-parsed import rows one by one.

    Rows without a SKU or name, or with unparseable numbers, are skipped with
    a reason. A row whose write fails is rolled back on its own and counted
    as an error; the rest of the batch still lands.
    """
    summary = ImportSummary(total_rows=len(rows))
    limit = settings.error_sample_limit

    for index, row in enumerate(rows):
        label = f'Row {index + FIRST_DATA_ROW}'
        try:
            sku, fields = _row_fields(row, label)
        except ValidationError as exc:
            summary.skipped += 1
            if len(summary.skipped_reasons) < limit:
                summary.skipped_reasons.append(str(exc))
            continue

        try:
            with repo.db.begin_nested():
                if repo.get_by_code(sku) is None:
                    fields = {
                        'minimum_stock': DEFAULT_MINIMUM_STOCK,
                        'maximum_stock': DEFAULT_MAXIMUM_STOCK,
                        'reorder_point': DEFAULT_REORDER_POINT,
                        **fields,
                    }
                _, created = repo.upsert_by_code(sku, fields)
        except (CommissaryError, SQLAlchemyError) as exc:
            summary.errors += 1
            if len(summary.error_details) < limit:
                summary.error_details.append(f'{label} ({sku}): {exc}')
            logger.warning('Import of %s failed: %s', sku, exc)
            continue

        summary.total_processed += 1
        if created:
            summary.created += 1
        else:
            summary.updated += 1

    log_audit(
        repo.db,
        actor=repo.actor,
        action='ITEM_IMPORT',
        location_id=repo.location.id,
        metadata={
            'total_rows': summary.total_rows,
            'created': summary.created,
            'updated': summary.updated,
            'skipped': summary.skipped,
            'errors': summary.errors,
        },
    )
    repo.db.flush()
    logger.info(
        'Imported %s rows into %s: created=%s updated=%s skipped=%s errors=%s',
        summary.total_rows,
        repo.location.code,
        summary.created,
        summary.updated,
        summary.skipped,
        summary.errors,
    )
    return summary
