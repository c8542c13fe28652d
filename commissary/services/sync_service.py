from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from commissary.config import settings
from commissary.errors import CommissaryError, ValidationError
from commissary.models import ItemKind, Location
from commissary.services.audit_service import log_audit
from commissary.services.catalog_mapping import MappedItem, map_external_item
from commissary.services.catalog_provider import CatalogProvider
from commissary.services.item_repository import ItemRepository
from commissary.services.reconciliation_service import ReconciliationReport, reconcile

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class SyncSummary:
    fetched: int = 0
    pages: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    local_only: int = 0
    duplicates: int = 0
    conflicts: int = 0
    codes_synthesized: int = 0
    units_defaulted: int = 0
    dry_run: bool = False
    skipped_reasons: list[str] = field(default_factory=list)
    error_samples: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def _sample(samples: list[str], message: str) -> None:
    if len(samples) < settings.error_sample_limit:
        samples.append(message)


def map_fetched_items(external_items, summary: SyncSummary) -> list[MappedItem]:
    mapped: list[MappedItem] = []
    for external in external_items:
        try:
            item = map_external_item(external)
        except ValidationError as exc:
            summary.skipped += 1
            _sample(summary.skipped_reasons, str(exc))
            logger.debug('Skipping external item: %s', exc)
            continue
        if item.code_synthesized:
            summary.codes_synthesized += 1
        if item.unit_defaulted:
            summary.units_defaulted += 1
        mapped.append(item)
    return mapped


def _record_conflicts(report: ReconciliationReport, summary: SyncSummary, location: Location) -> None:
    summary.conflicts = len(report.conflicts)
    for conflict in report.conflicts:
        summary.errors += 1
        _sample(summary.error_samples, conflict.reason)
        logger.warning('Not syncing %s into %s: %s', conflict.external.code, location.code, conflict.reason)


def _write_external_only(repo: ItemRepository, mapped: MappedItem, fields: dict) -> bool:
    """Returns True when a row was created."""
    if mapped.external_id:
        existing = repo.find_by_external_id(mapped.external_id)
        if existing is not None:
            repo.update(existing.code, fields)
            return False
    if mapped.code_synthesized:
        # An invented code must never land on somebody else's row.
        repo.insert(mapped.code, fields)
        return True
    _, created = repo.upsert_by_code(mapped.code, fields)
    return created


def sync_catalog(
    db: Session,
    *,
    location: Location,
    provider: CatalogProvider,
    kind: ItemKind = ItemKind.RAW_MATERIAL,
    dry_run: bool = False,
    actor: str = 'sync-job',
) -> SyncSummary:
    """Pulls the external catalog and upserts it into one location's items.

    Upstream failures propagate before anything is written. Per-item problems
    are counted as skipped (unmappable) or errors (write failed, or the item
    conflicts with another external item over one local row) and never
    abort the batch. Local items missing upstream are reported, not deleted.
    The caller owns the transaction.
    """
    fetched = provider.fetch_all()
    summary = SyncSummary(
        fetched=len(fetched.items) + fetched.skipped,
        pages=fetched.pages,
        skipped=fetched.skipped,
        dry_run=dry_run,
    )
    for reason in fetched.skipped_reasons:
        _sample(summary.skipped_reasons, reason)

    mapped_items = map_fetched_items(fetched.items, summary)
    repo = ItemRepository(db, location=location, kind=kind, actor=actor)
    report: ReconciliationReport = reconcile(mapped_items, repo.all_items())
    summary.local_only = len(report.local_only)
    summary.duplicates = len(report.duplicates)
    _record_conflicts(report, summary, location)

    if dry_run:
        summary.updated = len(report.matched)
        summary.created = len(report.external_only)
        logger.info('Dry run sync for %s: %s', location.code, report.counts())
        return summary

    synced_at = _now()
    for match in report.matched:
        fields = {**match.external.fields, 'last_synced_at': synced_at}
        try:
            with db.begin_nested():
                repo.update(match.local.code, fields)
        except (CommissaryError, SQLAlchemyError) as exc:
            summary.errors += 1
            _sample(summary.error_samples, f'{match.local.code}: {exc}')
            logger.warning('Failed to update %s at %s: %s', match.local.code, location.code, exc)
            continue
        summary.updated += 1

    for mapped in report.external_only:
        fields = {**mapped.fields, 'last_synced_at': synced_at}
        try:
            with db.begin_nested():
                created = _write_external_only(repo, mapped, fields)
        except (CommissaryError, SQLAlchemyError) as exc:
            summary.errors += 1
            _sample(summary.error_samples, f'{mapped.code}: {exc}')
            logger.warning('Failed to create %s at %s: %s', mapped.code, location.code, exc)
            continue
        if created:
            summary.created += 1
        else:
            summary.updated += 1

    log_audit(
        db,
        actor=actor,
        action='CATALOG_SYNC',
        location_id=location.id,
        metadata={
            'kind': kind.value,
            'created': summary.created,
            'updated': summary.updated,
            'skipped': summary.skipped,
            'errors': summary.errors,
            'local_only': summary.local_only,
            'conflicts': summary.conflicts,
        },
    )
    db.flush()
    logger.info(
        'Synced %s items into %s: created=%s updated=%s skipped=%s errors=%s',
        summary.fetched,
        location.code,
        summary.created,
        summary.updated,
        summary.skipped,
        summary.errors,
    )
    return summary


def build_reconciliation(
    db: Session,
    *,
    location: Location,
    provider: CatalogProvider,
    kind: ItemKind = ItemKind.RAW_MATERIAL,
) -> tuple[ReconciliationReport, SyncSummary]:
    """Fetches and maps the external catalog, then diffs it without writing."""
    fetched = provider.fetch_all()
    summary = SyncSummary(fetched=len(fetched.items) + fetched.skipped, pages=fetched.pages, skipped=fetched.skipped, dry_run=True)
    for reason in fetched.skipped_reasons:
        _sample(summary.skipped_reasons, reason)
    mapped_items = map_fetched_items(fetched.items, summary)
    repo = ItemRepository(db, location=location, kind=kind)
    report = reconcile(mapped_items, repo.all_items())
    summary.local_only = len(report.local_only)
    summary.duplicates = len(report.duplicates)
    summary.conflicts = len(report.conflicts)
    return report, summary
