from __future__ import annotations

import argparse
import logging

from commissary.config import settings
from commissary.db import SessionLocal
from commissary.errors import CommissaryError
from commissary.logging_config import setup_logging
from commissary.models import ItemKind
from commissary.services.location_service import get_location
from commissary.services.provider_factory import get_catalog_provider
from commissary.services.sync_service import SyncSummary, sync_catalog

logger = logging.getLogger(__name__)


def run_sync(*, location_code: str, kind: ItemKind, dry_run: bool) -> SyncSummary:
    provider = get_catalog_provider()
    with SessionLocal() as db:
        location = get_location(db, location_code)
        summary = sync_catalog(db, location=location, provider=provider, kind=kind, dry_run=dry_run, actor='sync-job')
        if dry_run:
            db.rollback()
        else:
            db.commit()
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(description='Sync the external item catalog into one location.')
    parser.add_argument('--location', default=settings.default_location_code, help='Location code or name.')
    parser.add_argument(
        '--kind',
        choices=[kind.value for kind in ItemKind],
        default=ItemKind.RAW_MATERIAL.value,
        help='Which item repository to sync into.',
    )
    parser.add_argument('--dry-run', action='store_true', help='Report what would change without writing.')
    args = parser.parse_args()

    setup_logging()
    try:
        summary = run_sync(location_code=args.location, kind=ItemKind(args.kind), dry_run=args.dry_run)
    except CommissaryError as exc:
        logger.error('Catalog sync failed: %s', exc)
        raise SystemExit(1) from exc

    print(
        f'Catalog sync complete{" (dry run)" if summary.dry_run else ""}: '
        f'created={summary.created}, updated={summary.updated}, skipped={summary.skipped}, '
        f'errors={summary.errors}, local_only={summary.local_only}'
    )
    for sample in summary.error_samples:
        print(f'  error: {sample}')
    for reason in summary.skipped_reasons:
        print(f'  skipped: {reason}')


if __name__ == '__main__':
    main()
