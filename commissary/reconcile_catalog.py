from __future__ import annotations

import argparse
import json
import logging

from commissary.config import settings
from commissary.db import SessionLocal
from commissary.errors import CommissaryError
from commissary.logging_config import setup_logging
from commissary.models import ItemKind
from commissary.services.location_service import get_location
from commissary.services.provider_factory import get_catalog_provider
from commissary.services.sync_service import build_reconciliation

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description='Compare the external catalog with one location and list duplicates.')
    parser.add_argument('--location', default=settings.default_location_code, help='Location code or name.')
    parser.add_argument(
        '--kind',
        choices=[kind.value for kind in ItemKind],
        default=ItemKind.RAW_MATERIAL.value,
    )
    parser.add_argument('--json', action='store_true', help='Print the full report as JSON.')
    args = parser.parse_args()

    setup_logging()
    try:
        with SessionLocal() as db:
            location = get_location(db, args.location)
            report, summary = build_reconciliation(
                db,
                location=location,
                provider=get_catalog_provider(),
                kind=ItemKind(args.kind),
            )
            payload = report.as_dict()
    except CommissaryError as exc:
        logger.error('Reconciliation failed: %s', exc)
        raise SystemExit(1) from exc

    if args.json:
        print(json.dumps(payload, indent=2, sort_keys=True))
        return

    counts = payload['counts']
    print(f'Fetched {summary.fetched} external items ({summary.skipped} skipped)')
    print(
        f"matched={counts['matched']}, local_only={counts['local_only']}, "
        f"external_only={counts['external_only']}, duplicates={counts['duplicates']}, "
        f"conflicts={counts['conflicts']}"
    )
    for entry in sorted(payload['local_only'], key=lambda row: row['code']):
        print(f"  local only: {entry['code']} {entry['name']}")
    for entry in sorted(payload['external_only'], key=lambda row: row['external_key'] or ''):
        print(f"  external only: {entry['external_key']} {entry['name']}")
    for cluster in payload['duplicates']:
        print(f"  duplicate {cluster['field']}={cluster['value']}: {', '.join(cluster['codes'])}")
    for conflict in payload['conflicts']:
        print(f"  conflict: {conflict['reason']}")


if __name__ == '__main__':
    main()
