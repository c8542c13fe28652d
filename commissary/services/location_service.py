from __future__ import annotations

import re

from sqlalchemy import select
from sqlalchemy.orm import Session

from commissary.errors import NotFoundError
from commissary.models import Location

# Spellings the outlets have been referred to by in transfer requests.
LOCATION_ALIASES = {
    'central-kitchen': 'central-kitchen',
    'kuwait-city': 'kuwait-city',
    '360-mall': '360-mall',
    'vibe-complex': 'vibe-complex',
    'vibes-complex': 'vibe-complex',
    'taiba-hospital': 'taiba-hospital',
    'taiba-kitchen': 'taiba-hospital',
}


def normalize_location_code(value: str) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', (value or '').strip().lower()).strip('-')
    return LOCATION_ALIASES.get(slug, slug)


def get_location(db: Session, code: str) -> Location:
    normalized = normalize_location_code(code)
    location = db.execute(select(Location).where(Location.code == normalized)).scalar_one_or_none()
    if not location:
        raise NotFoundError(f'Unknown location: {code}')
    return location


def list_locations(db: Session, *, active_only: bool = True) -> list[Location]:
    stmt = select(Location).order_by(Location.location_type.asc(), Location.name.asc())
    if active_only:
        stmt = stmt.where(Location.active.is_(True))
    return db.execute(stmt).scalars().all()
