from decimal import Decimal

from sqlalchemy import select

from commissary.db import SessionLocal, init_db
from commissary.models import ItemKind, Location, LocationType
from commissary.services.item_repository import ItemRepository

LOCATIONS = (
    ('central-kitchen', 'Central Kitchen', LocationType.CENTRAL_KITCHEN),
    ('kuwait-city', 'Kuwait City', LocationType.OUTLET),
    ('360-mall', '360 Mall', LocationType.OUTLET),
    ('vibe-complex', 'Vibe Complex', LocationType.OUTLET),
    ('taiba-hospital', 'Taiba Hospital', LocationType.OUTLET),
)

DEMO_RAW_MATERIALS = (
    ('RM-TOM-001', 'Roma Tomatoes', 'Produce', 'kg', '0.850', '42'),
    ('RM-MOZ-001', 'Mozzarella Block', 'Dairy', 'kg', '3.250', '8'),
    ('RM-FLR-001', 'Tipo 00 Flour', 'Dry Store', 'kg', '0.450', '1200'),
)


def seed_locations(db) -> dict[str, Location]:
    by_code: dict[str, Location] = {}
    for code, name, location_type in LOCATIONS:
        location = db.execute(select(Location).where(Location.code == code)).scalar_one_or_none()
        if not location:
            location = Location(code=code, name=name, location_type=location_type, active=True)
            db.add(location)
            db.flush()
        by_code[code] = location
    return by_code


def seed() -> None:
    init_db()
    with SessionLocal() as db:
        locations = seed_locations(db)

        repo = ItemRepository(db, location=locations['central-kitchen'], kind=ItemKind.RAW_MATERIAL, actor='seed')
        for code, name, category, unit, price, stock in DEMO_RAW_MATERIALS:
            if repo.get_by_code(code) is not None:
                continue
            repo.insert(
                code,
                {
                    'name': name,
                    'category': category,
                    'unit_of_measure': unit,
                    'unit_price': Decimal(price),
                    'current_stock': Decimal(stock),
                    'minimum_stock': Decimal('10'),
                    'maximum_stock': Decimal('1000'),
                    'reorder_point': Decimal('20'),
                },
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed complete.')
