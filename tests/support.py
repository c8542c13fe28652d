from __future__ import annotations

import json
from decimal import Decimal

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from commissary.models import Base, ItemKind
from commissary.seed_example import seed_locations
from commissary.services.catalog_provider import ExternalItem, FetchResult
from commissary.services.item_repository import ItemRepository


def make_engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; let SQLAlchemy emit it.
    @event.listens_for(engine, 'connect')
    def _connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _begin(conn):
        conn.exec_driver_sql('BEGIN')

    Base.metadata.create_all(engine)
    return engine


def make_session(engine) -> Session:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


def repo_for(db: Session, locations: dict, code: str, *, kind: ItemKind = ItemKind.RAW_MATERIAL, actor: str = 'tester'):
    return ItemRepository(db, location=locations[code], kind=kind, actor=actor)


def raw_material(name: str, stock: str, *, price: str = '1.000', reorder: str = '20', maximum: str = '1000') -> dict:
    return {
        'name': name,
        'category': 'Produce',
        'unit_of_measure': 'kg',
        'unit_price': Decimal(price),
        'current_stock': Decimal(stock),
        'minimum_stock': Decimal('10'),
        'maximum_stock': Decimal(maximum),
        'reorder_point': Decimal(reorder),
    }


def external_items(count: int, *, start: int = 0) -> list[ExternalItem]:
    return [
        ExternalItem(
            external_id=f'ZI-{n:05d}',
            sku=f'SKU-{n:05d}',
            name=f'Item {n}',
            category='Produce',
            unit='kgs',
            status='active',
            rate=Decimal('2.500'),
            stock_on_hand=Decimal('40'),
        )
        for n in range(start, start + count)
    ]


class StaticProvider:
    def __init__(self, items: list[ExternalItem], *, skipped: int = 0) -> None:
        self.items = items
        self.skipped = skipped
        self.calls = 0

    def fetch_all(self) -> FetchResult:
        self.calls += 1
        return FetchResult(items=list(self.items), pages=1, skipped=self.skipped)


class FakeResponse:
    def __init__(self, payload) -> None:
        self._body = payload if isinstance(payload, bytes) else json.dumps(payload).encode('utf-8')

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> bool:
        return False


def zoho_page(start: int, count: int) -> FakeResponse:
    return FakeResponse(
        {
            'code': 0,
            'message': 'success',
            'items': [
                {
                    'item_id': f'ZI-{n:05d}',
                    'sku': f'SKU-{n:05d}',
                    'name': f'Item {n}',
                    'category_name': 'Produce',
                    'unit': 'Kilograms',
                    'status': 'active',
                    'rate': 2.5,
                    'purchase_rate': 2.0,
                    'stock_on_hand': 40,
                }
                for n in range(start, start + count)
            ],
        }
    )
