from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only autoincrements INTEGER primary keys.
BigIntPK = BigInteger().with_variant(Integer(), 'sqlite')
Quantity = Numeric(14, 3)
Money = Numeric(14, 3)


class Base(DeclarativeBase):
    pass


class LocationType(str, Enum):
    CENTRAL_KITCHEN = 'CENTRAL_KITCHEN'
    OUTLET = 'OUTLET'


class ItemKind(str, Enum):
    RAW_MATERIAL = 'RAW_MATERIAL'
    FINISHED_GOOD = 'FINISHED_GOOD'


class UnitOfMeasure(str, Enum):
    PIECE = 'piece'
    KG = 'kg'
    LTR = 'ltr'
    ML = 'ml'
    G = 'g'
    BOX = 'box'
    PACK = 'pack'
    SERVING = 'serving'


class CatalogStatus(str, Enum):
    ACTIVE = 'Active'
    INACTIVE = 'Inactive'
    DISCONTINUED = 'Discontinued'


class StockStatus(str, Enum):
    IN_STOCK = 'In Stock'
    LOW_STOCK = 'Low Stock'
    OUT_OF_STOCK = 'Out of Stock'
    OVERSTOCK = 'Overstock'


class TransferOrderStatus(str, Enum):
    DRAFT = 'Draft'
    PENDING = 'Pending'
    IN_TRANSIT = 'In Transit'
    COMPLETED = 'Completed'
    FAILED = 'Failed'
    CANCELLED = 'Cancelled'


TERMINAL_TRANSFER_STATUSES = frozenset(
    {TransferOrderStatus.COMPLETED, TransferOrderStatus.FAILED, TransferOrderStatus.CANCELLED}
)


class TransferPriority(str, Enum):
    LOW = 'Low'
    NORMAL = 'Normal'
    HIGH = 'High'
    URGENT = 'Urgent'


class TransferLineStatus(str, Enum):
    PENDING = 'pending'
    SUCCESS = 'success'
    FAILED = 'failed'


FINISHED_GOOD_SUB_CATEGORIES = (
    'COLD DRINKS',
    'GATHERING',
    'GLUTEN-FREE TACOS & PIZZA',
    'HAPPY ENDINGS',
    'RAMADAN',
    'OFFERS',
    'PANTRY BAGS',
    'PASTA',
    'SALADS',
    'SANDWICHES',
    'SAVORY BITES',
    'SIDES',
    'SNACKS',
    'SOUPS',
    'SWEET BITES',
    'WARM BOWLS',
    'WELLNESS SHOTS',
    'ADD-ON PROTEIN',
)

ALLERGENS = ('Gluten', 'Dairy', 'Nuts', 'Soy', 'Eggs', 'Fish', 'Shellfish', 'Sesame')


class Location(Base):
    __tablename__ = 'locations'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    location_type: Mapped[LocationType] = mapped_column(
        SQLEnum(LocationType, name='location_type'),
        nullable=False,
        default=LocationType.OUTLET,
        server_default='OUTLET',
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Item(Base):
    __tablename__ = 'items'
    __table_args__ = (
        UniqueConstraint('location_id', 'kind', 'code', name='items_location_kind_code_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id', ondelete='CASCADE'), nullable=False)
    kind: Mapped[ItemKind] = mapped_column(
        SQLEnum(ItemKind, name='item_kind'),
        nullable=False,
        default=ItemKind.RAW_MATERIAL,
        server_default='RAW_MATERIAL',
    )
    code: Mapped[str] = mapped_column(String(128), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(128), index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    category: Mapped[str] = mapped_column(Text, nullable=False, default='General', server_default='General')
    sub_category: Mapped[str | None] = mapped_column(Text)
    unit_of_measure: Mapped[UnitOfMeasure] = mapped_column(
        SQLEnum(UnitOfMeasure, name='unit_of_measure'),
        nullable=False,
        default=UnitOfMeasure.KG,
        server_default='KG',
    )
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    cost_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    current_stock: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')
    minimum_stock: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')
    maximum_stock: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')
    reorder_point: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')
    total_value: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    catalog_status: Mapped[CatalogStatus] = mapped_column(
        SQLEnum(CatalogStatus, name='catalog_status'),
        nullable=False,
        default=CatalogStatus.ACTIVE,
        server_default='ACTIVE',
    )
    stock_status: Mapped[StockStatus] = mapped_column(
        SQLEnum(StockStatus, name='stock_status'),
        nullable=False,
        default=StockStatus.OUT_OF_STOCK,
        server_default='OUT_OF_STOCK',
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    supplier_id: Mapped[str | None] = mapped_column(Text)
    supplier_name: Mapped[str | None] = mapped_column(Text)
    is_vegan: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    is_vegetarian: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    is_gluten_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    is_halal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    is_kosher: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    allergens: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_by: Mapped[str] = mapped_column(Text, nullable=False, default='system', server_default='system')
    updated_by: Mapped[str] = mapped_column(Text, nullable=False, default='system', server_default='system')
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    location: Mapped[Location] = relationship()


class TransferOrder(Base):
    __tablename__ = 'transfer_orders'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    transfer_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    from_location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id'), nullable=False)
    to_location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id'), nullable=False)
    status: Mapped[TransferOrderStatus] = mapped_column(
        SQLEnum(TransferOrderStatus, name='transfer_order_status'),
        nullable=False,
        default=TransferOrderStatus.DRAFT,
        server_default='DRAFT',
    )
    priority: Mapped[TransferPriority] = mapped_column(
        SQLEnum(TransferPriority, name='transfer_priority'),
        nullable=False,
        default=TransferPriority.NORMAL,
        server_default='NORMAL',
    )
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    has_errors: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    notes: Mapped[str | None] = mapped_column(Text)
    requested_by: Mapped[str] = mapped_column(Text, nullable=False, default='system', server_default='system')
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    from_location: Mapped[Location] = relationship(foreign_keys=[from_location_id])
    to_location: Mapped[Location] = relationship(foreign_keys=[to_location_id])
    lines: Mapped[list[TransferOrderLine]] = relationship(
        back_populates='transfer_order',
        order_by='TransferOrderLine.position',
        cascade='all, delete-orphan',
    )


class TransferOrderLine(Base):
    __tablename__ = 'transfer_order_lines'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    transfer_order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey('transfer_orders.id', ondelete='CASCADE'),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    item_kind: Mapped[ItemKind] = mapped_column(
        SQLEnum(ItemKind, name='item_kind'),
        nullable=False,
        default=ItemKind.RAW_MATERIAL,
        server_default='RAW_MATERIAL',
    )
    item_code: Mapped[str] = mapped_column(String(128), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    status: Mapped[TransferLineStatus] = mapped_column(
        SQLEnum(TransferLineStatus, name='transfer_line_status'),
        nullable=False,
        default=TransferLineStatus.PENDING,
        server_default='PENDING',
    )
    error: Mapped[str | None] = mapped_column(Text)

    transfer_order: Mapped[TransferOrder] = relationship(back_populates='lines')


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    actor: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    location_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('locations.id', ondelete='SET NULL'))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
