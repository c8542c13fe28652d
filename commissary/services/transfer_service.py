from __future__ import annotations

import logging
import random
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from commissary.errors import (
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from commissary.models import (
    TERMINAL_TRANSFER_STATUSES,
    Item,
    ItemKind,
    Location,
    TransferLineStatus,
    TransferOrder,
    TransferOrderLine,
    TransferOrderStatus,
    TransferPriority,
)
from commissary.services.audit_service import log_audit
from commissary.services.item_repository import ItemRepository, to_decimal
from commissary.services.location_service import get_location

logger = logging.getLogger(__name__)

# Catalog fields a destination inherits when it receives an item for the first time.
CATALOG_FIELDS = (
    'external_id',
    'name',
    'description',
    'category',
    'sub_category',
    'unit_of_measure',
    'unit_price',
    'cost_price',
    'minimum_stock',
    'maximum_stock',
    'reorder_point',
    'catalog_status',
    'supplier_id',
    'supplier_name',
    'is_vegan',
    'is_vegetarian',
    'is_gluten_free',
    'is_halal',
    'is_kosher',
    'allergens',
)
LINE_FAILURES = (NotFoundError, InsufficientStockError, ValidationError)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class TransferPolicy(str, Enum):
    PARTIAL = 'partial'
    ALL_OR_NOTHING = 'all_or_nothing'


@dataclass(frozen=True)
class TransferLineRequest:
    item_code: str
    quantity: Decimal
    item_kind: ItemKind = ItemKind.RAW_MATERIAL
    unit_price: Decimal | None = None


@dataclass(frozen=True)
class TransferRequest:
    from_location: str
    to_location: str
    lines: list[TransferLineRequest]
    priority: TransferPriority = TransferPriority.NORMAL
    notes: str | None = None
    requested_by: str = 'system'


@dataclass(frozen=True)
class TransferLineResult:
    position: int
    item_code: str
    item_kind: ItemKind
    quantity: Decimal
    status: TransferLineStatus
    error: str | None = None
    source_stock: Decimal | None = None
    destination_stock: Decimal | None = None
    destination_created: bool = False


@dataclass
class TransferResult:
    order: TransferOrder
    lines: list[TransferLineResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for line in self.lines if line.status == TransferLineStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for line in self.lines if line.status == TransferLineStatus.FAILED)

    def as_dict(self) -> dict:
        return {
            'transfer': transfer_as_dict(self.order),
            'succeeded': self.succeeded,
            'failed': self.failed,
            'lines': [
                {
                    'position': line.position,
                    'item_code': line.item_code,
                    'item_kind': line.item_kind.value,
                    'quantity': str(line.quantity),
                    'status': line.status.value,
                    'error': line.error,
                    'source_stock': None if line.source_stock is None else str(line.source_stock),
                    'destination_stock': None if line.destination_stock is None else str(line.destination_stock),
                    'destination_created': line.destination_created,
                }
                for line in self.lines
            ],
        }


def generate_transfer_number(*, now: datetime | None = None, rng: random.Random | None = None) -> str:
    rng = rng or random
    stamp = (now or _now()).strftime('%Y%m%d')
    suffix = ''.join(rng.choice(string.ascii_uppercase + string.digits) for _ in range(6))
    return f'TR-{stamp}-{suffix}'


def transfer_as_dict(order: TransferOrder) -> dict:
    return {
        'id': order.id,
        'transfer_number': order.transfer_number,
        'from_location': order.from_location.code,
        'to_location': order.to_location.code,
        'status': order.status.value,
        'priority': order.priority.value,
        'total_amount': str(order.total_amount),
        'has_errors': order.has_errors,
        'notes': order.notes,
        'requested_by': order.requested_by,
        'executed_at': order.executed_at.isoformat() if order.executed_at else None,
        'created_at': order.created_at.isoformat() if order.created_at else None,
        'lines': [
            {
                'position': line.position,
                'item_kind': line.item_kind.value,
                'item_code': line.item_code,
                'quantity': str(line.quantity),
                'unit_price': str(line.unit_price),
                'status': line.status.value,
                'error': line.error,
            }
            for line in order.lines
        ],
    }


def create_transfer_order(db: Session, request: TransferRequest) -> TransferOrder:
    from_location = get_location(db, request.from_location)
    to_location = get_location(db, request.to_location)
    if from_location.id == to_location.id:
        raise ValidationError('Source and destination locations must differ')
    if not request.lines:
        raise ValidationError('A transfer needs at least one line')

    order = TransferOrder(
        transfer_number=generate_transfer_number(),
        from_location_id=from_location.id,
        to_location_id=to_location.id,
        from_location=from_location,
        to_location=to_location,
        status=TransferOrderStatus.PENDING,
        priority=request.priority,
        notes=request.notes,
        requested_by=request.requested_by,
        has_errors=False,
    )
    total = Decimal('0')
    for position, line in enumerate(request.lines, start=1):
        code = (line.item_code or '').strip()
        if not code:
            raise ValidationError(f'Line {position}: item code is required')
        quantity = to_decimal(line.quantity, field=f'line {position} quantity')
        if quantity <= 0:
            raise ValidationError(f'Line {position}: quantity must be positive')

        unit_price = line.unit_price
        if unit_price is None:
            source_item = ItemRepository(db, location=from_location, kind=line.item_kind).get_by_code(code)
            unit_price = source_item.unit_price if source_item is not None else Decimal('0')
        unit_price = to_decimal(unit_price, field=f'line {position} unit_price')

        order.lines.append(
            TransferOrderLine(
                position=position,
                item_kind=line.item_kind,
                item_code=code,
                quantity=quantity,
                unit_price=unit_price,
                status=TransferLineStatus.PENDING,
            )
        )
        total += quantity * unit_price

    order.total_amount = total
    order.updated_at = _now()
    db.add(order)
    db.flush()
    log_audit(
        db,
        actor=request.requested_by,
        action='TRANSFER_CREATED',
        location_id=from_location.id,
        metadata={
            'transfer_number': order.transfer_number,
            'to_location': to_location.code,
            'lines': len(order.lines),
            'total_amount': str(total),
        },
    )
    return order


def _catalog_copy(item: Item) -> dict:
    return {name: getattr(item, name) for name in CATALOG_FIELDS}


def _move_line(db: Session, order: TransferOrder, line: TransferOrderLine, actor: str) -> TransferLineResult:
    source = ItemRepository(db, location=order.from_location, kind=line.item_kind, actor=actor)
    destination = ItemRepository(db, location=order.to_location, kind=line.item_kind, actor=actor)

    source_item = source.find_by_code(line.item_code)
    if not source.try_decrement(line.item_code, line.quantity):
        db.refresh(source_item)
        raise InsufficientStockError(line.item_code, source_item.current_stock, line.quantity)

    destination_item = destination.get_by_code(line.item_code)
    created = destination_item is None
    if created:
        destination_item = destination.insert(
            line.item_code,
            {**_catalog_copy(source_item), 'current_stock': line.quantity},
        )
    else:
        if not destination_item.is_active:
            # Stock arriving at a soft-deleted row brings it back into listings.
            destination.update(line.item_code, {'is_active': True})
            logger.info('Reactivated %s at %s on transfer-in', line.item_code, order.to_location.code)
        destination_item = destination.increment(line.item_code, line.quantity)

    for location, action in ((order.from_location, 'TRANSFER_OUT'), (order.to_location, 'TRANSFER_IN')):
        log_audit(
            db,
            actor=actor,
            action=action,
            location_id=location.id,
            metadata={
                'transfer_number': order.transfer_number,
                'item_code': line.item_code,
                'quantity': str(line.quantity),
            },
        )
    return TransferLineResult(
        position=line.position,
        item_code=line.item_code,
        item_kind=line.item_kind,
        quantity=line.quantity,
        status=TransferLineStatus.SUCCESS,
        source_stock=source_item.current_stock,
        destination_stock=destination_item.current_stock,
        destination_created=created,
    )


def execute_transfer(
    db: Session,
    order: TransferOrder,
    *,
    policy: TransferPolicy = TransferPolicy.PARTIAL,
    actor: str = 'transfer-system',
) -> TransferResult:
    """Moves every line of a pending order from its source to its destination.

    Each line runs in its own savepoint: a missing item or short stock fails
    that line and leaves both locations untouched for it. Under the partial
    policy the other lines still commit; under all-or-nothing any failure
    rolls back every line and fails the order. The caller owns the outer
    transaction.
    """
    if order.status in TERMINAL_TRANSFER_STATUSES:
        raise InvalidTransitionError(f'Transfer {order.transfer_number} is already {order.status.value}')

    order.status = TransferOrderStatus.IN_TRANSIT
    db.flush()

    outcomes: list[TransferLineResult] = []
    batch = db.begin_nested() if policy == TransferPolicy.ALL_OR_NOTHING else None
    for line in order.lines:
        try:
            with db.begin_nested():
                outcome = _move_line(db, order, line, actor)
        except LINE_FAILURES as exc:
            logger.warning('Transfer %s line %s (%s) failed: %s', order.transfer_number, line.position, line.item_code, exc)
            outcome = TransferLineResult(
                position=line.position,
                item_code=line.item_code,
                item_kind=line.item_kind,
                quantity=line.quantity,
                status=TransferLineStatus.FAILED,
                error=str(exc),
            )
        outcomes.append(outcome)

    any_failed = any(o.status == TransferLineStatus.FAILED for o in outcomes)
    if batch is not None:
        if any_failed:
            batch.rollback()
            outcomes = [
                o
                if o.status == TransferLineStatus.FAILED
                else TransferLineResult(
                    position=o.position,
                    item_code=o.item_code,
                    item_kind=o.item_kind,
                    quantity=o.quantity,
                    status=TransferLineStatus.FAILED,
                    error='Rolled back because another line failed',
                )
                for o in outcomes
            ]
        else:
            batch.commit()

    for line, outcome in zip(order.lines, outcomes):
        line.status = outcome.status
        line.error = outcome.error

    succeeded = sum(1 for o in outcomes if o.status == TransferLineStatus.SUCCESS)
    if succeeded == 0:
        order.status = TransferOrderStatus.FAILED
        order.has_errors = True
    else:
        order.status = TransferOrderStatus.COMPLETED
        order.has_errors = succeeded < len(outcomes)
    order.executed_at = _now()
    order.updated_at = order.executed_at

    log_audit(
        db,
        actor=actor,
        action='TRANSFER_EXECUTED',
        location_id=order.from_location_id,
        metadata={
            'transfer_number': order.transfer_number,
            'policy': policy.value,
            'status': order.status.value,
            'succeeded': succeeded,
            'failed': len(outcomes) - succeeded,
        },
    )
    db.flush()
    logger.info(
        'Transfer %s %s -> %s finished %s: %s/%s lines moved',
        order.transfer_number,
        order.from_location.code,
        order.to_location.code,
        order.status.value,
        succeeded,
        len(outcomes),
    )
    return TransferResult(order=order, lines=outcomes)


def cancel_transfer_order(db: Session, order: TransferOrder, *, actor: str = 'system') -> TransferOrder:
    if order.status not in (TransferOrderStatus.DRAFT, TransferOrderStatus.PENDING):
        raise InvalidTransitionError(f'Transfer {order.transfer_number} is {order.status.value} and cannot be cancelled')
    order.status = TransferOrderStatus.CANCELLED
    order.updated_at = _now()
    log_audit(
        db,
        actor=actor,
        action='TRANSFER_CANCELLED',
        location_id=order.from_location_id,
        metadata={'transfer_number': order.transfer_number},
    )
    db.flush()
    return order


def get_transfer_order(db: Session, transfer_id: int) -> TransferOrder:
    order = db.execute(select(TransferOrder).where(TransferOrder.id == transfer_id)).scalar_one_or_none()
    if not order:
        raise NotFoundError('Transfer order not found')
    return order


def list_transfer_orders(
    db: Session,
    *,
    location: Location | None = None,
    status: TransferOrderStatus | None = None,
    limit: int = 100,
) -> list[TransferOrder]:
    stmt = select(TransferOrder).order_by(TransferOrder.created_at.desc(), TransferOrder.id.desc()).limit(limit)
    if location is not None:
        stmt = stmt.where(
            (TransferOrder.from_location_id == location.id) | (TransferOrder.to_location_id == location.id)
        )
    if status is not None:
        stmt = stmt.where(TransferOrder.status == status)
    return db.execute(stmt).scalars().all()
