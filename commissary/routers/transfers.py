from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from commissary.db import get_db
from commissary.dependencies import get_actor, http_error
from commissary.errors import CommissaryError
from commissary.models import ItemKind, TransferOrderStatus, TransferPriority
from commissary.services.location_service import get_location
from commissary.services.transfer_service import (
    TransferLineRequest,
    TransferPolicy,
    TransferRequest,
    cancel_transfer_order,
    create_transfer_order,
    execute_transfer,
    get_transfer_order,
    list_transfer_orders,
    transfer_as_dict,
)

router = APIRouter(prefix='/transfers', tags=['transfers'])


class TransferLineIn(BaseModel):
    item_code: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    item_kind: ItemKind = ItemKind.RAW_MATERIAL
    unit_price: Decimal | None = Field(default=None, ge=0)


class TransferIn(BaseModel):
    from_location: str
    to_location: str
    lines: list[TransferLineIn] = Field(min_length=1)
    priority: TransferPriority = TransferPriority.NORMAL
    notes: str | None = None
    policy: TransferPolicy = TransferPolicy.PARTIAL
    execute: bool = True


class ExecuteIn(BaseModel):
    policy: TransferPolicy = TransferPolicy.PARTIAL


@router.post('')
def create_transfer(
    payload: TransferIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    request = TransferRequest(
        from_location=payload.from_location,
        to_location=payload.to_location,
        lines=[
            TransferLineRequest(
                item_code=line.item_code,
                quantity=line.quantity,
                item_kind=line.item_kind,
                unit_price=line.unit_price,
            )
            for line in payload.lines
        ],
        priority=payload.priority,
        notes=payload.notes,
        requested_by=actor,
    )
    try:
        order = create_transfer_order(db, request)
        if not payload.execute:
            db.commit()
            return JSONResponse(status_code=201, content={'transfer': transfer_as_dict(order)})
        result = execute_transfer(db, order, policy=payload.policy, actor=actor)
    except CommissaryError as exc:
        db.rollback()
        raise http_error(exc) from exc
    db.commit()
    status_code = 201 if result.failed == 0 else 200
    return JSONResponse(status_code=status_code, content=result.as_dict())


@router.get('')
def list_transfers(
    location: str | None = None,
    status: TransferOrderStatus | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    try:
        resolved = get_location(db, location) if location else None
    except CommissaryError as exc:
        raise http_error(exc) from exc
    orders = list_transfer_orders(db, location=resolved, status=status, limit=limit)
    return {'transfers': [transfer_as_dict(order) for order in orders], 'count': len(orders)}


@router.get('/{transfer_id}')
def get_transfer(transfer_id: int, db: Session = Depends(get_db)):
    try:
        return transfer_as_dict(get_transfer_order(db, transfer_id))
    except CommissaryError as exc:
        raise http_error(exc) from exc


@router.post('/{transfer_id}/execute')
def execute_pending_transfer(
    transfer_id: int,
    payload: ExecuteIn | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    policy = payload.policy if payload else TransferPolicy.PARTIAL
    try:
        order = get_transfer_order(db, transfer_id)
        result = execute_transfer(db, order, policy=policy, actor=actor)
    except CommissaryError as exc:
        db.rollback()
        raise http_error(exc) from exc
    db.commit()
    return result.as_dict()


@router.post('/{transfer_id}/cancel')
def cancel_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    try:
        order = cancel_transfer_order(db, get_transfer_order(db, transfer_id), actor=actor)
    except CommissaryError as exc:
        db.rollback()
        raise http_error(exc) from exc
    db.commit()
    return transfer_as_dict(order)
