from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from printflow.db import get_db
from printflow.dependencies import get_client_ip
from printflow.schemas import InventoryAdjustIn, InventoryDeductIn
from printflow.services.audit_service import log_audit
from printflow.services.paper_inventory_service import (
    adjust_inventory,
    deduct_for_job,
    get_inventory,
    get_transaction_history,
    initialize_inventory,
    list_low_stock,
    serialize_inventory,
)

router = APIRouter(prefix='/api/paper-inventory', tags=['paper-inventory'])


def _transaction_payload(txn) -> dict:
    return {
        'id': txn.id,
        'inventory_id': txn.inventory_id,
        'type': txn.type.value,
        'quantity': txn.quantity,
        'job_id': txn.job_id,
        'notes': txn.notes,
    }


@router.get('/low-stock')
def low_stock_route(company_id: str | None = None, db: Session = Depends(get_db)):
    return [serialize_inventory(row) for row in list_low_stock(db, company_id=company_id)]


@router.post('/adjust')
def adjust_inventory_route(payload: InventoryAdjustIn, request: Request, db: Session = Depends(get_db)):
    txn = adjust_inventory(
        db,
        company_id=payload.company_id,
        roll_type=payload.roll_type,
        quantity_delta=payload.quantity,
        type=payload.type,
        job_id=payload.job_id,
        notes=payload.notes,
    )
    log_audit(
        db,
        action='PAPER_INVENTORY_ADJUSTED',
        job_id=payload.job_id,
        ip=get_client_ip(request),
        metadata={'company_id': payload.company_id, 'roll_type': payload.roll_type, 'delta': payload.quantity},
    )
    db.commit()
    return _transaction_payload(txn)


@router.post('/deduct')
def deduct_inventory_route(payload: InventoryDeductIn, db: Session = Depends(get_db)):
    txn = deduct_for_job(
        db,
        company_id=payload.company_id,
        roll_type=payload.roll_type,
        quantity=payload.quantity,
        job_id=payload.job_id,
        notes=payload.notes,
    )
    db.commit()
    return _transaction_payload(txn)


@router.post('/{company_id}/initialize')
def initialize_inventory_route(company_id: str, db: Session = Depends(get_db)):
    rows = initialize_inventory(db, company_id=company_id)
    db.commit()
    return [serialize_inventory(row) for row in rows]


@router.get('/{company_id}')
def inventory_route(company_id: str, db: Session = Depends(get_db)):
    return [serialize_inventory(row) for row in get_inventory(db, company_id=company_id)]


@router.get('/{company_id}/transactions')
def inventory_transactions_route(
    company_id: str,
    roll_type: str | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    return get_transaction_history(db, company_id=company_id, roll_type=roll_type, limit=limit)
