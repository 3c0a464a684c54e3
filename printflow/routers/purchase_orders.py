from __future__ import annotations

from fastapi import APIRouter, Depends, File, Request, UploadFile
from sqlalchemy.orm import Session

from printflow.db import get_db
from printflow.dependencies import get_client_ip, get_collaborators
from printflow.errors import NotFoundError
from printflow.models import PurchaseOrderStatus
from printflow.schemas import PurchaseOrderCreateIn, PurchaseOrderStatusIn
from printflow.services.audit_service import log_audit
from printflow.services.provider_factory import Collaborators
from printflow.services.purchase_order_service import (
    attach_pdf,
    create_purchase_order,
    get_purchase_order,
    list_purchase_orders,
    serialize_purchase_order,
    update_status,
)

router = APIRouter(prefix='/api/purchase-orders', tags=['purchase-orders'])


@router.get('')
def list_purchase_orders_route(
    company_id: str | None = None,
    status: PurchaseOrderStatus | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    return [
        serialize_purchase_order(po)
        for po in list_purchase_orders(db, company_id=company_id, status=status, limit=limit)
    ]


@router.post('', status_code=201)
def create_purchase_order_route(payload: PurchaseOrderCreateIn, request: Request, db: Session = Depends(get_db)):
    po = create_purchase_order(
        db,
        origin_company_id=payload.origin_company_id,
        target_company_id=payload.target_company_id,
        job_id=payload.job_id,
        original_amount=payload.original_amount,
        vendor_amount=payload.vendor_amount,
        external_ref=payload.external_ref,
    )
    log_audit(
        db,
        action='PURCHASE_ORDER_CREATED_MANUAL',
        job_id=po.job_id,
        ip=get_client_ip(request),
        metadata={'po_number': po.po_number},
    )
    db.commit()
    return serialize_purchase_order(po)


@router.get('/{po_id}')
def purchase_order_detail_route(po_id: int, db: Session = Depends(get_db)):
    return serialize_purchase_order(get_purchase_order(db, po_id))


@router.post('/{po_id}/status')
def purchase_order_status_route(
    po_id: int,
    payload: PurchaseOrderStatusIn,
    request: Request,
    db: Session = Depends(get_db),
):
    po = update_status(db, po_id, payload.status)
    log_audit(
        db,
        action='PURCHASE_ORDER_STATUS_CHANGED',
        job_id=po.job_id,
        ip=get_client_ip(request),
        metadata={'po_number': po.po_number, 'status': po.status.value},
    )
    db.commit()
    return serialize_purchase_order(po)


@router.get('/{po_id}/pdf-url')
def purchase_order_pdf_url_route(
    po_id: int,
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    po = get_purchase_order(db, po_id)
    if not po.pdf_file_key:
        raise NotFoundError(f'Purchase order {po.po_number} has no PDF')
    return {'url': collaborators.storage.get_signed_url(po.pdf_file_key)}


@router.post('/{po_id}/pdf')
def purchase_order_pdf_upload_route(
    po_id: int,
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    po = get_purchase_order(db, po_id)
    stored = collaborators.storage.put(file.file.read(), {'filename': file.filename or f'{po.po_number}.pdf'})
    po = attach_pdf(db, po.id, stored.key)
    log_audit(
        db,
        action='PURCHASE_ORDER_PDF_ATTACHED',
        job_id=po.job_id,
        ip=get_client_ip(request),
        metadata={'po_number': po.po_number, 'file_key': stored.key},
    )
    db.commit()
    return serialize_purchase_order(po)
