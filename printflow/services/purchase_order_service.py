from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from printflow.errors import InvalidTransitionError, NotFoundError, ValidationError
from printflow.logging_config import get_logger
from printflow.models import Job, PurchaseOrder, PurchaseOrderStatus
from printflow.services.company_service import get_company
from printflow.services.purchase_order_math_service import derive_margin, to_money
from printflow.services.sequence_service import allocate_unique, next_vendor_po_number, number_exists

logger = get_logger('services.purchase_orders')

STATUS_ORDER = [
    PurchaseOrderStatus.CREATED,
    PurchaseOrderStatus.SENT,
    PurchaseOrderStatus.ACKNOWLEDGED,
    PurchaseOrderStatus.FULFILLED,
]


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def create_purchase_order(
    db: Session,
    *,
    origin_company_id: str,
    target_company_id: str,
    job_id: int,
    original_amount: Decimal,
    vendor_amount: Decimal,
    external_ref: str | None = None,
    reference_po_number: str | None = None,
    pdf_file_key: str | None = None,
) -> PurchaseOrder:
    """Sole path that fixes a PO's origin, target and amounts."""
    original = to_money(original_amount, field='original_amount')
    vendor = to_money(vendor_amount, field='vendor_amount')
    margin = derive_margin(original, vendor)

    if origin_company_id == target_company_id:
        raise ValidationError.for_field('target_company_id', 'A purchase order needs two different companies')
    get_company(db, origin_company_id)
    target = get_company(db, target_company_id)
    if not target.vendor_code:
        raise ValidationError.for_field('target_company_id', f'Company {target_company_id} has no vendor code')
    if not db.get(Job, job_id):
        raise NotFoundError(f'Job {job_id} not found')

    po = allocate_unique(
        db,
        generate=lambda: next_vendor_po_number(db, target.vendor_code),
        build=lambda number: PurchaseOrder(
            po_number=number,
            origin_company_id=origin_company_id,
            target_company_id=target_company_id,
            job_id=job_id,
            original_amount=original,
            vendor_amount=vendor,
            margin_amount=margin,
            external_ref=external_ref,
            reference_po_number=reference_po_number,
            pdf_file_key=pdf_file_key,
            status=PurchaseOrderStatus.CREATED,
        ),
        number_taken=lambda number: number_exists(db, PurchaseOrder.po_number, number),
        scope=f'vendor:{target.vendor_code}',
    )
    logger.info(
        'purchase_order_created',
        extra={
            'po_id': po.id,
            'po_number': po.po_number,
            'job_id': job_id,
            'origin_company_id': origin_company_id,
            'target_company_id': target_company_id,
            'original_amount': original,
            'vendor_amount': vendor,
            'margin_amount': margin,
            'external_ref': external_ref,
        },
    )
    return po


def get_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    po = db.get(PurchaseOrder, po_id)
    if not po:
        raise NotFoundError(f'Purchase order {po_id} not found')
    return po


def find_by_external_ref(db: Session, external_ref: str, *, job_id: int | None = None) -> PurchaseOrder | None:
    stmt = select(PurchaseOrder).where(PurchaseOrder.external_ref == external_ref)
    if job_id is not None:
        stmt = stmt.where(PurchaseOrder.job_id == job_id)
    return db.execute(stmt.order_by(PurchaseOrder.id.asc()).limit(1)).scalar_one_or_none()


def find_hop(db: Session, *, job_id: int, origin_company_id: str, target_company_id: str) -> PurchaseOrder | None:
    return db.execute(
        select(PurchaseOrder).where(
            PurchaseOrder.job_id == job_id,
            PurchaseOrder.origin_company_id == origin_company_id,
            PurchaseOrder.target_company_id == target_company_id,
        )
    ).scalar_one_or_none()


def list_by_job(db: Session, job_id: int) -> list[PurchaseOrder]:
    return db.execute(
        select(PurchaseOrder).where(PurchaseOrder.job_id == job_id).order_by(PurchaseOrder.id.asc())
    ).scalars().all()


def list_purchase_orders(
    db: Session,
    *,
    company_id: str | None = None,
    status: PurchaseOrderStatus | None = None,
    limit: int = 100,
) -> list[PurchaseOrder]:
    stmt = select(PurchaseOrder)
    if company_id:
        stmt = stmt.where(
            (PurchaseOrder.origin_company_id == company_id) | (PurchaseOrder.target_company_id == company_id)
        )
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    return db.execute(stmt.order_by(PurchaseOrder.id.desc()).limit(limit)).scalars().all()


def update_status(db: Session, po_id: int, status: PurchaseOrderStatus) -> PurchaseOrder:
    po = get_purchase_order(db, po_id)
    if po.status == status:
        return po
    if STATUS_ORDER.index(status) < STATUS_ORDER.index(po.status):
        raise InvalidTransitionError(
            f'Purchase order {po.po_number} cannot move from {po.status.value} back to {status.value}',
            details=[{'field': 'status', 'message': f'{po.status.value} -> {status.value} is not allowed'}],
        )
    previous = po.status
    po.status = status
    po.updated_at = _now()
    db.flush()
    logger.info(
        'purchase_order_status_changed',
        extra={'po_id': po.id, 'po_number': po.po_number, 'from_status': previous.value, 'to_status': status.value},
    )
    return po


def attach_pdf(db: Session, po_id: int, file_key: str) -> PurchaseOrder:
    po = get_purchase_order(db, po_id)
    po.pdf_file_key = file_key
    po.updated_at = _now()
    db.flush()
    return po


def serialize_purchase_order(po: PurchaseOrder) -> dict:
    return {
        'id': po.id,
        'po_number': po.po_number,
        'job_id': po.job_id,
        'origin_company_id': po.origin_company_id,
        'target_company_id': po.target_company_id,
        'original_amount': str(po.original_amount),
        'vendor_amount': str(po.vendor_amount),
        'margin_amount': str(po.margin_amount),
        'external_ref': po.external_ref,
        'reference_po_number': po.reference_po_number,
        'status': po.status.value,
        'pdf_file_key': po.pdf_file_key,
        'created_at': po.created_at,
    }
