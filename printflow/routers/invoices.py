from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from printflow.db import get_db
from printflow.dependencies import get_client_ip, get_outbox, schedule_outbox
from printflow.errors import ValidationError
from printflow.models import InvoiceStatus
from printflow.schemas import InvoiceCreateIn
from printflow.services.audit_service import log_audit
from printflow.services.invoice_service import (
    create_invoice_for_job,
    create_invoice_manual,
    get_invoice,
    list_invoices,
    mark_invoice_paid,
    mark_invoice_sent,
    serialize_invoice,
    trigger_vendor_invoice_chain,
)
from printflow.services.notification_service import EmailOutbox

router = APIRouter(prefix='/api/invoices', tags=['invoices'])


@router.get('')
def list_invoices_route(
    job_id: int | None = None,
    company_id: str | None = None,
    status: InvoiceStatus | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    return [
        serialize_invoice(invoice)
        for invoice in list_invoices(db, job_id=job_id, company_id=company_id, status=status, limit=limit)
    ]


@router.post('', status_code=201)
def create_invoice_route(payload: InvoiceCreateIn, request: Request, db: Session = Depends(get_db)):
    if payload.job_id is not None:
        creation = create_invoice_for_job(
            db,
            job_id=payload.job_id,
            from_company_id=payload.from_company_id,
            to_company_id=payload.to_company_id,
            amount=payload.amount,
            notes=payload.notes,
        )
    else:
        if payload.amount is None:
            raise ValidationError.for_field('amount', 'Amount is required for invoices without a job')
        creation = create_invoice_manual(
            db,
            from_company_id=payload.from_company_id,
            to_company_id=payload.to_company_id,
            amount=payload.amount,
            notes=payload.notes,
        )
    log_audit(
        db,
        action='INVOICE_CREATED',
        job_id=creation.invoice.job_id,
        ip=get_client_ip(request),
        metadata={
            'invoice_no': creation.invoice.invoice_no,
            'chained_invoice_nos': [invoice.invoice_no for invoice in creation.chained],
        },
    )
    db.commit()
    return {
        'invoice': serialize_invoice(creation.invoice),
        'chained_invoices': [serialize_invoice(invoice) for invoice in creation.chained],
    }


@router.post('/chain/{job_id}')
def trigger_chain_route(job_id: int, db: Session = Depends(get_db)):
    created = trigger_vendor_invoice_chain(db, job_id)
    db.commit()
    return [serialize_invoice(invoice) for invoice in created]


@router.get('/{invoice_id}')
def invoice_detail_route(invoice_id: int, db: Session = Depends(get_db)):
    return serialize_invoice(get_invoice(db, invoice_id))


@router.post('/{invoice_id}/send')
def send_invoice_route(
    invoice_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    outbox: EmailOutbox = Depends(get_outbox),
):
    invoice = mark_invoice_sent(db, outbox, invoice_id)
    log_audit(db, action='INVOICE_SENT', job_id=invoice.job_id, metadata={'invoice_no': invoice.invoice_no})
    db.commit()
    schedule_outbox(request, background_tasks, outbox)
    return serialize_invoice(invoice)


@router.post('/{invoice_id}/pay')
def pay_invoice_route(invoice_id: int, request: Request, db: Session = Depends(get_db)):
    invoice = mark_invoice_paid(db, invoice_id)
    log_audit(
        db,
        action='INVOICE_PAID',
        job_id=invoice.job_id,
        ip=get_client_ip(request),
        metadata={'invoice_no': invoice.invoice_no},
    )
    db.commit()
    return serialize_invoice(invoice)
