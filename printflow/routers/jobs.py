from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session

from printflow.db import get_db
from printflow.dependencies import get_client_ip, get_collaborators, get_outbox, schedule_outbox
from printflow.errors import NotFoundError
from printflow.models import JobStatus
from printflow.schemas import JobCreateIn, JobFromQuoteIn, JobStatusIn
from printflow.services.audit_service import list_audit_for_job, log_audit
from printflow.services.auto_po_service import (
    AutoPoResult,
    chain_totals,
    create_second_hop_from_document,
    run_auto_po_creation,
)
from printflow.services.document_extraction_service import extract_pdf_text
from printflow.services.invoice_service import complete_job_and_generate_invoices, list_invoices, serialize_invoice
from printflow.services.job_service import (
    create_direct_job,
    create_job_from_quote,
    get_job,
    get_job_by_number,
    list_jobs,
    serialize_job,
    transition_job,
)
from printflow.services.notification_service import EmailOutbox
from printflow.services.provider_factory import Collaborators
from printflow.services.purchase_order_service import list_by_job, serialize_purchase_order

router = APIRouter(prefix='/api/jobs', tags=['jobs'])


def _auto_po_payload(result: AutoPoResult) -> dict:
    return {
        'purchase_order': serialize_purchase_order(result.purchase_order) if result.purchase_order else None,
        'created': result.created,
        'error': result.error,
    }


def _job_detail(db: Session, job_id: int) -> dict:
    job = get_job(db, job_id)
    purchase_orders = list_by_job(db, job.id)
    totals = chain_totals(purchase_orders)
    return {
        'job': serialize_job(job),
        'purchase_orders': [serialize_purchase_order(po) for po in purchase_orders],
        'invoices': [serialize_invoice(invoice) for invoice in list_invoices(db, job_id=job.id)],
        'totals': {key: str(value) for key, value in totals.items()},
    }


@router.post('', status_code=201)
def create_job_route(payload: JobCreateIn, request: Request, db: Session = Depends(get_db)):
    job = create_direct_job(
        db,
        customer_id=payload.customer_id,
        customer_po_number=payload.customer_po_number,
        customer_total=payload.customer_total,
        size=payload.size,
        quantity=payload.quantity,
        pricer=getattr(request.app.state, 'pricer', None),
        specs=payload.specs,
    )
    log_audit(
        db,
        action='JOB_CREATED',
        job_id=job.id,
        ip=get_client_ip(request),
        metadata={'job_no': job.job_no, 'customer_total': str(job.customer_total)},
    )
    db.commit()
    # Hop-1 is its own unit of work; its failure leaves the job in place.
    auto_po = run_auto_po_creation(db, job.id)
    return {'job': serialize_job(job), 'auto_po': _auto_po_payload(auto_po)}


@router.post('/from-quote', status_code=201)
def create_job_from_quote_route(payload: JobFromQuoteIn, request: Request, db: Session = Depends(get_db)):
    job = create_job_from_quote(db, quote_id=payload.quote_id, customer_po_number=payload.customer_po_number)
    log_audit(
        db,
        action='JOB_CREATED_FROM_QUOTE',
        job_id=job.id,
        ip=get_client_ip(request),
        metadata={'job_no': job.job_no, 'quote_id': payload.quote_id},
    )
    db.commit()
    auto_po = run_auto_po_creation(db, job.id)
    return {'job': serialize_job(job), 'auto_po': _auto_po_payload(auto_po)}


@router.get('')
def list_jobs_route(
    customer_id: str | None = None,
    status: JobStatus | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    return [serialize_job(job) for job in list_jobs(db, customer_id=customer_id, status=status, limit=limit)]


@router.get('/by-number/{job_no}')
def job_by_number_route(job_no: str, db: Session = Depends(get_db)):
    job = get_job_by_number(db, job_no)
    if job is None:
        raise NotFoundError(f'Job {job_no} not found')
    return _job_detail(db, job.id)


@router.get('/{job_id}')
def job_detail_route(job_id: int, db: Session = Depends(get_db)):
    return _job_detail(db, job_id)


@router.post('/{job_id}/status')
def job_status_route(job_id: int, payload: JobStatusIn, request: Request, db: Session = Depends(get_db)):
    job = get_job(db, job_id)
    previous = job.status
    transition_job(db, job, payload.status)
    log_audit(
        db,
        action='JOB_STATUS_CHANGED',
        job_id=job.id,
        ip=get_client_ip(request),
        metadata={'from': previous.value, 'to': job.status.value},
    )
    db.commit()
    return serialize_job(job)


@router.post('/{job_id}/purchase-orders/auto')
def rerun_auto_po_route(job_id: int, db: Session = Depends(get_db)):
    get_job(db, job_id)
    return _auto_po_payload(run_auto_po_creation(db, job_id))


@router.post('/{job_id}/vendor-po-document', status_code=201)
def upload_vendor_po_route(
    job_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    text: str | None = Form(None),
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
    outbox: EmailOutbox = Depends(get_outbox),
):
    data = file.file.read()
    document_text = text or extract_pdf_text(data)
    result = create_second_hop_from_document(
        db,
        outbox,
        job_id=job_id,
        pdf_bytes=data,
        filename=file.filename or 'vendor-po.pdf',
        text=document_text,
        storage=collaborators.storage,
        extractor=collaborators.extractor,
    )
    db.commit()
    schedule_outbox(request, background_tasks, outbox)
    return {
        'purchase_order': serialize_purchase_order(result.purchase_order),
        'created': result.created,
        'warnings': result.warnings,
    }


@router.post('/{job_id}/complete')
def complete_job_route(job_id: int, request: Request, db: Session = Depends(get_db)):
    invoices = complete_job_and_generate_invoices(db, job_id)
    log_audit(
        db,
        action='JOB_INVOICE_CHAIN_GENERATED',
        job_id=job_id,
        ip=get_client_ip(request),
        metadata={'invoice_nos': [invoice.invoice_no for invoice in invoices]},
    )
    db.commit()
    return [serialize_invoice(invoice) for invoice in invoices]


@router.get('/{job_id}/audit')
def job_audit_route(job_id: int, db: Session = Depends(get_db)):
    get_job(db, job_id)
    return list_audit_for_job(db, job_id=job_id)
