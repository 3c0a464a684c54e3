from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from printflow.config import settings
from printflow.errors import InvalidTransitionError, NotFoundError, ValidationError
from printflow.logging_config import get_logger
from printflow.models import ContactPurpose, Invoice, InvoiceStatus, Job, JobStatus, NotificationType
from printflow.services.company_service import (
    BROKER_ID,
    TIER1_VENDOR_ID,
    TIER2_VENDOR_ID,
    contact_emails,
    get_company,
    is_customer_account,
)
from printflow.services.job_service import get_job, transition_job
from printflow.services.notification_service import EmailOutbox, queue_email
from printflow.services.purchase_order_math_service import to_money
from printflow.services.purchase_order_service import find_hop
from printflow.services.sequence_service import allocate_unique, next_invoice_number, number_exists

logger = get_logger('services.invoices')

# (from, to) pairs billed upstream along the PO chain, with the hop whose vendor amount they bill.
VENDOR_INVOICE_HOPS = (
    ((TIER1_VENDOR_ID, BROKER_ID), (BROKER_ID, TIER1_VENDOR_ID)),
    ((TIER2_VENDOR_ID, TIER1_VENDOR_ID), (TIER1_VENDOR_ID, TIER2_VENDOR_ID)),
)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class InvoiceCreation:
    invoice: Invoice
    chained: list[Invoice] = field(default_factory=list)


def _find_invoice(db: Session, *, job_id: int, from_company_id: str, to_company_id: str) -> Invoice | None:
    return db.execute(
        select(Invoice)
        .where(
            Invoice.job_id == job_id,
            Invoice.from_company_id == from_company_id,
            Invoice.to_company_id == to_company_id,
        )
        .order_by(Invoice.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def _insert_invoice(
    db: Session,
    *,
    job_id: int | None,
    from_company_id: str,
    to_company_id: str,
    amount: Decimal,
    notes: str | None = None,
    today: date | None = None,
) -> Invoice:
    total = to_money(amount, field='amount')
    if total < 0:
        raise ValidationError.for_field('amount', 'Invoice amount cannot be negative')
    if from_company_id == to_company_id:
        raise ValidationError.for_field('to_company_id', 'An invoice needs two different companies')
    get_company(db, from_company_id)
    get_company(db, to_company_id)

    issued_at = _now()
    invoice = allocate_unique(
        db,
        generate=lambda: next_invoice_number(db, today),
        build=lambda number: Invoice(
            invoice_no=number,
            job_id=job_id,
            from_company_id=from_company_id,
            to_company_id=to_company_id,
            amount=total,
            status=InvoiceStatus.DRAFT,
            notes=notes,
            issued_at=issued_at,
            due_at=issued_at + timedelta(days=settings.invoice_due_days),
        ),
        number_taken=lambda number: number_exists(db, Invoice.invoice_no, number),
        scope='invoice',
    )
    logger.info(
        'invoice_created',
        extra={
            'invoice_id': invoice.id,
            'invoice_no': invoice.invoice_no,
            'job_id': job_id,
            'from_company_id': from_company_id,
            'to_company_id': to_company_id,
            'amount': total,
        },
    )
    return invoice


def _default_amount(db: Session, job: Job, from_company_id: str, to_company_id: str) -> Decimal:
    if from_company_id == BROKER_ID and to_company_id == job.customer_id:
        return job.customer_total
    for (inv_from, inv_to), (po_origin, po_target) in VENDOR_INVOICE_HOPS:
        if (from_company_id, to_company_id) == (inv_from, inv_to):
            hop = find_hop(db, job_id=job.id, origin_company_id=po_origin, target_company_id=po_target)
            if hop is None:
                raise NotFoundError(f'No {po_origin} -> {po_target} purchase order for job {job.job_no}')
            return hop.vendor_amount
    raise ValidationError.for_field('amount', 'Amount is required for this company pair')


def trigger_vendor_invoice_chain(db: Session, job_id: int) -> list[Invoice]:
    """Bill each existing hop upstream once. Skips hops with no PO and pairs already invoiced."""
    created: list[Invoice] = []
    first_hop = find_hop(db, job_id=job_id, origin_company_id=BROKER_ID, target_company_id=TIER1_VENDOR_ID)
    if first_hop is None:
        logger.info('invoice_chain_skipped_no_po', extra={'job_id': job_id})
        return created

    for (inv_from, inv_to), (po_origin, po_target) in VENDOR_INVOICE_HOPS:
        hop = find_hop(db, job_id=job_id, origin_company_id=po_origin, target_company_id=po_target)
        if hop is None:
            continue
        if _find_invoice(db, job_id=job_id, from_company_id=inv_from, to_company_id=inv_to):
            logger.info(
                'invoice_chain_already_invoiced',
                extra={'job_id': job_id, 'from_company_id': inv_from, 'to_company_id': inv_to},
            )
            continue
        created.append(
            _insert_invoice(
                db,
                job_id=job_id,
                from_company_id=inv_from,
                to_company_id=inv_to,
                amount=hop.vendor_amount,
                notes=f'Billed against {hop.po_number}',
            )
        )
    return created


def on_invoice_created(db: Session, invoice: Invoice) -> list[Invoice]:
    if invoice.job_id is None:
        return []
    if invoice.from_company_id != BROKER_ID or not is_customer_account(invoice.to_company_id):
        return []
    job = get_job(db, invoice.job_id)
    if job.status == JobStatus.SHIPPED:
        transition_job(db, job, JobStatus.INVOICED)
    return trigger_vendor_invoice_chain(db, invoice.job_id)


def create_invoice_for_job(
    db: Session,
    *,
    job_id: int,
    from_company_id: str,
    to_company_id: str,
    amount: Decimal | None = None,
    notes: str | None = None,
) -> InvoiceCreation:
    job = get_job(db, job_id)
    if amount is None:
        amount = _default_amount(db, job, from_company_id, to_company_id)
    invoice = _insert_invoice(
        db,
        job_id=job.id,
        from_company_id=from_company_id,
        to_company_id=to_company_id,
        amount=amount,
        notes=notes,
    )
    return InvoiceCreation(invoice=invoice, chained=on_invoice_created(db, invoice))


def create_invoice_manual(
    db: Session,
    *,
    from_company_id: str,
    to_company_id: str,
    amount: Decimal,
    job_id: int | None = None,
    notes: str | None = None,
) -> InvoiceCreation:
    if job_id is not None:
        get_job(db, job_id)
    invoice = _insert_invoice(
        db,
        job_id=job_id,
        from_company_id=from_company_id,
        to_company_id=to_company_id,
        amount=amount,
        notes=notes,
    )
    return InvoiceCreation(invoice=invoice, chained=on_invoice_created(db, invoice))


def complete_job_and_generate_invoices(db: Session, job_id: int) -> list[Invoice]:
    """Issue the full three-invoice chain for a job whose two hops both exist."""
    job = get_job(db, job_id)
    hops = {}
    for (inv_from, inv_to), (po_origin, po_target) in VENDOR_INVOICE_HOPS:
        hop = find_hop(db, job_id=job.id, origin_company_id=po_origin, target_company_id=po_target)
        if hop is None:
            raise NotFoundError(f'{po_origin} -> {po_target} purchase order not found for job {job.job_no}')
        hops[(inv_from, inv_to)] = hop

    pairs = [*hops, (BROKER_ID, job.customer_id)]
    if any(_find_invoice(db, job_id=job.id, from_company_id=f, to_company_id=t) for f, t in pairs):
        raise ValidationError.for_field('job_id', f'Invoices already exist for job {job.job_no}')
    transition_job(db, job, JobStatus.INVOICED)

    invoices = [
        _insert_invoice(db, job_id=job.id, from_company_id=f, to_company_id=t, amount=hops[(f, t)].vendor_amount)
        for f, t in reversed(list(hops))
    ]
    invoices.append(
        _insert_invoice(
            db, job_id=job.id, from_company_id=BROKER_ID, to_company_id=job.customer_id, amount=job.customer_total
        )
    )
    return invoices


def get_invoice(db: Session, invoice_id: int) -> Invoice:
    invoice = db.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError(f'Invoice {invoice_id} not found')
    return invoice


def list_invoices(
    db: Session,
    *,
    job_id: int | None = None,
    company_id: str | None = None,
    status: InvoiceStatus | None = None,
    limit: int = 100,
) -> list[Invoice]:
    stmt = select(Invoice)
    if job_id is not None:
        stmt = stmt.where(Invoice.job_id == job_id)
    if company_id:
        stmt = stmt.where((Invoice.from_company_id == company_id) | (Invoice.to_company_id == company_id))
    if status is not None:
        stmt = stmt.where(Invoice.status == status)
    return db.execute(stmt.order_by(Invoice.id.desc()).limit(limit)).scalars().all()


def mark_invoice_sent(db: Session, outbox: EmailOutbox | None, invoice_id: int) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    if invoice.status != InvoiceStatus.DRAFT:
        raise InvalidTransitionError(f'Invoice {invoice.invoice_no} is already {invoice.status.value}')
    invoice.status = InvoiceStatus.SENT
    db.flush()

    recipients = contact_emails(db, invoice.to_company_id, purpose=ContactPurpose.BILLING)
    if not recipients:
        company = get_company(db, invoice.to_company_id)
        recipients = [company.email] if company.email else []
    if recipients:
        job = db.get(Job, invoice.job_id) if invoice.job_id else None
        queue_email(
            db,
            outbox,
            type=NotificationType.INVOICE_SENT,
            recipients=recipients,
            subject=f'Invoice {invoice.invoice_no}',
            template='invoice_sent.html',
            context={
                'invoice_no': invoice.invoice_no,
                'job_no': job.job_no if job else None,
                'amount': invoice.amount,
                'due_at': invoice.due_at.date() if invoice.due_at else None,
            },
            job_id=invoice.job_id,
        )
    return invoice


def mark_invoice_paid(db: Session, invoice_id: int) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    if invoice.status == InvoiceStatus.PAID:
        return invoice
    invoice.status = InvoiceStatus.PAID
    invoice.paid_at = _now()
    db.flush()
    logger.info('invoice_paid', extra={'invoice_id': invoice.id, 'invoice_no': invoice.invoice_no})

    if invoice.job_id and invoice.from_company_id == BROKER_ID and is_customer_account(invoice.to_company_id):
        job = get_job(db, invoice.job_id)
        if job.status == JobStatus.INVOICED:
            transition_job(db, job, JobStatus.PAID)
    return invoice


def serialize_invoice(invoice: Invoice) -> dict:
    return {
        'id': invoice.id,
        'invoice_no': invoice.invoice_no,
        'job_id': invoice.job_id,
        'from_company_id': invoice.from_company_id,
        'to_company_id': invoice.to_company_id,
        'amount': str(invoice.amount),
        'status': invoice.status.value,
        'notes': invoice.notes,
        'issued_at': invoice.issued_at,
        'due_at': invoice.due_at,
        'paid_at': invoice.paid_at,
    }
