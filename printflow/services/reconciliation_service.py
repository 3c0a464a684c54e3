from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from printflow.errors import ValidationError
from printflow.logging_config import get_logger
from printflow.models import Invoice, Job, JobStatus, PurchaseOrder
from printflow.services.auto_po_service import run_auto_po_creation
from printflow.services.company_service import BROKER_ID, TIER1_VENDOR_ID, TIER2_VENDOR_ID
from printflow.services.invoice_service import (
    complete_job_and_generate_invoices,
    create_invoice_for_job,
    trigger_vendor_invoice_chain,
)
from printflow.services.job_service import get_job
from printflow.services.purchase_order_math_service import split_customer_total

logger = get_logger('services.reconciliation')

SECOND_HOP_EXPECTED = {JobStatus.IN_PRODUCTION, JobStatus.SHIPPED, JobStatus.INVOICED, JobStatus.PAID}
INVOICES_EXPECTED = {JobStatus.INVOICED, JobStatus.PAID}
INVOICE_FIXABLE = {JobStatus.SHIPPED, JobStatus.INVOICED, JobStatus.PAID}


@dataclass
class AmountMismatch:
    field: str
    expected: Decimal
    actual: Decimal

    @property
    def difference(self) -> Decimal:
        return abs(self.actual - self.expected)


@dataclass
class LegCheck:
    exists: bool
    expected_amount: Decimal | None
    number: str | None = None
    amount: Decimal | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class JobAudit:
    job_id: int
    job_no: str
    customer_id: str
    status: JobStatus
    customer_total: Decimal
    first_hop: LegCheck
    second_hop: LegCheck
    invoices: dict[str, LegCheck]
    chain_balanced: bool | None
    mismatches: list[AmountMismatch] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)


def _hop(purchase_orders: list[PurchaseOrder], origin: str, target: str) -> PurchaseOrder | None:
    return next(
        (po for po in purchase_orders if po.origin_company_id == origin and po.target_company_id == target), None
    )


def _invoice(invoices: list[Invoice], from_company_id: str, to_company_id: str) -> Invoice | None:
    return next(
        (i for i in invoices if i.from_company_id == from_company_id and i.to_company_id == to_company_id), None
    )


def _check_po(
    audit: JobAudit,
    label: str,
    po: PurchaseOrder | None,
    *,
    expected_original: Decimal | None,
    expected_vendor: Decimal | None,
    required: bool,
) -> LegCheck:
    check = LegCheck(exists=po is not None, expected_amount=expected_vendor)
    if po is None:
        if required:
            check.error = 'Purchase order does not exist'
            audit.issues.append(f'Missing {label.replace("_", " ")} purchase order')
        return check

    check.number = po.po_number
    check.amount = po.vendor_amount
    if expected_original is not None and po.original_amount != expected_original:
        audit.mismatches.append(AmountMismatch(f'{label}.original_amount', expected_original, po.original_amount))
        check.error = f'Original amount {po.original_amount} does not match upstream {expected_original}'
    if expected_vendor is not None and po.vendor_amount != expected_vendor:
        audit.mismatches.append(AmountMismatch(f'{label}.vendor_amount', expected_vendor, po.vendor_amount))
        check.error = f'Vendor amount {po.vendor_amount} does not match split {expected_vendor}'
    if check.error:
        audit.issues.append(f'{label.replace("_", " ").capitalize()} {po.po_number} amount mismatch')
    return check


def _check_invoice(
    audit: JobAudit, key: str, invoice: Invoice | None, expected: Decimal | None, required: bool
) -> LegCheck:
    check = LegCheck(exists=invoice is not None, expected_amount=expected)
    if invoice is None:
        if required:
            check.error = 'Invoice does not exist'
            audit.issues.append(f'Missing {key} invoice')
        return check
    check.number = invoice.invoice_no
    check.amount = invoice.amount
    if expected is not None and invoice.amount != expected:
        audit.mismatches.append(AmountMismatch(f'invoice.{key}', expected, invoice.amount))
        check.error = f'Amount {invoice.amount} does not match expected {expected}'
        audit.issues.append(f'Invoice {invoice.invoice_no} amount mismatch')
    return check


def _audit(job: Job, purchase_orders: list[PurchaseOrder], invoices: list[Invoice]) -> JobAudit:
    audit = JobAudit(
        job_id=job.id,
        job_no=job.job_no,
        customer_id=job.customer_id,
        status=job.status,
        customer_total=job.customer_total,
        first_hop=LegCheck(exists=False, expected_amount=None),
        second_hop=LegCheck(exists=False, expected_amount=None),
        invoices={},
        chain_balanced=None,
    )
    if job.status == JobStatus.CANCELLED:
        return audit

    first = _hop(purchase_orders, BROKER_ID, TIER1_VENDOR_ID)
    second = _hop(purchase_orders, TIER1_VENDOR_ID, TIER2_VENDOR_ID)
    audit.first_hop = _check_po(
        audit,
        'first_hop',
        first,
        expected_original=job.customer_total,
        expected_vendor=split_customer_total(job.customer_total).vendor_amount,
        required=True,
    )
    # The tier-2 price is set by the vendor; only its upstream amount is checked.
    audit.second_hop = _check_po(
        audit,
        'second_hop',
        second,
        expected_original=first.vendor_amount if first else None,
        expected_vendor=None,
        required=job.status in SECOND_HOP_EXPECTED,
    )
    if first and second:
        payout = first.margin_amount + second.margin_amount + second.vendor_amount
        audit.chain_balanced = payout == job.customer_total
        if not audit.chain_balanced:
            audit.mismatches.append(AmountMismatch('chain_total', job.customer_total, payout))
            audit.issues.append(f'Chain pays out {payout} against customer total {job.customer_total}')

    required = job.status in INVOICES_EXPECTED
    audit.invoices = {
        'tier2_to_tier1': _check_invoice(
            audit,
            'tier2_to_tier1',
            _invoice(invoices, TIER2_VENDOR_ID, TIER1_VENDOR_ID),
            second.vendor_amount if second else None,
            required and second is not None,
        ),
        'tier1_to_broker': _check_invoice(
            audit,
            'tier1_to_broker',
            _invoice(invoices, TIER1_VENDOR_ID, BROKER_ID),
            first.vendor_amount if first else None,
            required and first is not None,
        ),
        'broker_to_customer': _check_invoice(
            audit,
            'broker_to_customer',
            _invoice(invoices, BROKER_ID, job.customer_id),
            job.customer_total,
            required,
        ),
    }
    return audit


def _load(db: Session, job_ids: list[int]) -> tuple[dict[int, list[PurchaseOrder]], dict[int, list[Invoice]]]:
    purchase_orders: dict[int, list[PurchaseOrder]] = {job_id: [] for job_id in job_ids}
    invoices: dict[int, list[Invoice]] = {job_id: [] for job_id in job_ids}
    if not job_ids:
        return purchase_orders, invoices
    for po in db.execute(
        select(PurchaseOrder).where(PurchaseOrder.job_id.in_(job_ids)).order_by(PurchaseOrder.id.asc())
    ).scalars():
        purchase_orders[po.job_id].append(po)
    for invoice in db.execute(
        select(Invoice).where(Invoice.job_id.in_(job_ids)).order_by(Invoice.id.asc())
    ).scalars():
        invoices[invoice.job_id].append(invoice)
    return purchase_orders, invoices


def audit_job(db: Session, job_id: int) -> JobAudit:
    job = get_job(db, job_id)
    purchase_orders, invoices = _load(db, [job.id])
    return _audit(job, purchase_orders[job.id], invoices[job.id])


def validate_amounts(db: Session, job_id: int) -> list[AmountMismatch]:
    return audit_job(db, job_id).mismatches


def find_jobs_with_issues(db: Session, *, limit: int = 500) -> dict:
    jobs = db.execute(select(Job).order_by(Job.id.desc()).limit(limit)).scalars().all()
    purchase_orders, invoices = _load(db, [job.id for job in jobs])
    audits = [_audit(job, purchase_orders[job.id], invoices[job.id]) for job in jobs]
    flagged = [audit for audit in audits if audit.has_issues]
    return {
        'total': len(audits),
        'with_issues': len(flagged),
        'jobs': flagged,
        'summary': {
            'missing_first_hop': sum(1 for a in flagged if not a.first_hop.exists),
            'missing_second_hop': sum(1 for a in flagged if not a.second_hop.exists and not a.second_hop.ok),
            'missing_invoices': sum(
                1 for a in flagged if any(not c.exists and not c.ok for c in a.invoices.values())
            ),
            'amount_mismatches': sum(1 for a in flagged if a.mismatches),
        },
    }


def fix_missing_purchase_orders(db: Session, job_id: int) -> list[str]:
    """Recreate a missing broker -> tier-1 PO. The tier-2 hop needs vendor data and is never invented."""
    audit = audit_job(db, job_id)
    if audit.first_hop.exists or audit.status == JobStatus.CANCELLED:
        return []
    result = run_auto_po_creation(db, job_id)
    if result.error:
        raise ValidationError.for_field('job_id', f'Could not create the first-hop purchase order: {result.error}')
    logger.info('reconciliation_po_created', extra={'job_id': job_id, 'po_number': result.purchase_order.po_number})
    return [result.purchase_order.po_number]


def fix_missing_invoices(db: Session, job_id: int) -> list[str]:
    """Issue whichever chain invoices a finished job lacks. Caller commits."""
    job = get_job(db, job_id)
    if job.status not in INVOICE_FIXABLE:
        raise ValidationError.for_field(
            'job_id', f'Job {job.job_no} is not ready for invoicing (status {job.status.value})'
        )
    audit = audit_job(db, job_id)
    if not any(check.exists for check in audit.invoices.values()):
        created = complete_job_and_generate_invoices(db, job_id)
    elif not audit.invoices['broker_to_customer'].exists:
        creation = create_invoice_for_job(
            db, job_id=job_id, from_company_id=BROKER_ID, to_company_id=job.customer_id
        )
        created = [creation.invoice, *creation.chained]
    else:
        created = trigger_vendor_invoice_chain(db, job_id)
    numbers = [invoice.invoice_no for invoice in created]
    logger.info('reconciliation_invoices_created', extra={'job_id': job_id, 'invoice_nos': numbers})
    return numbers


def _leg_payload(check: LegCheck) -> dict:
    return {
        'exists': check.exists,
        'number': check.number,
        'amount': str(check.amount) if check.amount is not None else None,
        'expected_amount': str(check.expected_amount) if check.expected_amount is not None else None,
        'ok': check.ok,
        'error': check.error,
    }


def serialize_mismatch(mismatch: AmountMismatch) -> dict:
    return {
        'field': mismatch.field,
        'expected': str(mismatch.expected),
        'actual': str(mismatch.actual),
        'difference': str(mismatch.difference),
    }


def serialize_audit(audit: JobAudit) -> dict:
    return {
        'job_id': audit.job_id,
        'job_no': audit.job_no,
        'customer_id': audit.customer_id,
        'status': audit.status.value,
        'customer_total': str(audit.customer_total),
        'first_hop': _leg_payload(audit.first_hop),
        'second_hop': _leg_payload(audit.second_hop),
        'invoices': {key: _leg_payload(check) for key, check in audit.invoices.items()},
        'chain_balanced': audit.chain_balanced,
        'mismatches': [serialize_mismatch(m) for m in audit.mismatches],
        'has_issues': audit.has_issues,
        'issues': audit.issues,
    }
