from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from printflow.errors import PrintflowError, ValidationError
from printflow.logging_config import get_logger
from printflow.models import Job, NotificationType, PurchaseOrder
from printflow.services.audit_service import log_audit
from printflow.services.company_service import (
    BROKER_ID,
    CUSTOMER_CODE_TO_ID,
    TIER1_VENDOR_ID,
    TIER2_VENDOR_ID,
    get_company,
    production_recipients,
)
from printflow.services.document_extraction_service import VENDOR_PO_PROMPT, VENDOR_PO_SCHEMA, DocumentExtractor
from printflow.services.job_service import get_job
from printflow.services.notification_service import EmailOutbox, queue_email
from printflow.services.purchase_order_math_service import split_customer_total, to_money
from printflow.services.purchase_order_service import create_purchase_order, find_by_external_ref, find_hop
from printflow.services.storage_service import ObjectStorage

logger = get_logger('services.auto_po')


@dataclass
class AutoPoResult:
    job_id: int
    purchase_order: PurchaseOrder | None = None
    created: bool = False
    error: str | None = None


@dataclass
class SecondHopResult:
    purchase_order: PurchaseOrder
    created: bool
    warnings: list[str] = field(default_factory=list)


def create_first_hop(db: Session, job: Job) -> tuple[PurchaseOrder, bool]:
    """Broker -> tier-1 vendor PO for the job's customer total. Returns (po, created)."""
    existing = find_hop(db, job_id=job.id, origin_company_id=BROKER_ID, target_company_id=TIER1_VENDOR_ID)
    if existing:
        return existing, False

    split = split_customer_total(job.customer_total)
    try:
        po = create_purchase_order(
            db,
            origin_company_id=BROKER_ID,
            target_company_id=TIER1_VENDOR_ID,
            job_id=job.id,
            original_amount=split.total,
            vendor_amount=split.vendor_amount,
            reference_po_number=job.customer_po_number,
        )
    except IntegrityError:
        # Another worker created the hop between our read and insert.
        existing = find_hop(db, job_id=job.id, origin_company_id=BROKER_ID, target_company_id=TIER1_VENDOR_ID)
        if existing is None:
            raise
        return existing, False
    return po, True


def run_auto_po_creation(db: Session, job_id: int) -> AutoPoResult:
    """Own unit of work: commits the hop-1 PO or rolls back only its own changes.

    Call after the job itself has been committed.
    """
    result = AutoPoResult(job_id=job_id)
    try:
        job = get_job(db, job_id)
        po, created = create_first_hop(db, job)
        if created:
            log_audit(
                db,
                action='AUTO_PO_CREATED',
                job_id=job.id,
                metadata={'po_number': po.po_number, 'vendor_amount': str(po.vendor_amount)},
            )
        db.commit()
    except (PrintflowError, IntegrityError) as exc:
        db.rollback()
        result.error = str(exc)
        logger.exception('auto_po_failed', extra={'job_id': job_id})
        return result

    result.purchase_order = po
    result.created = created
    logger.info(
        'auto_po_created' if created else 'auto_po_already_present',
        extra={'job_id': job_id, 'po_id': po.id, 'po_number': po.po_number},
    )
    return result


def notify_second_hop_vendor(
    db: Session,
    outbox: EmailOutbox | None,
    *,
    po: PurchaseOrder,
    job: Job,
    pdf_url: str | None = None,
) -> str | None:
    """Queue the PO email to the tier-2 production desk. Returns an error string instead of raising."""
    try:
        with db.begin_nested():
            target = get_company(db, po.target_company_id)
            recipients = production_recipients(db, po.target_company_id)
            if not recipients:
                logger.warning('po_notification_no_recipients', extra={'po_id': po.id})
                return 'No production contact configured'
            queue_email(
                db,
                outbox,
                type=NotificationType.PO_CREATED,
                recipients=recipients,
                subject=f'New purchase order {po.po_number} for job {job.job_no}',
                template='po_created.html',
                context={
                    'target_name': target.name,
                    'po_number': po.po_number,
                    'job_no': job.job_no,
                    'external_ref': po.external_ref,
                    'vendor_amount': po.vendor_amount,
                    'pdf_url': pdf_url,
                },
                job_id=job.id,
            )
    except Exception as exc:
        logger.exception('po_notification_failed', extra={'po_id': po.id, 'job_id': job.id})
        return f'Notification failed: {exc}'
    return None


def _check_customer_code(job: Job, customer_code: str | None) -> None:
    if not customer_code:
        return
    customer_id = CUSTOMER_CODE_TO_ID.get(str(customer_code).strip().upper())
    if customer_id is None:
        raise ValidationError.for_field('customer_code', f'Unknown customer code {customer_code!r} on document')
    if customer_id != job.customer_id:
        raise ValidationError.for_field(
            'customer_code',
            f'Document is for customer {customer_id} but job {job.job_no} belongs to {job.customer_id}',
        )


def create_second_hop_from_document(
    db: Session,
    outbox: EmailOutbox | None,
    *,
    job_id: int,
    pdf_bytes: bytes,
    filename: str,
    text: str,
    storage: ObjectStorage,
    extractor: DocumentExtractor,
) -> SecondHopResult:
    """Tier-1 -> tier-2 PO from the tier-1 vendor's own PO document."""
    job = get_job(db, job_id)
    fields = extractor.extract(text, VENDOR_PO_PROMPT, VENDOR_PO_SCHEMA)
    missing = [name for name in VENDOR_PO_SCHEMA['required'] if not fields.get(name)]
    if missing:
        raise ValidationError(
            'Could not read the purchase order document',
            details=[{'field': name, 'message': 'not found in document'} for name in missing],
        )
    _check_customer_code(job, fields.get('customer_code'))
    external_ref = str(fields['po_number'])
    total = to_money(fields['total'], field='total')
    vendor_total = fields.get('vendor_total')
    vendor_amount = (
        to_money(vendor_total, field='vendor_total') if vendor_total else split_customer_total(total).vendor_amount
    )

    existing = find_by_external_ref(db, external_ref, job_id=job.id) or find_hop(
        db, job_id=job.id, origin_company_id=TIER1_VENDOR_ID, target_company_id=TIER2_VENDOR_ID
    )
    if existing:
        logger.info('document_po_duplicate_ignored', extra={'job_id': job.id, 'po_id': existing.id})
        return SecondHopResult(purchase_order=existing, created=False)

    warnings: list[str] = []
    file_key = None
    try:
        stored = storage.put(pdf_bytes, {'filename': filename, 'job_no': job.job_no})
        file_key = stored.key
    except Exception as exc:
        logger.exception('document_po_storage_failed', extra={'job_id': job.id})
        warnings.append(f'Storage failed: {exc}')

    po = create_purchase_order(
        db,
        origin_company_id=TIER1_VENDOR_ID,
        target_company_id=TIER2_VENDOR_ID,
        job_id=job.id,
        original_amount=total,
        vendor_amount=vendor_amount,
        external_ref=external_ref,
        pdf_file_key=file_key,
    )
    log_audit(
        db,
        action='DOCUMENT_PO_CREATED',
        job_id=job.id,
        metadata={'po_number': po.po_number, 'external_ref': external_ref, 'file_key': file_key},
    )

    pdf_url = None
    if file_key:
        try:
            pdf_url = storage.get_signed_url(file_key)
        except Exception as exc:
            logger.exception('document_po_signed_url_failed', extra={'po_id': po.id})
            warnings.append(f'Signed URL failed: {exc}')
    warning = notify_second_hop_vendor(db, outbox, po=po, job=job, pdf_url=pdf_url)
    if warning:
        warnings.append(warning)
    return SecondHopResult(purchase_order=po, created=True, warnings=warnings)


def chain_totals(purchase_orders: list[PurchaseOrder]) -> dict[str, Decimal]:
    return {
        'vendor_amount': sum((po.vendor_amount for po in purchase_orders), Decimal('0.00')),
        'margin_amount': sum((po.margin_amount for po in purchase_orders), Decimal('0.00')),
    }
