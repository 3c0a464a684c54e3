from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from printflow.errors import NotFoundError, ValidationError
from printflow.logging_config import get_logger
from printflow.models import PurchaseOrder, PurchaseOrderStatus, WebhookEvent, WebhookSource
from printflow.schemas import VendorPoWebhookIn
from printflow.services.auto_po_service import notify_second_hop_vendor
from printflow.services.audit_service import log_audit
from printflow.services.company_service import BROKER_ID, TIER1_VENDOR_ID, TIER2_VENDOR_ID
from printflow.services.job_service import get_job_by_number
from printflow.services.notification_service import EmailOutbox
from printflow.services.purchase_order_math_service import to_money
from printflow.services.purchase_order_service import (
    STATUS_ORDER,
    create_purchase_order,
    find_by_external_ref,
    find_hop,
    update_status,
)

logger = get_logger('services.webhooks')


@dataclass
class WebhookResult:
    event_id: int
    purchase_order: PurchaseOrder
    created: bool
    warnings: list[str] = field(default_factory=list)


def log_webhook_event(db: Session, *, source: WebhookSource, payload: dict) -> WebhookEvent:
    event = WebhookEvent(source=source, payload=payload, processed=False)
    db.add(event)
    db.flush()
    return event


def record_webhook_failure(session_factory, *, source: WebhookSource, payload: dict, error: str) -> None:
    """Persist a rejected delivery in its own transaction so it survives the request rollback."""
    db = session_factory()
    try:
        db.add(WebhookEvent(source=source, payload=payload, processed=False, error=error[:1000]))
        db.commit()
    finally:
        db.close()


def _existing_second_hop(db: Session, *, job_id: int, correlation_key: str) -> PurchaseOrder | None:
    return find_by_external_ref(db, correlation_key, job_id=job_id) or find_hop(
        db, job_id=job_id, origin_company_id=TIER1_VENDOR_ID, target_company_id=TIER2_VENDOR_ID
    )


def _acknowledge_first_hop(db: Session, first_hop: PurchaseOrder) -> None:
    if STATUS_ORDER.index(first_hop.status) < STATUS_ORDER.index(PurchaseOrderStatus.ACKNOWLEDGED):
        update_status(db, first_hop.id, PurchaseOrderStatus.ACKNOWLEDGED)


def process_vendor_po_webhook(
    db: Session,
    payload: VendorPoWebhookIn,
    *,
    outbox: EmailOutbox | None = None,
) -> WebhookResult:
    """Reconcile a tier-1 vendor PO callback into the tier-1 -> tier-2 hop.

    Repeat deliveries for a reconciled hop return the existing PO unchanged.
    """
    event = log_webhook_event(db, source=WebhookSource.BRADFORD, payload=payload.model_dump(mode='json', by_alias=True))
    key = payload.correlation_key
    log_extra = {'event_id': event.id, 'job_number': payload.job_number, 'correlation_key': key}

    job = get_job_by_number(db, payload.job_number)
    if job is None:
        logger.warning('webhook_job_not_found', extra=log_extra)
        raise NotFoundError(f'Job {payload.job_number} not found')

    existing = _existing_second_hop(db, job_id=job.id, correlation_key=key)
    if existing:
        event.processed = True
        db.flush()
        logger.info('webhook_duplicate_ignored', extra={**log_extra, 'po_id': existing.id})
        return WebhookResult(event_id=event.id, purchase_order=existing, created=False)

    first_hop = find_hop(db, job_id=job.id, origin_company_id=BROKER_ID, target_company_id=TIER1_VENDOR_ID)
    if first_hop is None:
        logger.warning('webhook_upstream_po_missing', extra=log_extra)
        raise NotFoundError(
            f'Upstream purchase order for job {job.job_no} is missing',
            details=[{'field': 'jobNumber', 'message': 'broker to tier-1 purchase order not found'}],
        )

    vendor_amount = to_money(payload.pricing.payable, field='pricing.total')
    if vendor_amount > first_hop.vendor_amount:
        raise ValidationError.for_field(
            'pricing.total',
            f'Vendor pricing {vendor_amount} exceeds the {first_hop.vendor_amount} paid on {first_hop.po_number}',
        )

    try:
        po = create_purchase_order(
            db,
            origin_company_id=TIER1_VENDOR_ID,
            target_company_id=TIER2_VENDOR_ID,
            job_id=job.id,
            original_amount=first_hop.vendor_amount,
            vendor_amount=vendor_amount,
            external_ref=key,
        )
    except IntegrityError:
        # A concurrent delivery won the hop-2 insert.
        winner = _existing_second_hop(db, job_id=job.id, correlation_key=key)
        if winner is None:
            raise
        event.processed = True
        db.flush()
        logger.info('webhook_duplicate_ignored', extra={**log_extra, 'po_id': winner.id})
        return WebhookResult(event_id=event.id, purchase_order=winner, created=False)

    _acknowledge_first_hop(db, first_hop)
    log_audit(
        db,
        action='WEBHOOK_PO_CREATED',
        job_id=job.id,
        metadata={'po_number': po.po_number, 'external_ref': key, 'vendor_status': payload.status},
    )
    event.processed = True
    db.flush()
    logger.info('webhook_po_created', extra={**log_extra, 'po_id': po.id, 'po_number': po.po_number})

    warnings = []
    warning = notify_second_hop_vendor(db, outbox, po=po, job=job, pdf_url=payload.pdf_url)
    if warning:
        warnings.append(warning)
    return WebhookResult(event_id=event.id, purchase_order=po, created=True, warnings=warnings)


def list_webhook_events(
    db: Session,
    *,
    source: WebhookSource | None = None,
    processed: bool | None = None,
    limit: int = 100,
) -> list[dict]:
    stmt = select(WebhookEvent)
    if source is not None:
        stmt = stmt.where(WebhookEvent.source == source)
    if processed is not None:
        stmt = stmt.where(WebhookEvent.processed.is_(processed))
    return [
        {
            'id': event.id,
            'source': event.source.value,
            'payload': event.payload,
            'processed': event.processed,
            'error': event.error,
            'created_at': event.created_at,
        }
        for event in db.execute(stmt.order_by(WebhookEvent.id.desc()).limit(limit)).scalars()
    ]
