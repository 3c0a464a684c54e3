from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from printflow.errors import InvalidTransitionError, NotFoundError
from printflow.logging_config import get_logger
from printflow.models import Job, JobStatus, NotificationType, Shipment, ShipmentRecipient, ShipmentStatus
from printflow.services.job_service import get_job, transition_job
from printflow.services.notification_service import EmailOutbox, queue_email

logger = get_logger('services.shipments')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _recipients(db: Session, shipment_id: int) -> list[ShipmentRecipient]:
    return db.execute(
        select(ShipmentRecipient).where(ShipmentRecipient.shipment_id == shipment_id).order_by(ShipmentRecipient.id)
    ).scalars().all()


def _notify(db: Session, outbox: EmailOutbox | None, shipment: Shipment, job: Job, notification_type, label: str) -> None:
    emails = [r.email for r in _recipients(db, shipment.id) if r.email]
    if not emails:
        return
    queue_email(
        db,
        outbox,
        type=notification_type,
        recipients=emails,
        subject=f'Job {job.job_no} shipment {label}',
        template='shipment.html',
        context={
            'job_no': job.job_no,
            'carrier': shipment.carrier,
            'status_label': label,
            'tracking_no': shipment.tracking_no,
            'scheduled_for': shipment.scheduled_for,
        },
        job_id=job.id,
    )


def schedule_shipment(
    db: Session,
    outbox: EmailOutbox | None,
    *,
    job_id: int,
    carrier: str,
    scheduled_for: date | None = None,
    recipients: list[dict] | None = None,
) -> Shipment:
    job = get_job(db, job_id)
    if job.status in (JobStatus.CANCELLED, JobStatus.PAID):
        raise InvalidTransitionError(f'Job {job.job_no} is {job.status.value}; nothing to ship')
    shipment = Shipment(job_id=job.id, carrier=carrier, scheduled_for=scheduled_for, status=ShipmentStatus.SCHEDULED)
    db.add(shipment)
    db.flush()
    for recipient in recipients or []:
        db.add(
            ShipmentRecipient(
                shipment_id=shipment.id,
                name=recipient['name'],
                email=recipient.get('email'),
                address=recipient.get('address'),
            )
        )
    db.flush()
    _notify(db, outbox, shipment, job, NotificationType.SHIPMENT_SCHEDULED, 'scheduled')
    logger.info('shipment_scheduled', extra={'shipment_id': shipment.id, 'job_id': job.id, 'carrier': carrier})
    return shipment


def get_shipment(db: Session, shipment_id: int) -> Shipment:
    shipment = db.get(Shipment, shipment_id)
    if not shipment:
        raise NotFoundError(f'Shipment {shipment_id} not found')
    return shipment


def mark_shipment_shipped(
    db: Session, outbox: EmailOutbox | None, *, shipment_id: int, tracking_no: str | None = None
) -> Shipment:
    shipment = get_shipment(db, shipment_id)
    if shipment.status != ShipmentStatus.SCHEDULED:
        raise InvalidTransitionError(f'Shipment {shipment.id} is already {shipment.status.value}')
    shipment.status = ShipmentStatus.SHIPPED
    shipment.shipped_at = _now()
    if tracking_no:
        shipment.tracking_no = tracking_no
    job = get_job(db, shipment.job_id)
    transition_job(db, job, JobStatus.SHIPPED)
    db.flush()
    _notify(db, outbox, shipment, job, NotificationType.SHIPMENT_SHIPPED, 'shipped')
    return shipment


def mark_shipment_delivered(db: Session, *, shipment_id: int) -> Shipment:
    shipment = get_shipment(db, shipment_id)
    if shipment.status != ShipmentStatus.SHIPPED:
        raise InvalidTransitionError(f'Shipment {shipment.id} has not shipped')
    shipment.status = ShipmentStatus.DELIVERED
    shipment.delivered_at = _now()
    db.flush()
    return shipment


def list_shipments_for_job(db: Session, job_id: int) -> list[Shipment]:
    return db.execute(select(Shipment).where(Shipment.job_id == job_id).order_by(Shipment.id)).scalars().all()


def serialize_shipment(db: Session, shipment: Shipment) -> dict:
    return {
        'id': shipment.id,
        'job_id': shipment.job_id,
        'carrier': shipment.carrier,
        'tracking_no': shipment.tracking_no,
        'scheduled_for': shipment.scheduled_for,
        'status': shipment.status.value,
        'shipped_at': shipment.shipped_at,
        'delivered_at': shipment.delivered_at,
        'recipients': [
            {'name': r.name, 'email': r.email, 'address': r.address} for r in _recipients(db, shipment.id)
        ],
    }
