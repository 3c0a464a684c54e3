from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from printflow.errors import InvalidTransitionError, NotFoundError, ValidationError
from printflow.logging_config import get_logger
from printflow.models import CompanyRole, Job, JobStatus, Quote, QuoteRequest, QuoteStatus
from printflow.services.company_service import get_company
from printflow.services.purchase_order_math_service import to_money
from printflow.services.sequence_service import allocate_unique, next_job_number, number_exists

logger = get_logger('services.jobs')

LIFECYCLE = [
    JobStatus.INTAKE,
    JobStatus.QUOTED,
    JobStatus.APPROVED,
    JobStatus.PENDING_PROOF,
    JobStatus.IN_PRODUCTION,
    JobStatus.SHIPPED,
    JobStatus.INVOICED,
    JobStatus.PAID,
]
TERMINAL = {JobStatus.PAID, JobStatus.CANCELLED}
# A fresh proof after a change request sends production back to proofing.
BACK_EDGES = {(JobStatus.IN_PRODUCTION, JobStatus.PENDING_PROOF)}

# (size, quantity, overrides) -> {'total': ..., ...}.
Pricer = Callable[..., dict]


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    if current in TERMINAL:
        return False
    if target == JobStatus.CANCELLED:
        return True
    if (current, target) in BACK_EDGES:
        return True
    return LIFECYCLE.index(target) > LIFECYCLE.index(current)


def transition_job(db: Session, job: Job, status: JobStatus) -> Job:
    if job.status == status:
        return job
    if not can_transition(job.status, status):
        raise InvalidTransitionError(
            f'Job {job.job_no} cannot move from {job.status.value} to {status.value}',
            details=[{'field': 'status', 'message': f'{job.status.value} -> {status.value} is not allowed'}],
        )
    previous = job.status
    job.status = status
    job.updated_at = _now()
    if status == JobStatus.SHIPPED and job.completed_at is None:
        job.completed_at = job.updated_at
    db.flush()
    logger.info(
        'job_status_changed',
        extra={'job_id': job.id, 'job_no': job.job_no, 'from_status': previous.value, 'to_status': status.value},
    )
    return job


def _require_customer(db: Session, customer_id: str) -> None:
    customer = get_company(db, customer_id)
    if customer.role != CompanyRole.CUSTOMER:
        raise ValidationError.for_field('customer_id', f'Company {customer_id} is not a customer account')


def create_job(
    db: Session,
    *,
    customer_id: str,
    customer_total: Decimal,
    quote_id: int | None = None,
    customer_po_number: str | None = None,
    customer_po_file_key: str | None = None,
    specs: dict | None = None,
    status: JobStatus = JobStatus.INTAKE,
    today: date | None = None,
) -> Job:
    total = to_money(customer_total, field='customer_total')
    if total < 0:
        raise ValidationError.for_field('customer_total', 'Customer total cannot be negative')
    _require_customer(db, customer_id)

    job = allocate_unique(
        db,
        generate=lambda: next_job_number(db, today),
        build=lambda number: Job(
            job_no=number,
            customer_id=customer_id,
            quote_id=quote_id,
            customer_total=total,
            status=status,
            customer_po_number=customer_po_number,
            customer_po_file_key=customer_po_file_key,
            specs=specs or {},
        ),
        number_taken=lambda number: number_exists(db, Job.job_no, number),
        scope='job',
    )
    logger.info(
        'job_created',
        extra={'job_id': job.id, 'job_no': job.job_no, 'customer_id': customer_id, 'customer_total': total},
    )
    return job


def create_job_from_quote(
    db: Session,
    *,
    quote_id: int,
    customer_po_number: str,
    customer_po_file_key: str | None = None,
    today: date | None = None,
) -> Job:
    if not (customer_po_number or '').strip():
        raise ValidationError.for_field('customer_po_number', 'Customer PO number is required')
    quote = db.get(Quote, quote_id)
    if not quote:
        raise NotFoundError(f'Quote {quote_id} not found')
    if quote.status != QuoteStatus.APPROVED:
        raise ValidationError.for_field('quote_id', 'Quote must be approved before creating a job')
    existing = db.execute(select(Job.id).where(Job.quote_id == quote_id).limit(1)).first()
    if existing:
        raise ValidationError.for_field('quote_id', f'Quote {quote_id} already has a job')
    request = db.get(QuoteRequest, quote.quote_request_id)

    return create_job(
        db,
        customer_id=request.customer_id,
        customer_total=quote.total,
        quote_id=quote.id,
        customer_po_number=customer_po_number.strip(),
        customer_po_file_key=customer_po_file_key,
        specs=dict(request.specs or {}),
        status=JobStatus.APPROVED,
        today=today,
    )


def create_direct_job(
    db: Session,
    *,
    customer_id: str,
    customer_po_number: str | None = None,
    customer_total: Decimal | None = None,
    size: str | None = None,
    quantity: int | None = None,
    overrides: dict | None = None,
    pricer: Pricer | None = None,
    specs: dict | None = None,
    today: date | None = None,
) -> Job:
    job_specs = dict(specs or {})
    if customer_total is None:
        if pricer is None or not size or not quantity:
            raise ValidationError.for_field('customer_total', 'Provide a customer total or size and quantity to price')
        breakdown = pricer(size=size, quantity=quantity, overrides=overrides or {})
        customer_total = breakdown['total']
        job_specs.update({'size': size, 'quantity': quantity, 'pricing': {k: str(v) for k, v in breakdown.items()}})

    return create_job(
        db,
        customer_id=customer_id,
        customer_total=customer_total,
        customer_po_number=customer_po_number,
        specs=job_specs,
        status=JobStatus.APPROVED,
        today=today,
    )


def get_job(db: Session, job_id: int) -> Job:
    job = db.get(Job, job_id)
    if not job:
        raise NotFoundError(f'Job {job_id} not found')
    return job


def get_job_by_number(db: Session, job_no: str) -> Job | None:
    return db.execute(select(Job).where(Job.job_no == job_no)).scalar_one_or_none()


def list_jobs(
    db: Session,
    *,
    customer_id: str | None = None,
    status: JobStatus | None = None,
    limit: int = 100,
) -> list[Job]:
    stmt = select(Job)
    if customer_id:
        stmt = stmt.where(Job.customer_id == customer_id)
    if status is not None:
        stmt = stmt.where(Job.status == status)
    return db.execute(stmt.order_by(Job.id.desc()).limit(limit)).scalars().all()


def serialize_job(job: Job) -> dict:
    return {
        'id': job.id,
        'job_no': job.job_no,
        'customer_id': job.customer_id,
        'quote_id': job.quote_id,
        'customer_total': str(job.customer_total),
        'status': job.status.value,
        'customer_po_number': job.customer_po_number,
        'specs': job.specs,
        'completed_at': job.completed_at,
        'created_at': job.created_at,
    }
