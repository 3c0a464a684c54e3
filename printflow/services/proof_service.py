from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from printflow.config import settings
from printflow.errors import InvalidTransitionError, NotFoundError
from printflow.logging_config import get_logger
from printflow.models import JobStatus, NotificationType, Proof, ProofApproval, ProofStatus
from printflow.services.company_service import BROKER_ID, get_company
from printflow.services.job_service import get_job, transition_job
from printflow.services.notification_service import EmailOutbox, queue_email
from printflow.services.storage_service import ObjectStorage

logger = get_logger('services.proofs')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def upload_proof(
    db: Session,
    outbox: EmailOutbox | None,
    *,
    job_id: int,
    data: bytes,
    filename: str,
    storage: ObjectStorage,
    notes: str | None = None,
) -> Proof:
    job = get_job(db, job_id)
    # Store the file before writing any rows.
    stored = storage.put(data, {'filename': filename, 'job_no': job.job_no})

    latest = db.execute(select(func.max(Proof.version)).where(Proof.job_id == job.id)).scalar_one_or_none()
    now = _now()
    proof = Proof(
        job_id=job.id,
        version=(latest or 0) + 1,
        file_key=stored.key,
        notes=notes,
        share_token=secrets.token_urlsafe(24),
        share_expires_at=now + timedelta(days=settings.proof_share_days),
        status=ProofStatus.PENDING,
    )
    db.add(proof)
    db.flush()
    transition_job(db, job, JobStatus.PENDING_PROOF)

    customer = get_company(db, job.customer_id)
    if customer.email:
        queue_email(
            db,
            outbox,
            type=NotificationType.PROOF_READY,
            recipients=[customer.email],
            subject=f'Proof v{proof.version} ready for job {job.job_no}',
            template='proof_ready.html',
            context={
                'version': proof.version,
                'job_no': job.job_no,
                'share_url': f'{settings.public_base_url.rstrip("/")}/api/proofs/shared/{proof.share_token}',
                'expires_at': proof.share_expires_at.date(),
            },
            job_id=job.id,
        )
    logger.info('proof_uploaded', extra={'proof_id': proof.id, 'job_id': job.id, 'version': proof.version})
    return proof


def get_proof(db: Session, proof_id: int) -> Proof:
    proof = db.get(Proof, proof_id)
    if not proof:
        raise NotFoundError(f'Proof {proof_id} not found')
    return proof


def get_proof_by_share_token(db: Session, token: str) -> Proof:
    proof = db.execute(select(Proof).where(Proof.share_token == token)).scalar_one_or_none()
    if not proof:
        raise NotFoundError('Proof link not found')
    expires_at = proof.share_expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at < _now():
        raise NotFoundError('Proof link has expired')
    return proof


def list_proofs_for_job(db: Session, job_id: int) -> list[Proof]:
    return db.execute(select(Proof).where(Proof.job_id == job_id).order_by(Proof.version.asc())).scalars().all()


def _decide(
    db: Session,
    outbox: EmailOutbox | None,
    *,
    proof_id: int,
    approved: bool,
    comments: str | None,
    decided_by: str | None,
) -> Proof:
    proof = get_proof(db, proof_id)
    if proof.status != ProofStatus.PENDING:
        raise InvalidTransitionError(f'Proof {proof.id} was already {proof.status.value}')
    proof.status = ProofStatus.APPROVED if approved else ProofStatus.CHANGES_REQUESTED
    db.add(ProofApproval(proof_id=proof.id, approved=approved, comments=comments, decided_by=decided_by))
    job = get_job(db, proof.job_id)
    if approved:
        transition_job(db, job, JobStatus.IN_PRODUCTION)

    broker = get_company(db, BROKER_ID)
    broker_recipients = [broker.email] if broker.email else []
    if broker_recipients:
        queue_email(
            db,
            outbox,
            type=NotificationType.PROOF_APPROVED if approved else NotificationType.PROOF_CHANGES_REQUESTED,
            recipients=broker_recipients,
            subject=f'Proof v{proof.version} for job {job.job_no} {"approved" if approved else "needs changes"}',
            template='proof_decision.html',
            context={'version': proof.version, 'job_no': job.job_no, 'approved': approved, 'comments': comments},
            job_id=job.id,
        )
    db.flush()
    logger.info('proof_decided', extra={'proof_id': proof.id, 'job_id': job.id, 'approved': approved})
    return proof


def approve_proof(
    db: Session, outbox: EmailOutbox | None, *, proof_id: int, comments: str | None = None, decided_by: str | None = None
) -> Proof:
    return _decide(db, outbox, proof_id=proof_id, approved=True, comments=comments, decided_by=decided_by)


def request_proof_changes(
    db: Session, outbox: EmailOutbox | None, *, proof_id: int, comments: str | None = None, decided_by: str | None = None
) -> Proof:
    return _decide(db, outbox, proof_id=proof_id, approved=False, comments=comments, decided_by=decided_by)


def serialize_proof(proof: Proof) -> dict:
    return {
        'id': proof.id,
        'job_id': proof.job_id,
        'version': proof.version,
        'file_key': proof.file_key,
        'status': proof.status.value,
        'notes': proof.notes,
        'share_token': proof.share_token,
        'share_expires_at': proof.share_expires_at,
    }
