from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session

from printflow.db import get_db
from printflow.dependencies import get_collaborators, get_outbox, schedule_outbox
from printflow.schemas import ProofDecisionIn
from printflow.services.notification_service import EmailOutbox
from printflow.services.proof_service import (
    approve_proof,
    get_proof_by_share_token,
    list_proofs_for_job,
    request_proof_changes,
    serialize_proof,
    upload_proof,
)
from printflow.services.provider_factory import Collaborators

router = APIRouter(prefix='/api/proofs', tags=['proofs'])


@router.post('', status_code=201)
def upload_proof_route(
    request: Request,
    background_tasks: BackgroundTasks,
    job_id: int = Form(...),
    notes: str | None = Form(None),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
    outbox: EmailOutbox = Depends(get_outbox),
):
    proof = upload_proof(
        db,
        outbox,
        job_id=job_id,
        data=file.file.read(),
        filename=file.filename or 'proof.pdf',
        storage=collaborators.storage,
        notes=notes,
    )
    db.commit()
    schedule_outbox(request, background_tasks, outbox)
    return serialize_proof(proof)


@router.get('/job/{job_id}')
def job_proofs_route(job_id: int, db: Session = Depends(get_db)):
    return [serialize_proof(proof) for proof in list_proofs_for_job(db, job_id)]


@router.get('/shared/{token}')
def shared_proof_route(
    token: str,
    db: Session = Depends(get_db),
    collaborators: Collaborators = Depends(get_collaborators),
):
    proof = get_proof_by_share_token(db, token)
    payload = serialize_proof(proof)
    payload['file_url'] = collaborators.storage.get_signed_url(proof.file_key)
    return payload


@router.post('/{proof_id}/approve')
def approve_proof_route(
    proof_id: int,
    payload: ProofDecisionIn,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    outbox: EmailOutbox = Depends(get_outbox),
):
    proof = approve_proof(db, outbox, proof_id=proof_id, comments=payload.comments, decided_by=payload.decided_by)
    db.commit()
    schedule_outbox(request, background_tasks, outbox)
    return serialize_proof(proof)


@router.post('/{proof_id}/request-changes')
def request_changes_route(
    proof_id: int,
    payload: ProofDecisionIn,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    outbox: EmailOutbox = Depends(get_outbox),
):
    proof = request_proof_changes(
        db, outbox, proof_id=proof_id, comments=payload.comments, decided_by=payload.decided_by
    )
    db.commit()
    schedule_outbox(request, background_tasks, outbox)
    return serialize_proof(proof)
