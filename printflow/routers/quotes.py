from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from printflow.db import get_db
from printflow.dependencies import get_outbox, schedule_outbox
from printflow.models import QuoteRequestStatus
from printflow.schemas import QuoteIn, QuoteRequestIn
from printflow.services.notification_service import EmailOutbox
from printflow.services.quote_service import (
    approve_quote,
    create_quote,
    create_quote_request,
    get_quote,
    list_quote_requests,
    reject_quote,
    serialize_quote,
    serialize_quote_request,
)

router = APIRouter(prefix='/api/quotes', tags=['quotes'])


@router.post('/requests', status_code=201)
def create_quote_request_route(payload: QuoteRequestIn, db: Session = Depends(get_db)):
    quote_request = create_quote_request(db, customer_id=payload.customer_id, specs=payload.specs, notes=payload.notes)
    db.commit()
    return serialize_quote_request(quote_request)


@router.get('/requests')
def list_quote_requests_route(status: QuoteRequestStatus | None = None, db: Session = Depends(get_db)):
    return [serialize_quote_request(row) for row in list_quote_requests(db, status=status)]


@router.post('', status_code=201)
def create_quote_route(
    payload: QuoteIn,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    outbox: EmailOutbox = Depends(get_outbox),
):
    quote = create_quote(
        db,
        outbox,
        quote_request_id=payload.quote_request_id,
        lines=[line.model_dump() for line in payload.lines],
        tax=payload.tax,
        valid_until=payload.valid_until,
        notes=payload.notes,
    )
    db.commit()
    schedule_outbox(request, background_tasks, outbox)
    return serialize_quote(quote)


@router.get('/{quote_id}')
def quote_detail_route(quote_id: int, db: Session = Depends(get_db)):
    return serialize_quote(get_quote(db, quote_id))


@router.post('/{quote_id}/approve')
def approve_quote_route(quote_id: int, db: Session = Depends(get_db)):
    quote = approve_quote(db, quote_id)
    db.commit()
    return serialize_quote(quote)


@router.post('/{quote_id}/reject')
def reject_quote_route(quote_id: int, db: Session = Depends(get_db)):
    quote = reject_quote(db, quote_id)
    db.commit()
    return serialize_quote(quote)
