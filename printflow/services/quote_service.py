from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from printflow.errors import InvalidTransitionError, NotFoundError, ValidationError
from printflow.logging_config import get_logger
from printflow.models import CompanyRole, NotificationType, Quote, QuoteRequest, QuoteRequestStatus, QuoteStatus
from printflow.services.company_service import get_company
from printflow.services.notification_service import EmailOutbox, queue_email
from printflow.services.purchase_order_math_service import round2, to_money

logger = get_logger('services.quotes')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def create_quote_request(db: Session, *, customer_id: str, specs: dict, notes: str | None = None) -> QuoteRequest:
    customer = get_company(db, customer_id)
    if customer.role != CompanyRole.CUSTOMER:
        raise ValidationError.for_field('customer_id', f'Company {customer_id} is not a customer account')
    request = QuoteRequest(customer_id=customer_id, specs=specs or {}, notes=notes, status=QuoteRequestStatus.PENDING)
    db.add(request)
    db.flush()
    return request


def get_quote_request(db: Session, request_id: int) -> QuoteRequest:
    request = db.get(QuoteRequest, request_id)
    if not request:
        raise NotFoundError(f'Quote request {request_id} not found')
    return request


def list_quote_requests(db: Session, *, status: QuoteRequestStatus | None = None) -> list[QuoteRequest]:
    stmt = select(QuoteRequest).order_by(QuoteRequest.id.desc())
    if status is not None:
        stmt = stmt.where(QuoteRequest.status == status)
    return db.execute(stmt).scalars().all()


def create_quote(
    db: Session,
    outbox: EmailOutbox | None,
    *,
    quote_request_id: int,
    lines: list[dict],
    tax: Decimal = Decimal('0'),
    valid_until: date | None = None,
    notes: str | None = None,
) -> Quote:
    request = get_quote_request(db, quote_request_id)
    if request.status not in (QuoteRequestStatus.PENDING, QuoteRequestStatus.QUOTED):
        raise InvalidTransitionError(f'Quote request {request.id} is already {request.status.value}')
    if not lines:
        raise ValidationError.for_field('lines', 'A quote needs at least one line')

    stored_lines = []
    subtotal = Decimal('0.00')
    for line in lines:
        unit_price = to_money(line['unit_price'], field='unit_price')
        line_total = round2(unit_price * int(line['quantity']))
        subtotal += line_total
        stored_lines.append(
            {
                'description': line['description'],
                'quantity': int(line['quantity']),
                'unit_price': str(unit_price),
                'line_total': str(line_total),
            }
        )
    tax_amount = to_money(tax, field='tax')

    quote = Quote(
        quote_request_id=request.id,
        lines=stored_lines,
        subtotal=subtotal,
        tax=tax_amount,
        total=subtotal + tax_amount,
        valid_until=valid_until,
        notes=notes,
        status=QuoteStatus.PENDING,
    )
    db.add(quote)
    request.status = QuoteRequestStatus.QUOTED
    db.flush()

    customer = get_company(db, request.customer_id)
    if customer.email:
        queue_email(
            db,
            outbox,
            type=NotificationType.QUOTE_READY,
            recipients=[customer.email],
            subject=f'Your quote #{quote.id} is ready',
            template='quote_ready.html',
            context={'quote_id': quote.id, 'total': quote.total, 'valid_until': valid_until},
        )
    logger.info('quote_created', extra={'quote_id': quote.id, 'quote_request_id': request.id, 'total': quote.total})
    return quote


def get_quote(db: Session, quote_id: int) -> Quote:
    quote = db.get(Quote, quote_id)
    if not quote:
        raise NotFoundError(f'Quote {quote_id} not found')
    return quote


def approve_quote(db: Session, quote_id: int) -> Quote:
    quote = get_quote(db, quote_id)
    if quote.status == QuoteStatus.APPROVED:
        return quote
    if quote.status != QuoteStatus.PENDING:
        raise InvalidTransitionError(f'Quote {quote.id} is {quote.status.value}')
    if quote.valid_until and quote.valid_until < _now().date():
        raise ValidationError.for_field('valid_until', f'Quote {quote.id} expired on {quote.valid_until}')
    quote.status = QuoteStatus.APPROVED
    quote.approved_at = _now()
    get_quote_request(db, quote.quote_request_id).status = QuoteRequestStatus.APPROVED
    db.flush()
    logger.info('quote_approved', extra={'quote_id': quote.id})
    return quote


def reject_quote(db: Session, quote_id: int) -> Quote:
    quote = get_quote(db, quote_id)
    if quote.status != QuoteStatus.PENDING:
        raise InvalidTransitionError(f'Quote {quote.id} is {quote.status.value}')
    quote.status = QuoteStatus.REJECTED
    get_quote_request(db, quote.quote_request_id).status = QuoteRequestStatus.REJECTED
    db.flush()
    return quote


def serialize_quote(quote: Quote) -> dict:
    return {
        'id': quote.id,
        'quote_request_id': quote.quote_request_id,
        'lines': quote.lines,
        'subtotal': str(quote.subtotal),
        'tax': str(quote.tax),
        'total': str(quote.total),
        'valid_until': quote.valid_until,
        'status': quote.status.value,
        'approved_at': quote.approved_at,
    }


def serialize_quote_request(request: QuoteRequest) -> dict:
    return {
        'id': request.id,
        'customer_id': request.customer_id,
        'specs': request.specs,
        'notes': request.notes,
        'status': request.status.value,
        'created_at': request.created_at,
    }
