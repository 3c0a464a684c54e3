from __future__ import annotations

import re
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import InstrumentedAttribute, Session

from printflow.config import settings
from printflow.errors import NumberAllocationConflictError, SequenceExhaustedError, ValidationError
from printflow.logging_config import get_logger
from printflow.models import Invoice, Job, PurchaseOrder

logger = get_logger('services.sequence')

T = TypeVar('T')

VENDOR_CODE_RE = re.compile(r'^\d{3}$')
YEARLY_WIDTH = 6
VENDOR_PO_WIDTH = 3
VENDOR_PO_MAX = 999


def _today() -> date:
    return datetime.now(tz=timezone.utc).date()


def _highest_with_prefix(db: Session, column: InstrumentedAttribute, prefix: str) -> str | None:
    return db.execute(
        select(column).where(column.startswith(prefix, autoescape=True)).order_by(column.desc()).limit(1)
    ).scalar_one_or_none()


def _next_suffix(last: str | None, prefix: str, *, ceiling: int, scope: str) -> int:
    if last is None:
        return 1
    tail = last[len(prefix) :]
    if not tail.isdigit():
        raise ValidationError.for_field('number', f'Malformed stored number {last!r} in scope {scope}')
    nxt = int(tail) + 1
    if nxt > ceiling:
        raise SequenceExhaustedError(f'Numbering scope {scope} has reached its maximum ({ceiling})')
    return nxt


def _next_yearly_number(db: Session, column: InstrumentedAttribute, base_prefix: str, today: date | None) -> str:
    year = (today or _today()).year
    prefix = f'{base_prefix}{year}-'
    last = _highest_with_prefix(db, column, prefix)
    nxt = _next_suffix(last, prefix, ceiling=10**YEARLY_WIDTH - 1, scope=prefix)
    return f'{prefix}{nxt:0{YEARLY_WIDTH}d}'


def next_job_number(db: Session, today: date | None = None) -> str:
    return _next_yearly_number(db, Job.job_no, settings.job_number_prefix, today)


def next_invoice_number(db: Session, today: date | None = None) -> str:
    return _next_yearly_number(db, Invoice.invoice_no, settings.invoice_number_prefix, today)


def validate_vendor_code(vendor_code: str | None) -> str:
    if not isinstance(vendor_code, str) or not VENDOR_CODE_RE.fullmatch(vendor_code):
        raise ValidationError.for_field('vendor_code', f'Vendor code must be exactly 3 digits, got {vendor_code!r}')
    return vendor_code


def next_vendor_po_number(db: Session, vendor_code: str) -> str:
    """`XXX-YYY` scoped to one vendor code; never resets, fails past 999."""
    code = validate_vendor_code(vendor_code)
    prefix = f'{code}-'
    last = _highest_with_prefix(db, PurchaseOrder.po_number, prefix)
    try:
        nxt = _next_suffix(last, prefix, ceiling=VENDOR_PO_MAX, scope=prefix)
    except SequenceExhaustedError as exc:
        raise SequenceExhaustedError(
            f'Vendor {code} has reached maximum PO count ({VENDOR_PO_MAX})',
            details=[{'field': 'vendor_code', 'message': 'Assign a new vendor code to continue numbering'}],
        ) from exc
    return f'{prefix}{nxt:0{VENDOR_PO_WIDTH}d}'


def number_exists(db: Session, column: InstrumentedAttribute, number: str) -> bool:
    return db.execute(select(column).where(column == number).limit(1)).first() is not None


def allocate_unique(
    db: Session,
    *,
    generate: Callable[[], str],
    build: Callable[[str], T],
    number_taken: Callable[[str], bool],
    scope: str,
) -> T:
    """Generate a number and insert the row carrying it inside a savepoint.

    A unique violation on the number rolls the savepoint back and retries with a
    freshly scanned number. Violations of any other constraint propagate.
    """
    attempts = max(settings.number_allocation_attempts, 1)
    for attempt in range(1, attempts + 1):
        number = generate()
        savepoint = db.begin_nested()
        try:
            row = build(number)
            db.add(row)
            db.flush()
        except IntegrityError:
            savepoint.rollback()
            if not number_taken(number):
                raise
            logger.warning(
                'number_allocation_conflict',
                extra={'scope': scope, 'number': number, 'attempt': attempt, 'max_attempts': attempts},
            )
            continue
        savepoint.commit()
        return row

    logger.error('number_allocation_exhausted_retries', extra={'scope': scope, 'attempts': attempts})
    raise NumberAllocationConflictError(f'Could not allocate a unique number for {scope} after {attempts} attempts')
