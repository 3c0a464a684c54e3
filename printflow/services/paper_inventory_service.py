from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from printflow.errors import NotFoundError, ValidationError
from printflow.logging_config import get_logger
from printflow.models import PaperInventory, PaperTransaction, PaperTransactionType
from printflow.services.company_service import get_company

logger = get_logger('services.paper_inventory')


@dataclass(frozen=True)
class RollSpec:
    roll_type: str
    roll_width: int
    paper_point: int
    paper_type: str
    reorder_point: int = 2


DEFAULT_ROLLS = (
    RollSpec('20_7pt_matte', 20, 7, 'matte'),
    RollSpec('18_7pt_matte', 18, 7, 'matte'),
    RollSpec('15_7pt_matte', 15, 7, 'matte'),
    RollSpec('20_9pt', 20, 9, 'gloss'),
)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def initialize_inventory(db: Session, *, company_id: str) -> list[PaperInventory]:
    get_company(db, company_id)
    existing = {
        row.roll_type: row
        for row in db.execute(select(PaperInventory).where(PaperInventory.company_id == company_id)).scalars()
    }
    for spec in DEFAULT_ROLLS:
        if spec.roll_type in existing:
            continue
        row = PaperInventory(
            company_id=company_id,
            roll_type=spec.roll_type,
            roll_width=spec.roll_width,
            paper_point=spec.paper_point,
            paper_type=spec.paper_type,
            quantity=0,
            reorder_point=spec.reorder_point,
        )
        db.add(row)
        existing[spec.roll_type] = row
    db.flush()
    return sorted(existing.values(), key=lambda row: row.roll_type)


def _locked_row(db: Session, company_id: str, roll_type: str) -> PaperInventory:
    # SQLite ignores FOR UPDATE.
    row = db.execute(
        select(PaperInventory)
        .where(PaperInventory.company_id == company_id, PaperInventory.roll_type == roll_type)
        .with_for_update()
    ).scalar_one_or_none()
    if not row:
        raise NotFoundError(f'No {roll_type} inventory for company {company_id}')
    return row


def adjust_inventory(
    db: Session,
    *,
    company_id: str,
    roll_type: str,
    quantity_delta: int,
    type: PaperTransactionType,
    job_id: int | None = None,
    notes: str | None = None,
) -> PaperTransaction:
    if quantity_delta == 0:
        raise ValidationError.for_field('quantity', 'Quantity change must be non-zero')
    if type == PaperTransactionType.ADD and quantity_delta < 0:
        raise ValidationError.for_field('quantity', 'ADD transactions must be positive')
    if type in (PaperTransactionType.REMOVE, PaperTransactionType.JOB_USAGE) and quantity_delta > 0:
        raise ValidationError.for_field('quantity', f'{type.value} transactions must be negative')

    row = _locked_row(db, company_id, roll_type)
    new_quantity = row.quantity + quantity_delta
    if new_quantity < 0:
        logger.warning(
            'paper_inventory_insufficient',
            extra={'company_id': company_id, 'roll_type': roll_type, 'on_hand': row.quantity, 'delta': quantity_delta},
        )
        raise ValidationError(
            f'Insufficient inventory: {row.quantity} {roll_type} rolls on hand, {-quantity_delta} requested',
            details=[{'field': 'quantity', 'message': f'only {row.quantity} on hand'}],
        )

    row.quantity = new_quantity
    row.updated_at = _now()
    txn = PaperTransaction(inventory_id=row.id, type=type, quantity=quantity_delta, job_id=job_id, notes=notes)
    db.add(txn)
    db.flush()
    logger.info(
        'paper_inventory_adjusted',
        extra={
            'company_id': company_id,
            'roll_type': roll_type,
            'delta': quantity_delta,
            'quantity': new_quantity,
            'transaction_type': type.value,
        },
    )
    return txn


def deduct_for_job(
    db: Session,
    *,
    company_id: str,
    roll_type: str,
    quantity: int,
    job_id: int,
    notes: str | None = None,
) -> PaperTransaction:
    if quantity <= 0:
        raise ValidationError.for_field('quantity', 'Deduction quantity must be positive')
    return adjust_inventory(
        db,
        company_id=company_id,
        roll_type=roll_type,
        quantity_delta=-quantity,
        type=PaperTransactionType.JOB_USAGE,
        job_id=job_id,
        notes=notes or f'Used for job {job_id}',
    )


def get_inventory(db: Session, *, company_id: str) -> list[PaperInventory]:
    return db.execute(
        select(PaperInventory).where(PaperInventory.company_id == company_id).order_by(PaperInventory.roll_type)
    ).scalars().all()


def get_transaction_history(
    db: Session, *, company_id: str, roll_type: str | None = None, limit: int = 100
) -> list[dict]:
    stmt = (
        select(PaperTransaction, PaperInventory.roll_type)
        .join(PaperInventory, PaperInventory.id == PaperTransaction.inventory_id)
        .where(PaperInventory.company_id == company_id)
    )
    if roll_type:
        stmt = stmt.where(PaperInventory.roll_type == roll_type)
    rows = db.execute(stmt.order_by(PaperTransaction.id.desc()).limit(limit)).all()
    return [
        {
            'id': txn.id,
            'roll_type': txn_roll_type,
            'type': txn.type.value,
            'quantity': txn.quantity,
            'job_id': txn.job_id,
            'notes': txn.notes,
            'created_at': txn.created_at,
        }
        for txn, txn_roll_type in rows
    ]


def list_low_stock(db: Session, *, company_id: str | None = None) -> list[PaperInventory]:
    stmt = select(PaperInventory).where(PaperInventory.quantity <= PaperInventory.reorder_point)
    if company_id:
        stmt = stmt.where(PaperInventory.company_id == company_id)
    return db.execute(stmt.order_by(PaperInventory.company_id, PaperInventory.roll_type)).scalars().all()


def serialize_inventory(row: PaperInventory) -> dict:
    return {
        'id': row.id,
        'company_id': row.company_id,
        'roll_type': row.roll_type,
        'roll_width': row.roll_width,
        'paper_point': row.paper_point,
        'paper_type': row.paper_type,
        'quantity': row.quantity,
        'reorder_point': row.reorder_point,
        'low_stock': row.quantity <= row.reorder_point,
    }
