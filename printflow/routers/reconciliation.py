from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from printflow.db import get_db
from printflow.dependencies import get_client_ip
from printflow.services.audit_service import log_audit
from printflow.services.reconciliation_service import (
    audit_job,
    find_jobs_with_issues,
    fix_missing_invoices,
    fix_missing_purchase_orders,
    serialize_audit,
    serialize_mismatch,
    validate_amounts,
)
from printflow.services.revenue_service import get_revenue_metrics

router = APIRouter(prefix='/api/reconciliation', tags=['reconciliation'])
revenue_router = APIRouter(prefix='/api/revenue', tags=['revenue'])


@router.get('/audit/{job_id}')
def audit_job_route(job_id: int, db: Session = Depends(get_db)):
    return serialize_audit(audit_job(db, job_id))


@router.get('/validate/{job_id}')
def validate_amounts_route(job_id: int, db: Session = Depends(get_db)):
    mismatches = validate_amounts(db, job_id)
    return {'job_id': job_id, 'valid': not mismatches, 'mismatches': [serialize_mismatch(m) for m in mismatches]}


@router.get('/report')
def report_route(db: Session = Depends(get_db)):
    report = find_jobs_with_issues(db)
    return {
        'total_jobs': report['total'],
        'jobs_with_issues': report['with_issues'],
        'summary': report['summary'],
    }


@router.get('/issues')
def issues_route(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    report = find_jobs_with_issues(db)
    start = (page - 1) * limit
    return {
        'page': page,
        'limit': limit,
        'total': report['with_issues'],
        'jobs': [serialize_audit(audit) for audit in report['jobs'][start:start + limit]],
    }


@router.post('/fix-pos/{job_id}')
def fix_purchase_orders_route(job_id: int, request: Request, db: Session = Depends(get_db)):
    created = fix_missing_purchase_orders(db, job_id)
    if created:
        log_audit(
            db,
            action='RECONCILIATION_PO_CREATED',
            job_id=job_id,
            ip=get_client_ip(request),
            metadata={'po_numbers': created},
        )
        db.commit()
    return {'job_id': job_id, 'created': created, 'audit': serialize_audit(audit_job(db, job_id))}


@router.post('/fix-invoices/{job_id}')
def fix_invoices_route(job_id: int, request: Request, db: Session = Depends(get_db)):
    created = fix_missing_invoices(db, job_id)
    log_audit(
        db,
        action='RECONCILIATION_INVOICES_CREATED',
        job_id=job_id,
        ip=get_client_ip(request),
        metadata={'invoice_nos': created},
    )
    db.commit()
    return {'job_id': job_id, 'created': created, 'audit': serialize_audit(audit_job(db, job_id))}


@revenue_router.get('/metrics')
def revenue_metrics_route(db: Session = Depends(get_db)):
    return get_revenue_metrics(db)
