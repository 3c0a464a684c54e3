from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from printflow.models import AuditLog


def log_audit(
    db: Session,
    *,
    action: str,
    job_id: int | None = None,
    ip: str | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            action=action,
            job_id=job_id,
            ip=ip,
            meta=metadata or {},
        )
    )


def list_audit_for_job(db: Session, *, job_id: int, limit: int = 200) -> list[dict]:
    rows = db.execute(
        select(AuditLog).where(AuditLog.job_id == job_id).order_by(AuditLog.id.asc()).limit(limit)
    ).scalars()
    return [
        {
            'id': row.id,
            'action': row.action,
            'metadata': row.meta,
            'created_at': row.created_at,
        }
        for row in rows
    ]
