from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from printflow.logging_config import get_logger
from printflow.models import Notification, NotificationType
from printflow.services.email_service import EmailDispatcher, render_email

logger = get_logger('services.notifications')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class EmailOutbox:
    """Notification ids written during a request, delivered once the request commits."""

    def __init__(self) -> None:
        self.notification_ids: list[int] = []

    def add(self, notification: Notification) -> None:
        self.notification_ids.append(notification.id)

    def __len__(self) -> int:
        return len(self.notification_ids)


def queue_email(
    db: Session,
    outbox: EmailOutbox | None,
    *,
    type: NotificationType,
    recipients: list[str],
    subject: str,
    template: str,
    context: dict,
    job_id: int | None = None,
) -> list[Notification]:
    body = render_email(template, subject=subject, **context)
    rows = [
        Notification(type=type, recipient=recipient, subject=subject, body=body, job_id=job_id)
        for recipient in dict.fromkeys(r.strip() for r in recipients if r and r.strip())
    ]
    db.add_all(rows)
    db.flush()
    if outbox is not None:
        for row in rows:
            outbox.add(row)
    return rows


def deliver_notifications(
    notification_ids: list[int],
    *,
    dispatcher: EmailDispatcher,
    session_factory: Callable[[], Session],
) -> None:
    """Send queued notifications. Failures are recorded on the row and logged, never raised."""
    if not notification_ids:
        return
    db = session_factory()
    try:
        rows = db.execute(
            select(Notification).where(Notification.id.in_(notification_ids), Notification.sent_at.is_(None))
        ).scalars()
        for row in rows:
            try:
                sent = dispatcher.send(to=[row.recipient], subject=row.subject, html=row.body)
            except Exception as exc:
                row.error = str(exc)[:1000]
                logger.exception(
                    'email_send_failed',
                    extra={'notification_id': row.id, 'recipient': row.recipient, 'notification_type': row.type.value},
                )
                continue
            row.sent_at = _now()
            row.message_id = sent.message_id
            row.error = None
            logger.info(
                'email_sent',
                extra={'notification_id': row.id, 'recipient': row.recipient, 'message_id': sent.message_id},
            )
        db.commit()
    finally:
        db.close()


def list_notifications(db: Session, *, job_id: int | None = None, limit: int = 100) -> list[dict]:
    stmt = select(Notification)
    if job_id is not None:
        stmt = stmt.where(Notification.job_id == job_id)
    stmt = stmt.order_by(Notification.id.desc()).limit(limit)
    return [
        {
            'id': row.id,
            'type': row.type.value,
            'recipient': row.recipient,
            'subject': row.subject,
            'job_id': row.job_id,
            'sent_at': row.sent_at,
            'error': row.error,
            'created_at': row.created_at,
        }
        for row in db.execute(stmt).scalars()
    ]
