from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from sqlalchemy.orm import Session

from printflow.db import get_db
from printflow.dependencies import get_outbox, schedule_outbox
from printflow.errors import PrintflowError
from printflow.models import WebhookSource
from printflow.schemas import VendorPoWebhookIn
from printflow.security.webhook_auth import verify_webhook_secret
from printflow.services.notification_service import EmailOutbox
from printflow.services.purchase_order_service import serialize_purchase_order
from printflow.services.webhook_service import list_webhook_events, process_vendor_po_webhook, record_webhook_failure

router = APIRouter(prefix='/api/webhooks', tags=['webhooks'])


@router.post('/vendor-po', dependencies=[Depends(verify_webhook_secret)])
def vendor_po_webhook_route(
    payload: VendorPoWebhookIn,
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    outbox: EmailOutbox = Depends(get_outbox),
):
    try:
        result = process_vendor_po_webhook(db, payload, outbox=outbox)
    except PrintflowError as exc:
        db.rollback()
        record_webhook_failure(
            request.app.state.session_factory,
            source=WebhookSource.BRADFORD,
            payload=payload.model_dump(mode='json', by_alias=True),
            error=exc.message,
        )
        raise
    db.commit()
    schedule_outbox(request, background_tasks, outbox)
    response.status_code = 201 if result.created else 200
    return {
        'status': 'created' if result.created else 'duplicate',
        'event_id': result.event_id,
        'purchase_order': serialize_purchase_order(result.purchase_order),
        'warnings': result.warnings,
    }


@router.get('/events')
def webhook_events_route(
    source: WebhookSource | None = None,
    processed: bool | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    return list_webhook_events(db, source=source, processed=processed, limit=limit)
