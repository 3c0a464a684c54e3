from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, status

from printflow.config import settings
from printflow.logging_config import get_logger

logger = get_logger('security.webhooks')

WEBHOOK_SECRET_HEADER = 'x-webhook-secret'
WEBHOOK_SECRET_QUERY = 'token'


async def verify_webhook_secret(request: Request) -> None:
    expected = settings.webhook_secret
    if not expected:
        return

    provided = request.headers.get(WEBHOOK_SECRET_HEADER) or request.query_params.get(WEBHOOK_SECRET_QUERY)
    if not provided or not secrets.compare_digest(provided, expected):
        logger.warning('webhook_secret_rejected', extra={'path': request.url.path})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid webhook secret')
