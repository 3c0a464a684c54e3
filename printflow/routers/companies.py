from __future__ import annotations

import mimetypes

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from printflow.db import get_db
from printflow.dependencies import get_collaborators
from printflow.models import CompanyRole
from printflow.services.company_service import get_company, list_companies, serialize_company
from printflow.services.notification_service import list_notifications
from printflow.services.provider_factory import Collaborators

router = APIRouter(prefix='/api', tags=['companies'])


@router.get('/companies')
def list_companies_route(role: CompanyRole | None = None, db: Session = Depends(get_db)):
    return [serialize_company(company) for company in list_companies(db, role=role)]


@router.get('/companies/{company_id}')
def company_detail_route(company_id: str, db: Session = Depends(get_db)):
    return serialize_company(get_company(db, company_id))


@router.get('/notifications')
def notifications_route(job_id: int | None = None, limit: int = 100, db: Session = Depends(get_db)):
    return list_notifications(db, job_id=job_id, limit=limit)


@router.get('/files/{key:path}')
def signed_file_route(
    key: str,
    expires: int,
    signature: str,
    collaborators: Collaborators = Depends(get_collaborators),
):
    storage = collaborators.storage
    if not storage.verify_signature(key, expires, signature):
        raise HTTPException(status_code=403, detail='Link expired or invalid')
    media_type = mimetypes.guess_type(key)[0] or 'application/octet-stream'
    return Response(content=storage.get(key), media_type=media_type)
