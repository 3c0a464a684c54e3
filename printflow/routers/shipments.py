from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from printflow.db import get_db
from printflow.dependencies import get_outbox, schedule_outbox
from printflow.schemas import ShipmentIn, ShipmentShippedIn
from printflow.services.notification_service import EmailOutbox
from printflow.services.shipment_service import (
    get_shipment,
    list_shipments_for_job,
    mark_shipment_delivered,
    mark_shipment_shipped,
    schedule_shipment,
    serialize_shipment,
)

router = APIRouter(prefix='/api/shipments', tags=['shipments'])


@router.post('', status_code=201)
def schedule_shipment_route(
    payload: ShipmentIn,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    outbox: EmailOutbox = Depends(get_outbox),
):
    shipment = schedule_shipment(
        db,
        outbox,
        job_id=payload.job_id,
        carrier=payload.carrier,
        scheduled_for=payload.scheduled_for,
        recipients=[recipient.model_dump() for recipient in payload.recipients],
    )
    db.commit()
    schedule_outbox(request, background_tasks, outbox)
    return serialize_shipment(db, shipment)


@router.get('/job/{job_id}')
def job_shipments_route(job_id: int, db: Session = Depends(get_db)):
    return [serialize_shipment(db, shipment) for shipment in list_shipments_for_job(db, job_id)]


@router.get('/{shipment_id}')
def shipment_detail_route(shipment_id: int, db: Session = Depends(get_db)):
    return serialize_shipment(db, get_shipment(db, shipment_id))


@router.post('/{shipment_id}/shipped')
def shipment_shipped_route(
    shipment_id: int,
    payload: ShipmentShippedIn,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    outbox: EmailOutbox = Depends(get_outbox),
):
    shipment = mark_shipment_shipped(db, outbox, shipment_id=shipment_id, tracking_no=payload.tracking_no)
    db.commit()
    schedule_outbox(request, background_tasks, outbox)
    return serialize_shipment(db, shipment)


@router.post('/{shipment_id}/delivered')
def shipment_delivered_route(shipment_id: int, db: Session = Depends(get_db)):
    shipment = mark_shipment_delivered(db, shipment_id=shipment_id)
    db.commit()
    return serialize_shipment(db, shipment)
