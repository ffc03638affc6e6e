"""
Clients for the services around the dispatch core.

- Fleet service: display snapshot (plate number, operator, driver, route names)
- Invoice service: invoice creation after payment
- Shift table: default shift for a moment in time
- Redis pub/sub: stream of status change events

Every failure is reported as `exceptions.CollaboratorFailure`. Callers treat
these as best-effort and never roll back a status change because of them.
"""

import requests
from datetime import datetime
from typing import Optional
from redis.exceptions import RedisError
from requests import RequestException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.session import Session

from busstation.src import exceptions, redis
from busstation.src.constants import (
    COLLABORATOR_TIMEOUT,
    FLEET_API_URL,
    INVOICE_API_URL,
    REDIS_EVENT_CHANNEL,
    TMZ_STATION,
)
from busstation.src.db import DispatchRecord, Shift
from busstation.src.functions import isWithinWindow, toUTC
from busstation.src.schemas import StatusChangeEvent
from busstation.src.urls import URL_FLEET_SNAPSHOT, URL_INVOICE

SNAPSHOT_FIELDS = (
    DispatchRecord.vehicle_plate_number.key,
    DispatchRecord.vehicle_operator_id.key,
    DispatchRecord.vehicle_operator_name.key,
    DispatchRecord.vehicle_operator_code.key,
    DispatchRecord.driver_name.key,
    DispatchRecord.route_name.key,
)


def fetchFleetSnapshot(
    vehicle_id: str, driver_id: str, route_id: Optional[str] = None
) -> dict:
    """
    Look up the display snapshot for a vehicle, driver and route.

    Returns:
        dict: Only the snapshot keys the fleet service knows about. Empty
        when the fleet service is not configured.

    Raises:
        exceptions.CollaboratorFailure: On transport errors, non 2xx replies
            or a body that is not JSON.
    """
    if not FLEET_API_URL:
        return {}

    params = {"vehicle_id": vehicle_id, "driver_id": driver_id}
    if route_id is not None:
        params["route_id"] = route_id
    try:
        response = requests.get(
            FLEET_API_URL + URL_FLEET_SNAPSHOT,
            params=params,
            timeout=COLLABORATOR_TIMEOUT,
        )
        response.raise_for_status()
        body = response.json()
    except (RequestException, ValueError) as e:
        raise exceptions.CollaboratorFailure("Fleet lookup", str(e))

    return {field: body[field] for field in SNAPSHOT_FIELDS if field in body}


def createInvoice(record: DispatchRecord) -> Optional[dict]:
    """Ask the invoice service to bill a paid dispatch."""
    if not INVOICE_API_URL:
        return None

    invoice = {
        "dispatch_id": record.id,
        "vehicle_id": record.vehicle_id,
        "operator_id": record.vehicle_operator_id,
        "amount": str(record.payment_amount),
        "payment_method": record.payment_method,
        "invoice_number": record.invoice_number,
        "paid_on": record.payment_time.isoformat() if record.payment_time else None,
    }
    try:
        response = requests.post(
            INVOICE_API_URL + URL_INVOICE, json=invoice, timeout=COLLABORATOR_TIMEOUT
        )
        response.raise_for_status()
        return response.json()
    except (RequestException, ValueError) as e:
        raise exceptions.CollaboratorFailure("Invoice creation", str(e))


def publishStatusChange(event: StatusChangeEvent) -> None:
    try:
        redis.publish(REDIS_EVENT_CHANNEL, event.model_dump_json())
    except RedisError as e:
        raise exceptions.CollaboratorFailure("Status stream", str(e))


def resolveShift(session: Session, at: datetime) -> Optional[str]:
    """
    Find the active shift covering `at` in station local time.

    Example:
        With shifts 06:00-14:00, 14:00-22:00 and 22:00-06:00, a moment at
        23:30 local resolves to the third shift.

    Returns:
        Optional[str]: Shift id, or None when no active shift covers `at`.
    """
    moment = toUTC(at).astimezone(TMZ_STATION).time()
    try:
        shifts = (
            session.query(Shift)
            .filter(Shift.is_active.is_(True))
            .order_by(Shift.starting_at.asc())
            .all()
        )
    except SQLAlchemyError as e:
        session.rollback()
        raise exceptions.CollaboratorFailure("Shift resolution", str(e))

    for shift in shifts:
        if isWithinWindow(moment, shift.starting_at, shift.ending_at):
            return shift.id
    return None
