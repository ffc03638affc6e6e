"""
Dispatch workflow operations.

One function per business action. Each stamps the payload with its business
time and default shift, hands it to the store, and then runs the
notifications that follow a committed change: the status change stream,
the fleet snapshot refresh and invoice creation.

Notifications are best-effort. A `CollaboratorFailure` is logged and the
committed status change stands.
"""

from datetime import datetime, timezone
from logging import getLogger
from typing import List, Optional, Tuple
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.session import Session

from busstation.src import collaborators, exceptions, schemas, store
from busstation.src.db import DispatchEvent, DispatchRecord

logger = getLogger("Dispatch")


## Helpers
def _bestEffort(function, *args):
    try:
        return function(*args)
    except exceptions.CollaboratorFailure as e:
        logger.warning("%s", e.detail)
        return None


def stampPayload(session: Session, payload: schemas.PhasePayload) -> schemas.PhasePayload:
    """
    Fill in the business time and the shift of a phase payload.

    The time defaults to now. The shift defaults to the active shift covering
    that time; when it cannot be resolved the phase is recorded without one.
    """
    at = payload.timestamp() or datetime.now(timezone.utc)
    update = {}
    if payload.occurred_on is None:
        update["occurred_on"] = at
    if payload.shift_id is None:
        shiftId = _bestEffort(collaborators.resolveShift, session, at)
        if shiftId is not None:
            update["shift_id"] = shiftId
    if update:
        return payload.model_copy(update=update)
    return payload


def _publish(events: List[DispatchEvent]) -> None:
    for event in events:
        change = schemas.StatusChangeEvent(
            id=event.dispatch_id,
            from_status=event.from_status,
            to_status=event.to_status,
            at=event.occurred_on,
        )
        _bestEffort(collaborators.publishStatusChange, change)


def _refreshSnapshot(session: Session, record: DispatchRecord) -> DispatchRecord:
    snapshot = _bestEffort(
        collaborators.fetchFleetSnapshot,
        record.vehicle_id,
        record.driver_id,
        record.route_id,
    )
    if not snapshot:
        return record
    try:
        return store.updateSnapshot(session, record.id, snapshot) or record
    except SQLAlchemyError as e:
        logger.warning("Snapshot refresh of %s failed: %s", record.id, e)
        return record


def _transition(
    session: Session, dispatchId: str, payload: schemas.PhasePayload
) -> DispatchRecord:
    payload = stampPayload(session, payload)
    record, events = store.transitionDispatch(session, dispatchId, payload)
    _publish(events)
    return record


## Operations
def enter(session: Session, payload: schemas.EntryPayload) -> DispatchRecord:
    payload = stampPayload(session, payload)
    record, events = store.createDispatch(session, payload)
    _publish(events)
    return _refreshSnapshot(session, record)


def dropPassengers(
    session: Session, dispatchId: str, payload: schemas.PassengerDropPayload
) -> DispatchRecord:
    record = _transition(session, dispatchId, payload)
    if payload.route_id is not None:
        record = _refreshSnapshot(session, record)
    return record


def issuePermit(
    session: Session, dispatchId: str, payload: schemas.PermitPayload
) -> DispatchRecord:
    """Approve or reject the boarding permit, as `permit_status` says."""
    record = _transition(session, dispatchId, payload)
    if payload.route_id is not None:
        record = _refreshSnapshot(session, record)
    return record


def retryAfterRejection(
    session: Session, dispatchId: str, payload: schemas.RetryPayload
) -> DispatchRecord:
    return _transition(session, dispatchId, payload)


def pay(session: Session, dispatchId: str, payload: schemas.PaymentPayload) -> DispatchRecord:
    record = _transition(session, dispatchId, payload)
    _bestEffort(collaborators.createInvoice, record)
    return record


def orderDeparture(
    session: Session, dispatchId: str, payload: schemas.DepartureOrderPayload
) -> DispatchRecord:
    return _transition(session, dispatchId, payload)


def depart(
    session: Session, dispatchId: str, payload: schemas.DeparturePayload
) -> DispatchRecord:
    return _transition(session, dispatchId, payload)


def recordExit(
    session: Session, dispatchId: str, payload: schemas.ExitPayload
) -> DispatchRecord:
    """Exit through the gate, passing through `departed` when needed."""
    return _transition(session, dispatchId, payload)


def cancel(
    session: Session, dispatchId: str, payload: schemas.CancelPayload
) -> DispatchRecord:
    if payload.occurred_on is None:
        payload = payload.model_copy(update={"occurred_on": datetime.now(timezone.utc)})
    record, events = store.cancelDispatch(session, dispatchId, payload)
    _publish(events)
    return record


def editEntry(
    session: Session, dispatchId: str, payload: schemas.EntryEditPayload
) -> Tuple[DispatchRecord, List[str]]:
    record, changed = store.editDispatch(session, dispatchId, payload)
    snapshotKeys = (
        DispatchRecord.vehicle_id.key,
        DispatchRecord.driver_id.key,
        DispatchRecord.route_id.key,
    )
    if any(field in snapshotKeys for field in changed):
        record = _refreshSnapshot(session, record)
    return record, changed


def remove(session: Session, dispatchId: str) -> Optional[DispatchRecord]:
    return store.deleteDispatch(session, dispatchId)
