"""
Dispatch record store.

Owns record identity and status. Every write to a record runs under the
record's Redis mutex and lands as a single compare-and-swap UPDATE on
`(id, status)`, so a record is either fully moved to its new status or left
untouched. Each status change appends `DispatchEvent` rows in the same
transaction.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple
from sqlalchemy import inspect
from sqlalchemy.orm.session import Session

from busstation.src import exceptions, schemas, transitions, validators
from busstation.src.db import DispatchEvent, DispatchRecord
from busstation.src.enums import DispatchOrderBy, DispatchStatus, OrderIn
from busstation.src.functions import updateIfChanged
from busstation.src.redis import acquireLock, releaseLock

EDITABLE_FIELDS = (
    DispatchRecord.vehicle_id.key,
    DispatchRecord.driver_id.key,
    DispatchRecord.route_id.key,
    DispatchRecord.entry_time.key,
    DispatchRecord.notes.key,
)


## Helpers
def _columnValues(record: DispatchRecord) -> dict:
    return {
        attr.key: getattr(record, attr.key)
        for attr in inspect(DispatchRecord).column_attrs
    }


def _mergeAttributes(current: Optional[dict], changes: dict) -> dict:
    merged = dict(current or {})
    for key, value in changes.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def _load(session: Session, dispatchId: str) -> DispatchRecord:
    record = (
        session.query(DispatchRecord)
        .populate_existing()
        .filter(DispatchRecord.id == dispatchId)
        .first()
    )
    if record is None:
        raise exceptions.InvalidIdentifier()
    return record


def _compareAndSwap(
    session: Session,
    record: DispatchRecord,
    current: DispatchStatus,
    target: DispatchStatus,
    values: dict,
) -> None:
    """
    Write `values` only if the stored status is still `current`.

    A lost race is reported against the status that actually won.
    """
    rowCount = (
        session.query(DispatchRecord)
        .filter(DispatchRecord.id == record.id, DispatchRecord.status == current.value)
        .update(values, synchronize_session=False)
    )
    if rowCount == 1:
        return

    session.rollback()
    stored = (
        session.query(DispatchRecord.status)
        .filter(DispatchRecord.id == record.id)
        .scalar()
    )
    if stored is None:
        raise exceptions.InvalidIdentifier()
    actual = validators.dispatchStatus(stored)
    raise exceptions.IllegalTransition(actual, target, transitions.nextStatuses(actual))


def _commitChange(
    session: Session,
    record: DispatchRecord,
    current: DispatchStatus,
    route: Tuple[DispatchStatus, ...],
    values: dict,
    actorId: Optional[str],
    occurredOn: datetime,
    reason: Optional[str] = None,
) -> List[DispatchEvent]:
    target = route[-1]
    values[DispatchRecord.status.key] = target.value
    values[DispatchRecord.updated_on.key] = datetime.now(timezone.utc)
    _compareAndSwap(session, record, current, target, values)

    events = []
    fromStatus = current
    for hop in route:
        events.append(
            DispatchEvent(
                dispatch_id=record.id,
                from_status=fromStatus.value,
                to_status=hop.value,
                actor_id=actorId,
                reason=reason,
                occurred_on=occurredOn,
            )
        )
        fromStatus = hop
    session.add_all(events)
    session.commit()
    session.refresh(record)
    return events


## Operations
def createDispatch(
    session: Session, payload: schemas.EntryPayload
) -> Tuple[DispatchRecord, List[DispatchEvent]]:
    """
    Create a record in `entered` status with the entry phase filled.

    The caller has already validated `payload`; malformed input never gets
    this far because the payload model rejects it.
    """
    values = payload.phaseValues(DispatchStatus.ENTERED)
    validators.phaseConsistency(DispatchStatus.ENTERED, values)
    now = datetime.now(timezone.utc)
    try:
        record = DispatchRecord(
            **values,
            status=DispatchStatus.ENTERED.value,
            rejection_count=0,
            updated_on=now,
            created_on=now,
        )
        session.add(record)
        session.flush()
        event = DispatchEvent(
            dispatch_id=record.id,
            from_status=None,
            to_status=DispatchStatus.ENTERED.value,
            actor_id=payload.actor_id,
            occurred_on=payload.entry_time,
        )
        session.add(event)
        session.commit()
        session.refresh(record)
        return record, [event]
    except Exception:
        session.rollback()
        raise


def transitionDispatch(
    session: Session, dispatchId: str, payload: schemas.PhasePayload
) -> Tuple[DispatchRecord, List[DispatchEvent]]:
    """
    Move a record along the status graph as the payload's action requires.

    Each hop of the action's route is validated against the graph, the
    payload is mapped onto the columns of every hop, and the columns of all
    later phases are cleared. Rejections also bump the rejection audit.
    Attribute changes carried by the payload land in the same write.

    Returns:
        Tuple[DispatchRecord, List[DispatchEvent]]: The refreshed record and
        one event per hop.

    Raises:
        exceptions.InvalidIdentifier: Unknown id.
        exceptions.UnknownStatus: The stored status is corrupt.
        exceptions.IllegalTransition: The action is not allowed from the
            current status, or a concurrent writer got there first.
    """
    action = payload.action()
    if payload.occurred_on is None:
        payload = payload.model_copy(update={"occurred_on": datetime.now(timezone.utc)})

    lock = acquireLock(DispatchRecord.__tablename__, dispatchId)
    try:
        record = _load(session, dispatchId)
        current = validators.dispatchStatus(record.status)
        validators.dispatchAction(action, current)
        route = transitions.actionRoute(action, current)

        target = route[-1]
        values = {field: None for field in transitions.laterPhaseFields(target)}
        hopFrom = current
        for hop in route:
            validators.dispatchTransition(hopFrom, hop)
            values.update(payload.phaseValues(hop))
            hopFrom = hop
        validators.phaseConsistency(target, {**_columnValues(record), **values})
        changes = payload.attributeChanges()
        if changes:
            values[DispatchRecord.attributes.key] = _mergeAttributes(
                record.attributes, changes
            )

        reason = None
        if target == DispatchStatus.PERMIT_REJECTED:
            reason = values.get(DispatchRecord.rejection_reason.key)
            values[DispatchRecord.rejection_count.key] = DispatchRecord.rejection_count + 1

        events = _commitChange(
            session,
            record,
            current,
            route,
            values,
            payload.actor_id,
            payload.timestamp() or payload.occurred_on,
            reason,
        )
        return record, events
    except Exception:
        session.rollback()
        raise
    finally:
        releaseLock(lock)


def cancelDispatch(
    session: Session, dispatchId: str, payload: schemas.CancelPayload
) -> Tuple[DispatchRecord, List[DispatchEvent]]:
    """
    Move a non terminal record to `cancelled`.

    Cancellation sits outside the forward graph. Phase columns are frozen as
    they are; only the cancellation columns are written.
    """
    if payload.occurred_on is None:
        payload = payload.model_copy(update={"occurred_on": datetime.now(timezone.utc)})

    lock = acquireLock(DispatchRecord.__tablename__, dispatchId)
    try:
        record = _load(session, dispatchId)
        current = validators.dispatchStatus(record.status)
        validators.cancellation(current)

        target = DispatchStatus.CANCELLED
        values = payload.phaseValues(target)
        validators.phaseConsistency(target, {**_columnValues(record), **values})
        events = _commitChange(
            session,
            record,
            current,
            (target,),
            values,
            payload.actor_id,
            payload.occurred_on,
            payload.reason,
        )
        return record, events
    except Exception:
        session.rollback()
        raise
    finally:
        releaseLock(lock)


def editDispatch(
    session: Session, dispatchId: str, payload: schemas.EntryEditPayload
) -> Tuple[DispatchRecord, List[str]]:
    """
    Correct entry phase details while the record is still editable.

    Returns:
        Tuple[DispatchRecord, List[str]]: The record and the names of the
        columns that actually changed.
    """
    lock = acquireLock(DispatchRecord.__tablename__, dispatchId)
    try:
        record = _load(session, dispatchId)
        current = validators.dispatchStatus(record.status)
        validators.editable(current)

        before = {field: getattr(record, field) for field in EDITABLE_FIELDS}
        updateIfChanged(record, payload, list(EDITABLE_FIELDS))
        changed = [f for f in EDITABLE_FIELDS if before[f] != getattr(record, f)]
        if changed:
            record.updated_on = datetime.now(timezone.utc)
            session.commit()
            session.refresh(record)
        return record, changed
    except Exception:
        session.rollback()
        raise
    finally:
        releaseLock(lock)


def deleteDispatch(session: Session, dispatchId: str) -> Optional[DispatchRecord]:
    """
    Physically remove a record and its history.

    An administrative override outside the status graph. Unknown ids are a
    no-op and return None.

    Raises:
        exceptions.ImmutableRecord: The vehicle has already departed.
    """
    lock = acquireLock(DispatchRecord.__tablename__, dispatchId)
    try:
        record = (
            session.query(DispatchRecord).filter(DispatchRecord.id == dispatchId).first()
        )
        if record is None:
            return None
        validators.deletable(validators.dispatchStatus(record.status))

        session.query(DispatchEvent).filter(
            DispatchEvent.dispatch_id == dispatchId
        ).delete(synchronize_session=False)
        session.delete(record)
        session.commit()
        return record
    except Exception:
        session.rollback()
        raise
    finally:
        releaseLock(lock)


def updateSnapshot(
    session: Session, dispatchId: str, snapshot: dict
) -> Optional[DispatchRecord]:
    """Overwrite the display snapshot columns. Not guarded by status."""
    if not snapshot:
        return None
    try:
        values = dict(snapshot)
        values[DispatchRecord.updated_on.key] = datetime.now(timezone.utc)
        session.query(DispatchRecord).filter(DispatchRecord.id == dispatchId).update(
            values, synchronize_session=False
        )
        session.commit()
        return (
            session.query(DispatchRecord)
            .populate_existing()
            .filter(DispatchRecord.id == dispatchId)
            .first()
        )
    except Exception:
        session.rollback()
        raise


def findDispatch(session: Session, dispatchId: str) -> Optional[DispatchRecord]:
    return session.query(DispatchRecord).filter(DispatchRecord.id == dispatchId).first()


def findEvents(session: Session, dispatchId: str) -> List[DispatchEvent]:
    """Status change history of a record, oldest first."""
    return (
        session.query(DispatchEvent)
        .filter(DispatchEvent.dispatch_id == dispatchId)
        .order_by(DispatchEvent.id.asc())
        .all()
    )


def searchDispatch(session: Session, qParam: schemas.DispatchFilter) -> List[DispatchRecord]:
    query = session.query(DispatchRecord)

    # Filters
    if qParam.id is not None:
        query = query.filter(DispatchRecord.id == qParam.id)
    if qParam.status is not None:
        query = query.filter(DispatchRecord.status == qParam.status.value)
    if qParam.status_list is not None:
        query = query.filter(
            DispatchRecord.status.in_([s.value for s in qParam.status_list])
        )
    if qParam.vehicle_id is not None:
        query = query.filter(DispatchRecord.vehicle_id == qParam.vehicle_id)
    if qParam.driver_id is not None:
        query = query.filter(DispatchRecord.driver_id == qParam.driver_id)
    if qParam.route_id is not None:
        query = query.filter(DispatchRecord.route_id == qParam.route_id)
    if qParam.operator_id is not None:
        query = query.filter(DispatchRecord.vehicle_operator_id == qParam.operator_id)
    # entry_time based
    if qParam.entry_time_ge is not None:
        query = query.filter(DispatchRecord.entry_time >= qParam.entry_time_ge)
    if qParam.entry_time_le is not None:
        query = query.filter(DispatchRecord.entry_time <= qParam.entry_time_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(DispatchRecord.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(DispatchRecord.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(DispatchRecord, DispatchOrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()
