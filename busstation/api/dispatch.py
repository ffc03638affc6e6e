from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from busstation.src.db import sessionMaker
from busstation.src import exceptions, getters, schemas, store, transitions, workflow
from busstation.src.loggers import logEvent
from busstation.src.enums import (
    DispatchOrderBy,
    DispatchStatus,
    OrderIn,
    PaymentMethod,
    PermitStatus,
)
from busstation.src.constants import (
    MAX_CODE_LENGTH,
    MAX_NOTE_LENGTH,
    MAX_PASSENGERS,
    MAX_REASON_LENGTH,
)
from busstation.src.functions import enumStr, makeExceptionResponses
from busstation.src.urls import (
    URL_CANCEL,
    URL_DEPARTURE,
    URL_DEPARTURE_ORDER,
    URL_DISPATCH,
    URL_DISPATCH_EVENT,
    URL_DISPATCH_STATUS,
    URL_EXIT,
    URL_PASSENGER_DROP,
    URL_PAYMENT,
    URL_PERMIT,
    URL_PERMIT_RETRY,
)

route_station = APIRouter()


## Output Schema
class DispatchSchema(BaseModel):
    id: str
    vehicle_id: str
    driver_id: str
    route_id: Optional[str]
    schedule_id: Optional[str]
    vehicle_plate_number: Optional[str]
    vehicle_operator_id: Optional[str]
    vehicle_operator_name: Optional[str]
    vehicle_operator_code: Optional[str]
    driver_name: Optional[str]
    route_name: Optional[str]
    status: DispatchStatus
    entry_time: datetime
    entry_by: Optional[str]
    entry_shift_id: Optional[str]
    passenger_drop_time: Optional[datetime]
    passengers_arrived: Optional[int]
    passenger_drop_by: Optional[str]
    passenger_drop_shift_id: Optional[str]
    boarding_permit_time: Optional[datetime]
    planned_departure_time: Optional[datetime]
    transport_order_code: Optional[str]
    seat_count: Optional[int]
    permit_status: Optional[PermitStatus]
    boarding_permit_by: Optional[str]
    permit_shift_id: Optional[str]
    rejection_reason: Optional[str]
    last_rejected_on: Optional[datetime]
    rejection_count: int
    payment_time: Optional[datetime]
    payment_amount: Optional[Decimal]
    payment_method: Optional[PaymentMethod]
    invoice_number: Optional[str]
    payment_by: Optional[str]
    payment_shift_id: Optional[str]
    departure_order_time: Optional[datetime]
    passengers_departing: Optional[int]
    departure_order_by: Optional[str]
    departure_order_shift_id: Optional[str]
    departure_time: Optional[datetime]
    departure_by: Optional[str]
    departure_shift_id: Optional[str]
    exit_time: Optional[datetime]
    exit_by: Optional[str]
    exit_shift_id: Optional[str]
    cancelled_on: Optional[datetime]
    cancelled_by: Optional[str]
    cancel_reason: Optional[str]
    notes: Optional[str]
    attributes: Optional[Dict[str, Any]]
    updated_on: Optional[datetime]
    created_on: datetime


class DispatchEventSchema(BaseModel):
    id: int
    dispatch_id: str
    from_status: Optional[DispatchStatus]
    to_status: DispatchStatus
    actor_id: Optional[str]
    reason: Optional[str]
    occurred_on: datetime


class StatusSchema(BaseModel):
    status: DispatchStatus
    name: str
    next: List[DispatchStatus]
    is_terminal: bool


## Input Forms
class CreateForm(BaseModel):
    vehicle_id: str = Field(Form(min_length=1, max_length=64))
    driver_id: str = Field(Form(min_length=1, max_length=64))
    entry_time: datetime = Field(Form())
    route_id: str | None = Field(Form(max_length=64, default=None))
    schedule_id: str | None = Field(Form(max_length=64, default=None))
    shift_id: str | None = Field(Form(max_length=36, default=None))
    notes: str | None = Field(Form(max_length=MAX_NOTE_LENGTH, default=None))


class UpdateForm(BaseModel):
    id: str = Field(Form(max_length=36))
    vehicle_id: str | None = Field(Form(min_length=1, max_length=64, default=None))
    driver_id: str | None = Field(Form(min_length=1, max_length=64, default=None))
    route_id: str | None = Field(Form(min_length=1, max_length=64, default=None))
    entry_time: datetime | None = Field(Form(default=None))
    notes: str | None = Field(Form(max_length=MAX_NOTE_LENGTH, default=None))


class DeleteForm(BaseModel):
    id: str = Field(Form(max_length=36))


class PhaseForm(BaseModel):
    id: str = Field(Form(max_length=36))
    shift_id: str | None = Field(Form(max_length=36, default=None))
    occurred_on: datetime | None = Field(Form(default=None))


class PassengerDropForm(PhaseForm):
    passengers_arrived: int | None = Field(Form(ge=0, le=MAX_PASSENGERS, default=None))
    route_id: str | None = Field(Form(min_length=1, max_length=64, default=None))


class PermitForm(PhaseForm):
    permit_status: PermitStatus = Field(Form(description=enumStr(PermitStatus)))
    transport_order_code: str | None = Field(
        Form(max_length=MAX_CODE_LENGTH, default=None)
    )
    planned_departure_time: datetime | None = Field(Form(default=None))
    seat_count: int | None = Field(Form(gt=0, default=None))
    rejection_reason: str | None = Field(
        Form(max_length=MAX_REASON_LENGTH, default=None)
    )
    route_id: str | None = Field(Form(min_length=1, max_length=64, default=None))
    schedule_id: str | None = Field(Form(min_length=1, max_length=64, default=None))
    replacement_vehicle_id: str | None = Field(Form(max_length=64, default=None))
    clear_replacement_vehicle: bool = Field(Form(default=False))


class PaymentForm(PhaseForm):
    payment_amount: Decimal = Field(Form(ge=0))
    payment_method: PaymentMethod = Field(
        Form(description=enumStr(PaymentMethod), default=PaymentMethod.CASH)
    )
    invoice_number: str | None = Field(Form(max_length=MAX_CODE_LENGTH, default=None))


class DepartureOrderForm(PhaseForm):
    passengers_departing: int | None = Field(
        Form(ge=0, le=MAX_PASSENGERS, default=None)
    )


class ExitForm(PhaseForm):
    exit_time: datetime | None = Field(Form(default=None))
    passengers_departing: int | None = Field(
        Form(ge=0, le=MAX_PASSENGERS, default=None)
    )


class CancelForm(BaseModel):
    id: str = Field(Form(max_length=36))
    reason: str | None = Field(
        Form(min_length=1, max_length=MAX_REASON_LENGTH, default=None)
    )


## Query Parameters
class QueryParams(BaseModel):
    # filters
    status: DispatchStatus | None = Field(
        Query(default=None, description=enumStr(DispatchStatus))
    )
    status_list: List[DispatchStatus] | None = Field(Query(default=None))
    vehicle_id: str | None = Field(Query(default=None))
    driver_id: str | None = Field(Query(default=None))
    route_id: str | None = Field(Query(default=None))
    operator_id: str | None = Field(Query(default=None))
    # id based
    id: str | None = Field(Query(default=None))
    # entry_time based
    entry_time_ge: datetime | None = Field(Query(default=None))
    entry_time_le: datetime | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: DispatchOrderBy = Field(
        Query(default=DispatchOrderBy.entry_time, description=enumStr(DispatchOrderBy))
    )
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class EventQueryParams(BaseModel):
    dispatch_id: str = Field(Query())


## Function
def runPhase(operation, payloadClass, fParam: PhaseForm, request_info):
    """Build the phase payload from a form and run one workflow operation."""
    try:
        session = sessionMaker()
        payload = payloadClass(
            **fParam.model_dump(exclude={"id"}), actor_id=request_info.actor_id
        )
        dispatch = operation(session, fParam.id, payload)

        dispatchData = jsonable_encoder(dispatch)
        logEvent(request_info, dispatchData)
        return dispatchData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


TRANSITION_ERRORS = [
    exceptions.InvalidInput,
    exceptions.InvalidIdentifier,
    exceptions.MissingActor,
    exceptions.IllegalTransition(
        DispatchStatus.PASSENGERS_DROPPED,
        DispatchStatus.PAID,
        transitions.nextStatuses(DispatchStatus.PASSENGERS_DROPPED),
    ),
    exceptions.LockAcquireTimeout,
]


## API endpoints [Station]
@route_station.post(
    URL_DISPATCH,
    tags=["Dispatch"],
    response_model=DispatchSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses([exceptions.InvalidInput, exceptions.MissingActor]),
    description="""
    Records a vehicle entering the station.
    The dispatch starts in `entered` status with the entry phase filled.
    The entry shift defaults to the active shift at `entry_time`.
    Logs the entry with the actor forwarded by the gateway.
    """,
)
async def create_dispatch(
    fParam: CreateForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        payload = schemas.EntryPayload(
            **fParam.model_dump(), actor_id=request_info.actor_id
        )
        dispatch = workflow.enter(session, payload)

        dispatchData = jsonable_encoder(dispatch)
        logEvent(request_info, dispatchData)
        return dispatchData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_station.patch(
    URL_DISPATCH,
    tags=["Dispatch"],
    response_model=DispatchSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidInput,
            exceptions.InvalidIdentifier,
            exceptions.MissingActor,
            exceptions.ImmutableRecord(DispatchStatus.PAID),
        ]
    ),
    description="""
    Corrects the vehicle, driver, route, entry time or notes of a dispatch.
    Only allowed while the dispatch is `entered` or `passengers_dropped`.
    Changes are saved only if the dispatch data has been modified.
    """,
)
async def update_dispatch(
    fParam: UpdateForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        payload = schemas.EntryEditPayload(
            **fParam.model_dump(exclude={"id"}), actor_id=request_info.actor_id
        )
        dispatch, changed = workflow.editEntry(session, fParam.id, payload)

        dispatchData = jsonable_encoder(dispatch)
        if changed:
            logEvent(request_info, dispatchData)
        return dispatchData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_station.delete(
    URL_DISPATCH,
    tags=["Dispatch"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=makeExceptionResponses(
        [exceptions.MissingActor, exceptions.ImmutableRecord(DispatchStatus.DEPARTED)]
    ),
    description="""
    Permanently removes a dispatch and its status history.
    Refused once the vehicle has departed.
    Deleting an unknown dispatch is a no-op.
    """,
)
async def delete_dispatch(
    fParam: DeleteForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        dispatch = workflow.remove(session, fParam.id)
        if dispatch is not None:
            logEvent(request_info, jsonable_encoder(dispatch))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_station.get(
    URL_DISPATCH,
    tags=["Dispatch"],
    response_model=List[DispatchSchema],
    description="""
    Fetches dispatches matching every supplied filter.
    Time bounds without an offset are read as station local time.
    Ordered by entry time, newest first, unless asked otherwise.
    """,
)
async def fetch_dispatch(qParam: QueryParams = Depends()):
    try:
        session = sessionMaker()
        qFilter = schemas.DispatchFilter(**qParam.model_dump())
        return store.searchDispatch(session, qFilter)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_station.get(
    URL_DISPATCH_STATUS,
    tags=["Dispatch"],
    response_model=List[StatusSchema],
    description="""
    Lists every dispatch status with its label and the statuses allowed next.
    """,
)
async def fetch_dispatch_status():
    return transitions.statusTable()


@route_station.get(
    URL_DISPATCH_EVENT,
    tags=["Dispatch"],
    response_model=List[DispatchEventSchema],
    description="""
    Fetches the status change history of a dispatch, oldest first.
    """,
)
async def fetch_dispatch_event(qParam: EventQueryParams = Depends()):
    try:
        session = sessionMaker()
        return store.findEvents(session, qParam.dispatch_id)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_station.post(
    URL_PASSENGER_DROP,
    tags=["Dispatch"],
    response_model=DispatchSchema,
    responses=makeExceptionResponses(TRANSITION_ERRORS),
    description="""
    Records the arriving passengers being dropped off.
    Allowed from `entered`, and from `permit_rejected` to retry the permit.
    The route may be corrected at this point.
    """,
)
async def drop_passengers(
    fParam: PassengerDropForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    return runPhase(
        workflow.dropPassengers, schemas.PassengerDropPayload, fParam, request_info
    )


@route_station.post(
    URL_PERMIT,
    tags=["Dispatch"],
    response_model=DispatchSchema,
    responses=makeExceptionResponses(TRANSITION_ERRORS),
    description="""
    Approves or rejects the boarding permit of a dispatch.
    Approval requires a `transport_order_code`.
    A rejection keeps its reason for audit even after the permit is retried.
    `replacement_vehicle_id` records the vehicle running the trip instead;
    `clear_replacement_vehicle` removes it.
    """,
)
async def issue_permit(
    fParam: PermitForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    return runPhase(workflow.issuePermit, schemas.PermitPayload, fParam, request_info)


@route_station.post(
    URL_PERMIT_RETRY,
    tags=["Dispatch"],
    response_model=DispatchSchema,
    responses=makeExceptionResponses(TRANSITION_ERRORS),
    description="""
    Sends a dispatch with a rejected permit back to `passengers_dropped`.
    Only allowed from `permit_rejected`.
    """,
)
async def retry_permit(
    fParam: PassengerDropForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    return runPhase(
        workflow.retryAfterRejection, schemas.RetryPayload, fParam, request_info
    )


@route_station.post(
    URL_PAYMENT,
    tags=["Dispatch"],
    response_model=DispatchSchema,
    responses=makeExceptionResponses(TRANSITION_ERRORS),
    description="""
    Records the station fee payment.
    Only allowed once the permit is issued. An invoice is requested afterwards.
    """,
)
async def pay(
    fParam: PaymentForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    return runPhase(workflow.pay, schemas.PaymentPayload, fParam, request_info)


@route_station.post(
    URL_DEPARTURE_ORDER,
    tags=["Dispatch"],
    response_model=DispatchSchema,
    responses=makeExceptionResponses(TRANSITION_ERRORS),
    description="""
    Orders a paid dispatch to depart, with the departing passenger count.
    """,
)
async def order_departure(
    fParam: DepartureOrderForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    return runPhase(
        workflow.orderDeparture, schemas.DepartureOrderPayload, fParam, request_info
    )


@route_station.post(
    URL_DEPARTURE,
    tags=["Dispatch"],
    response_model=DispatchSchema,
    responses=makeExceptionResponses(TRANSITION_ERRORS),
    description="""
    Marks an ordered dispatch as departed from its bay.
    """,
)
async def depart(
    fParam: PhaseForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    return runPhase(workflow.depart, schemas.DeparturePayload, fParam, request_info)


@route_station.post(
    URL_EXIT,
    tags=["Dispatch"],
    response_model=DispatchSchema,
    responses=makeExceptionResponses(TRANSITION_ERRORS),
    description="""
    Records the vehicle leaving through the gate. Terminal.
    From `departure_ordered` the dispatch passes through `departed` first.
    `exit_time` defaults to now.
    """,
)
async def exit_station(
    fParam: ExitForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    return runPhase(workflow.recordExit, schemas.ExitPayload, fParam, request_info)


@route_station.post(
    URL_CANCEL,
    tags=["Dispatch"],
    response_model=DispatchSchema,
    responses=makeExceptionResponses(TRANSITION_ERRORS),
    description="""
    Cancels a dispatch that has not exited. Terminal and irreversible.
    Every recorded phase is kept as it was at cancellation.
    """,
)
async def cancel_dispatch(
    fParam: CancelForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        payload = schemas.CancelPayload(
            reason=fParam.reason, actor_id=request_info.actor_id
        )
        dispatch = workflow.cancel(session, fParam.id, payload)

        dispatchData = jsonable_encoder(dispatch)
        logEvent(request_info, dispatchData)
        return dispatchData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
