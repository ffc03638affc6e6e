from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from busstation.src import functions
from busstation.src.constants import (
    MAX_CODE_LENGTH,
    MAX_NOTE_LENGTH,
    MAX_PASSENGERS,
    MAX_REASON_LENGTH,
)
from busstation.src.enums import (
    DispatchAction,
    DispatchOrderBy,
    DispatchStatus,
    OrderIn,
    PaymentMethod,
    PermitStatus,
)


# Attribute key holding the vehicle that runs the trip in place of the entered one
REPLACEMENT_VEHICLE_KEY = "replacement_vehicle_id"


class RequestInfo(BaseModel):
    method: str
    path: str
    actor_id: Optional[str] = None


class HealthStatus(BaseModel):
    status: str
    version: str


class ErrorResponse(BaseModel):
    detail: Any


class StatusChangeEvent(BaseModel):
    id: str
    from_status: Optional[DispatchStatus]
    to_status: DispatchStatus
    at: datetime


# ---------------------------------------------------------------------------
# Phase payloads
# ---------------------------------------------------------------------------
class PhasePayload(BaseModel):
    """
    Input for one workflow phase.

    Every subclass names the action it drives and maps itself onto the
    columns owned by the phase it lands on. `occurred_on` and `shift_id` are
    stamped by the workflow before the payload reaches the store.
    """

    ACTION: ClassVar[DispatchAction]

    actor_id: Optional[str] = None
    shift_id: Optional[str] = None
    occurred_on: Optional[datetime] = None

    @field_validator("occurred_on")
    @classmethod
    def _occurredOnUTC(cls, value):
        return functions.toUTC(value)

    def action(self) -> DispatchAction:
        return self.ACTION

    def timestamp(self) -> Optional[datetime]:
        """Business time of the phase if the caller supplied one."""
        return self.occurred_on

    def phaseValues(self, status: DispatchStatus) -> Dict[str, Any]:
        raise NotImplementedError

    def attributeChanges(self) -> Dict[str, Any]:
        """Keys to merge into the record attributes. A None value removes the key."""
        return {}


class EntryPayload(PhasePayload):
    ACTION = DispatchAction.ENTER

    vehicle_id: str = Field(min_length=1)
    driver_id: str = Field(min_length=1)
    entry_time: datetime
    route_id: Optional[str] = Field(default=None, min_length=1)
    schedule_id: Optional[str] = Field(default=None, min_length=1)
    notes: Optional[str] = Field(default=None, max_length=MAX_NOTE_LENGTH)
    attributes: Optional[Dict[str, Any]] = None

    @field_validator("entry_time")
    @classmethod
    def _entryTimeUTC(cls, value):
        return functions.toUTC(value)

    def timestamp(self) -> Optional[datetime]:
        return self.entry_time

    def phaseValues(self, status: DispatchStatus) -> Dict[str, Any]:
        return {
            "vehicle_id": self.vehicle_id,
            "driver_id": self.driver_id,
            "route_id": self.route_id,
            "schedule_id": self.schedule_id,
            "entry_time": self.entry_time,
            "entry_by": self.actor_id,
            "entry_shift_id": self.shift_id,
            "notes": self.notes,
            "attributes": self.attributes,
        }


class PassengerDropPayload(PhasePayload):
    ACTION = DispatchAction.DROP_PASSENGERS

    passengers_arrived: Optional[int] = Field(default=None, ge=0, le=MAX_PASSENGERS)
    route_id: Optional[str] = Field(default=None, min_length=1)

    def phaseValues(self, status: DispatchStatus) -> Dict[str, Any]:
        values = {
            "passenger_drop_time": self.occurred_on,
            "passengers_arrived": self.passengers_arrived,
            "passenger_drop_by": self.actor_id,
            "passenger_drop_shift_id": self.shift_id,
        }
        if self.route_id is not None:
            values["route_id"] = self.route_id
        return values


class RetryPayload(PassengerDropPayload):
    """Passenger drop recorded again after a rejected permit."""

    ACTION = DispatchAction.RETRY_AFTER_REJECTION

    def phaseValues(self, status: DispatchStatus) -> Dict[str, Any]:
        values = super().phaseValues(status)
        # Keep the count from the first drop unless a new one is given
        if self.passengers_arrived is None:
            values.pop("passengers_arrived")
        return values


class PermitPayload(PhasePayload):
    permit_status: PermitStatus
    transport_order_code: Optional[str] = Field(
        default=None, max_length=MAX_CODE_LENGTH
    )
    planned_departure_time: Optional[datetime] = None
    seat_count: Optional[int] = Field(default=None, gt=0)
    rejection_reason: Optional[str] = Field(default=None, max_length=MAX_REASON_LENGTH)
    route_id: Optional[str] = Field(default=None, min_length=1)
    schedule_id: Optional[str] = Field(default=None, min_length=1)
    # An empty string removes a previously recorded replacement
    replacement_vehicle_id: Optional[str] = Field(default=None, max_length=64)
    clear_replacement_vehicle: bool = False

    @field_validator("planned_departure_time")
    @classmethod
    def _plannedDepartureUTC(cls, value):
        return functions.toUTC(value)

    @model_validator(mode="after")
    def _approvalNeedsOrderCode(self):
        if self.permit_status == PermitStatus.APPROVED and not self.transport_order_code:
            raise ValueError("Transport order code is required for approval")
        return self

    def action(self) -> DispatchAction:
        if self.permit_status == PermitStatus.APPROVED:
            return DispatchAction.ISSUE_PERMIT
        return DispatchAction.REJECT_PERMIT

    def phaseValues(self, status: DispatchStatus) -> Dict[str, Any]:
        values = {
            "boarding_permit_time": self.occurred_on,
            "planned_departure_time": self.planned_departure_time,
            "transport_order_code": self.transport_order_code,
            "seat_count": self.seat_count,
            "permit_status": self.permit_status.value,
            "boarding_permit_by": self.actor_id,
            "permit_shift_id": self.shift_id,
        }
        if self.permit_status == PermitStatus.REJECTED:
            values["rejection_reason"] = self.rejection_reason
            values["last_rejected_on"] = self.occurred_on
        if self.route_id is not None:
            values["route_id"] = self.route_id
        if self.schedule_id is not None:
            values["schedule_id"] = self.schedule_id
        return values

    def attributeChanges(self) -> Dict[str, Any]:
        if self.clear_replacement_vehicle or self.replacement_vehicle_id == "":
            return {REPLACEMENT_VEHICLE_KEY: None}
        if self.replacement_vehicle_id:
            return {REPLACEMENT_VEHICLE_KEY: self.replacement_vehicle_id}
        return {}


class PaymentPayload(PhasePayload):
    ACTION = DispatchAction.PAY

    payment_amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    payment_method: PaymentMethod = PaymentMethod.CASH
    invoice_number: Optional[str] = Field(default=None, max_length=MAX_CODE_LENGTH)

    def phaseValues(self, status: DispatchStatus) -> Dict[str, Any]:
        return {
            "payment_time": self.occurred_on,
            "payment_amount": self.payment_amount,
            "payment_method": self.payment_method.value,
            "invoice_number": self.invoice_number,
            "payment_by": self.actor_id,
            "payment_shift_id": self.shift_id,
        }


class DepartureOrderPayload(PhasePayload):
    ACTION = DispatchAction.ORDER_DEPARTURE

    passengers_departing: Optional[int] = Field(default=None, ge=0, le=MAX_PASSENGERS)

    def phaseValues(self, status: DispatchStatus) -> Dict[str, Any]:
        return {
            "departure_order_time": self.occurred_on,
            "passengers_departing": self.passengers_departing,
            "departure_order_by": self.actor_id,
            "departure_order_shift_id": self.shift_id,
        }


class DeparturePayload(PhasePayload):
    ACTION = DispatchAction.DEPART

    def phaseValues(self, status: DispatchStatus) -> Dict[str, Any]:
        return {
            "departure_time": self.timestamp() or self.occurred_on,
            "departure_by": self.actor_id,
            "departure_shift_id": self.shift_id,
        }


class ExitPayload(DeparturePayload):
    """
    Physical exit. Walks through DEPARTED first when the vehicle has only
    been ordered out, stamping both phases with the same time and actor.
    """

    ACTION = DispatchAction.EXIT

    exit_time: Optional[datetime] = None
    passengers_departing: Optional[int] = Field(default=None, ge=0, le=MAX_PASSENGERS)

    @field_validator("exit_time")
    @classmethod
    def _exitTimeUTC(cls, value):
        return functions.toUTC(value)

    def timestamp(self) -> Optional[datetime]:
        return self.exit_time or self.occurred_on

    def phaseValues(self, status: DispatchStatus) -> Dict[str, Any]:
        if status == DispatchStatus.DEPARTED:
            return super().phaseValues(status)
        values = {
            "exit_time": self.timestamp(),
            "exit_by": self.actor_id,
            "exit_shift_id": self.shift_id,
        }
        if self.passengers_departing is not None:
            values["passengers_departing"] = self.passengers_departing
        return values


class CancelPayload(PhasePayload):
    ACTION = DispatchAction.CANCEL

    reason: Optional[str] = Field(default=None, min_length=1, max_length=MAX_REASON_LENGTH)

    def phaseValues(self, status: DispatchStatus) -> Dict[str, Any]:
        return {
            "cancelled_on": self.occurred_on,
            "cancelled_by": self.actor_id,
            "cancel_reason": self.reason,
        }


class EntryEditPayload(BaseModel):
    """Corrections to the entry phase while the record is still editable."""

    actor_id: Optional[str] = None
    vehicle_id: Optional[str] = Field(default=None, min_length=1)
    driver_id: Optional[str] = Field(default=None, min_length=1)
    route_id: Optional[str] = Field(default=None, min_length=1)
    entry_time: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=MAX_NOTE_LENGTH)

    @field_validator("entry_time")
    @classmethod
    def _entryTimeUTC(cls, value):
        return functions.toUTC(value)


class DispatchFilter(BaseModel):
    """Conjunctive listing filters. Every supplied criterion must match."""

    id: Optional[str] = None
    status: Optional[DispatchStatus] = None
    status_list: Optional[List[DispatchStatus]] = None
    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    route_id: Optional[str] = None
    operator_id: Optional[str] = None
    entry_time_ge: Optional[datetime] = None
    entry_time_le: Optional[datetime] = None
    created_on_ge: Optional[datetime] = None
    created_on_le: Optional[datetime] = None
    order_by: DispatchOrderBy = DispatchOrderBy.entry_time
    order_in: OrderIn = OrderIn.DESC
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=20, gt=0, le=100)

    @field_validator("entry_time_ge", "entry_time_le", "created_on_ge", "created_on_le")
    @classmethod
    def _boundsUTC(cls, value):
        return functions.toUTC(value)
