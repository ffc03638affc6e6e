from uuid import uuid4
from sqlalchemy import (
    JSON,
    TEXT,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Time,
    create_engine,
    func,
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.dialects.postgresql import JSONB

from busstation.src.constants import (
    DATABASE_URL,
    MAX_CODE_LENGTH,
    MAX_NOTE_LENGTH,
    MAX_REASON_LENGTH,
    PSQL_DB_DRIVER,
    PSQL_DB_HOST,
    PSQL_DB_PASSWORD,
    PSQL_DB_NAME,
    PSQL_DB_PORT,
    PSQL_DB_USERNAME,
)
from busstation.src.enums import DispatchStatus


# Global DBMS variables
dbURL = (
    DATABASE_URL
    or f"{PSQL_DB_DRIVER}://{PSQL_DB_USERNAME}:{PSQL_DB_PASSWORD}@{PSQL_DB_HOST}:{PSQL_DB_PORT}/{PSQL_DB_NAME}"
)
engine = create_engine(url=dbURL, echo=False)
sessionMaker = sessionmaker(bind=engine, expire_on_commit=False)
ORMbase = declarative_base()

JSONType = JSON().with_variant(JSONB, "postgresql")


def _newID() -> str:
    return str(uuid4())


# --------------------------------- Dispatch DB Models -----------------------------------------#
class DispatchRecord(ORMbase):
    """
    Represents one visit of a vehicle to the station, from check-in to the
    physical exit through the gate.

    The record moves through the dispatch status table one phase at a time.
    Each phase owns a group of columns that are filled when the phase is
    reached and cleared again if the record is sent back (permit retry).

    Columns:
        id (String(36)):
            Primary key. UUID generated at creation, never changed.

        vehicle_id / driver_id (String(64)):
            Identifiers owned by the fleet service. Required.

        route_id / schedule_id (String(64)):
            Identifiers owned by the route service. Optional, and may be
            corrected while dropping passengers or issuing the permit.

        vehicle_plate_number, vehicle_operator_id, vehicle_operator_name,
        vehicle_operator_code, driver_name, route_name:
            Display snapshot copied from the fleet service. A one-way
            projection refreshed on a best-effort basis, never a source of truth.

        status (String(32)):
            Current value of `DispatchStatus`. Indexed for listing.

        entry_time, entry_by, entry_shift_id:
            Check-in phase. `entry_time` is always set.

        passenger_drop_time, passengers_arrived, passenger_drop_by, passenger_drop_shift_id:
            Passenger drop-off phase.

        boarding_permit_time, planned_departure_time, transport_order_code,
        seat_count, permit_status, boarding_permit_by, permit_shift_id:
            Boarding permit phase, shared by the approved and rejected outcomes.

        rejection_reason, last_rejected_on, rejection_count:
            Audit of permit rejections. Kept when the permit is retried.

        payment_time, payment_amount, payment_method, invoice_number,
        payment_by, payment_shift_id:
            Payment phase.

        departure_order_time, passengers_departing, departure_order_by,
        departure_order_shift_id:
            Departure order phase.

        departure_time, departure_by, departure_shift_id:
            Departed phase.

        exit_time, exit_by, exit_shift_id:
            Exit phase. Terminal.

        cancelled_on, cancelled_by, cancel_reason:
            Set once when the record is cancelled. Terminal.

        notes (TEXT):
            Free-form remarks, up to 1024 characters.

        attributes (JSON):
            Extension bag, stored in the `metadata` column.

        updated_on (DateTime):
            Bumped on every mutation.

        created_on (DateTime):
            Set once at insertion.
    """

    __tablename__ = "dispatch_record"

    id = Column(String(36), primary_key=True, default=_newID)
    vehicle_id = Column(String(64), nullable=False, index=True)
    driver_id = Column(String(64), nullable=False, index=True)
    route_id = Column(String(64), index=True)
    schedule_id = Column(String(64))
    # Display snapshot
    vehicle_plate_number = Column(String(32))
    vehicle_operator_id = Column(String(64), index=True)
    vehicle_operator_name = Column(String(128))
    vehicle_operator_code = Column(String(32))
    driver_name = Column(String(128))
    route_name = Column(String(128))
    # Status
    status = Column(
        String(32), nullable=False, index=True, default=DispatchStatus.ENTERED.value
    )
    # Entry
    entry_time = Column(DateTime(timezone=True), nullable=False, index=True)
    entry_by = Column(String(64))
    entry_shift_id = Column(String(36))
    # Passenger drop
    passenger_drop_time = Column(DateTime(timezone=True))
    passengers_arrived = Column(Integer)
    passenger_drop_by = Column(String(64))
    passenger_drop_shift_id = Column(String(36))
    # Boarding permit
    boarding_permit_time = Column(DateTime(timezone=True))
    planned_departure_time = Column(DateTime(timezone=True))
    transport_order_code = Column(String(MAX_CODE_LENGTH))
    seat_count = Column(Integer)
    permit_status = Column(String(16))
    boarding_permit_by = Column(String(64))
    permit_shift_id = Column(String(36))
    # Rejection audit
    rejection_reason = Column(String(MAX_REASON_LENGTH))
    last_rejected_on = Column(DateTime(timezone=True))
    rejection_count = Column(Integer, nullable=False, default=0)
    # Payment
    payment_time = Column(DateTime(timezone=True))
    payment_amount = Column(Numeric(12, 2))
    payment_method = Column(String(16))
    invoice_number = Column(String(MAX_CODE_LENGTH))
    payment_by = Column(String(64))
    payment_shift_id = Column(String(36))
    # Departure order
    departure_order_time = Column(DateTime(timezone=True))
    passengers_departing = Column(Integer)
    departure_order_by = Column(String(64))
    departure_order_shift_id = Column(String(36))
    # Departed
    departure_time = Column(DateTime(timezone=True))
    departure_by = Column(String(64))
    departure_shift_id = Column(String(36))
    # Exit
    exit_time = Column(DateTime(timezone=True))
    exit_by = Column(String(64))
    exit_shift_id = Column(String(36))
    # Cancellation
    cancelled_on = Column(DateTime(timezone=True))
    cancelled_by = Column(String(64))
    cancel_reason = Column(String(MAX_REASON_LENGTH))
    # Extension
    notes = Column(TEXT)
    attributes = Column("metadata", JSONType)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class DispatchEvent(ORMbase):
    """
    Append-only history of dispatch status changes.

    One row is written per hop, in the same transaction as the change
    itself, so the history never disagrees with the record.

    Columns:
        id (Integer):
            Primary key.

        dispatch_id (String(36)):
            Foreign key referencing `dispatch_record.id`. Cascades on delete.

        from_status (String(32)):
            Status before the change. Null for the creation event.

        to_status (String(32)):
            Status after the change.

        actor_id (String(64)):
            Who performed the change, as reported by the auth gateway.

        reason (String(500)):
            Rejection or cancellation reason, when the change carries one.

        occurred_on (DateTime):
            Business time of the change.
    """

    __tablename__ = "dispatch_event"

    id = Column(Integer, primary_key=True)
    dispatch_id = Column(
        String(36),
        ForeignKey("dispatch_record.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status = Column(String(32))
    to_status = Column(String(32), nullable=False)
    actor_id = Column(String(64))
    reason = Column(String(MAX_REASON_LENGTH))
    occurred_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Shift(ORMbase):
    """
    A working shift of the station staff.

    A shift whose `starting_at` is later than its `ending_at` runs past
    midnight. Times are station local time.

    Columns:
        id (String(36)):
            Primary key. UUID.

        name (String(32)):
            Display name, e.g. "Shift 1".

        starting_at (Time):
            Inclusive start of the shift.

        ending_at (Time):
            Exclusive end of the shift.

        is_active (Boolean):
            Inactive shifts are ignored by shift resolution.
    """

    __tablename__ = "shift"

    id = Column(String(36), primary_key=True, default=_newID)
    name = Column(String(32), nullable=False, unique=True)
    starting_at = Column(Time, nullable=False)
    ending_at = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(String(MAX_NOTE_LENGTH))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())
