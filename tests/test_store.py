from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from fastapi.encoders import jsonable_encoder

from busstation.src import exceptions, schemas, store, transitions, validators, workflow
from busstation.src.db import DispatchRecord, sessionMaker
from busstation.src.enums import DispatchStatus, OrderIn

STAFF = "staff-1"


def _naiveUTC(value):
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _stored(dispatchId):
    with sessionMaker() as other:
        return jsonable_encoder(store.findDispatch(other, dispatchId))


def test_create_then_find(session, entered):
    record = store.findDispatch(session, entered.id)
    assert record.status == DispatchStatus.ENTERED
    assert record.vehicle_id == "v1"
    assert record.driver_id == "d1"
    assert record.entry_by == STAFF
    assert _naiveUTC(record.entry_time) == datetime(2024, 12, 18, 8, 0)
    assert record.created_on is not None
    assert record.updated_on is not None
    for field in transitions.laterPhaseFields(DispatchStatus.ENTERED):
        assert getattr(record, field) is None
    assert record.cancelled_on is None
    assert record.rejection_count == 0


def test_end_to_end_example(session):
    record = workflow.enter(
        session,
        schemas.EntryPayload(
            vehicle_id="v1",
            driver_id="d1",
            entry_time="2024-12-18T08:00:00Z",
            actor_id=STAFF,
        ),
    )
    assert record.status == DispatchStatus.ENTERED

    record = workflow.dropPassengers(
        session,
        record.id,
        schemas.PassengerDropPayload(passengers_arrived=30, actor_id=STAFF),
    )
    assert record.status == DispatchStatus.PASSENGERS_DROPPED

    record = workflow.issuePermit(
        session,
        record.id,
        schemas.PermitPayload(
            permit_status="approved", transport_order_code="TO-1", actor_id=STAFF
        ),
    )
    assert record.status == DispatchStatus.PERMIT_ISSUED

    record = workflow.pay(
        session,
        record.id,
        schemas.PaymentPayload(payment_amount=150000, payment_method="cash", actor_id=STAFF),
    )
    assert record.status == DispatchStatus.PAID

    record = workflow.orderDeparture(
        session,
        record.id,
        schemas.DepartureOrderPayload(passengers_departing=28, actor_id=STAFF),
    )
    assert record.status == DispatchStatus.DEPARTURE_ORDERED

    record = workflow.recordExit(
        session,
        record.id,
        schemas.ExitPayload(exit_time="2024-12-18T10:30:00Z", actor_id=STAFF),
    )
    assert record.status == DispatchStatus.EXITED
    assert transitions.isTerminal(DispatchStatus(record.status))
    assert _naiveUTC(record.exit_time) == datetime(2024, 12, 18, 10, 30)
    assert _naiveUTC(record.departure_time) == datetime(2024, 12, 18, 10, 30)
    assert record.passengers_arrived == 30
    assert record.transport_order_code == "TO-1"
    assert record.payment_amount == 150000
    assert record.passengers_departing == 28

    history = [(e.from_status, e.to_status) for e in store.findEvents(session, record.id)]
    assert history == [
        (None, "entered"),
        ("entered", "passengers_dropped"),
        ("passengers_dropped", "permit_issued"),
        ("permit_issued", "paid"),
        ("paid", "departure_ordered"),
        ("departure_ordered", "departed"),
        ("departed", "exited"),
    ]

    with pytest.raises(exceptions.IllegalTransition) as error:
        workflow.recordExit(session, record.id, schemas.ExitPayload(actor_id=STAFF))
    assert error.value.allowed_next == []


def test_pay_before_permit_names_the_missing_step(session, dropped):
    with pytest.raises(exceptions.IllegalTransition) as error:
        workflow.pay(
            session, dropped.id, schemas.PaymentPayload(payment_amount=100, actor_id=STAFF)
        )
    assert error.value.current == "passengers_dropped"
    assert error.value.target == "paid"
    assert error.value.allowed_next == ["permit_issued", "permit_rejected"]
    assert error.value.detail["allowed_next"] == ["permit_issued", "permit_rejected"]


def test_failed_transition_leaves_record_untouched(session, dropped):
    before = _stored(dropped.id)
    with pytest.raises(exceptions.IllegalTransition):
        workflow.orderDeparture(
            session, dropped.id, schemas.DepartureOrderPayload(actor_id=STAFF)
        )
    with pytest.raises(exceptions.IllegalTransition):
        workflow.recordExit(session, dropped.id, schemas.ExitPayload(actor_id=STAFF))
    assert _stored(dropped.id) == before
    assert len(store.findEvents(session, dropped.id)) == 2


def test_phase_without_actor_is_refused(session, entered):
    before = _stored(entered.id)
    with pytest.raises(exceptions.InvalidValue) as error:
        workflow.dropPassengers(session, entered.id, schemas.PassengerDropPayload())
    assert "passenger_drop_by" in error.value.detail
    assert _stored(entered.id) == before


def test_entry_without_actor_is_refused(session):
    with pytest.raises(exceptions.InvalidValue) as error:
        workflow.enter(
            session,
            schemas.EntryPayload(
                vehicle_id="v1", driver_id="d1", entry_time="2024-12-18T08:00:00Z"
            ),
        )
    assert "entry_by" in error.value.detail
    assert store.searchDispatch(session, schemas.DispatchFilter()) == []


def test_unknown_id(session):
    with pytest.raises(exceptions.InvalidIdentifier):
        workflow.dropPassengers(
            session, "missing", schemas.PassengerDropPayload(actor_id=STAFF)
        )


def test_corrupt_status_is_reported(session, entered):
    session.query(DispatchRecord).filter(DispatchRecord.id == entered.id).update(
        {"status": "boarding"}
    )
    session.commit()
    with pytest.raises(exceptions.UnknownStatus):
        workflow.dropPassengers(
            session, entered.id, schemas.PassengerDropPayload(actor_id=STAFF)
        )


def test_lost_compare_and_swap_reports_actual_status(session, entered):
    checkHop = validators.dispatchTransition

    def competingWriter(current, target):
        with sessionMaker() as other:
            other.query(DispatchRecord).filter(DispatchRecord.id == entered.id).update(
                {"status": DispatchStatus.CANCELLED.value}
            )
            other.commit()
        return checkHop(current, target)

    with patch.object(validators, "dispatchTransition", side_effect=competingWriter):
        with pytest.raises(exceptions.IllegalTransition) as error:
            workflow.dropPassengers(
                session, entered.id, schemas.PassengerDropPayload(actor_id=STAFF)
            )
    assert error.value.current == "cancelled"
    assert error.value.allowed_next == []
    assert _stored(entered.id)["passenger_drop_time"] is None


def test_rejection_retry_retains_audit(session, rejected):
    assert rejected.status == DispatchStatus.PERMIT_REJECTED
    assert rejected.permit_status == "rejected"
    assert rejected.rejection_count == 1

    with pytest.raises(exceptions.IllegalTransition) as error:
        workflow.pay(
            session, rejected.id, schemas.PaymentPayload(payment_amount=1, actor_id=STAFF)
        )
    assert error.value.allowed_next == ["passengers_dropped"]

    record = workflow.dropPassengers(
        session, rejected.id, schemas.PassengerDropPayload(actor_id=STAFF)
    )
    assert record.status == DispatchStatus.PASSENGERS_DROPPED
    assert record.permit_status is None
    assert record.boarding_permit_time is None
    assert record.rejection_reason == "Expired insurance"
    assert record.last_rejected_on is not None

    record = workflow.issuePermit(
        session,
        record.id,
        schemas.PermitPayload(
            permit_status="rejected", rejection_reason="Driver missing", actor_id=STAFF
        ),
    )
    assert record.rejection_reason == "Driver missing"
    assert record.rejection_count == 2

    reasons = [e.reason for e in store.findEvents(session, record.id) if e.reason]
    assert reasons == ["Expired insurance", "Driver missing"]


def test_retry_operation(session, rejected):
    record = workflow.retryAfterRejection(
        session, rejected.id, schemas.RetryPayload(actor_id=STAFF)
    )
    assert record.status == DispatchStatus.PASSENGERS_DROPPED
    assert record.passengers_arrived == 30

    with pytest.raises(exceptions.IllegalTransition):
        workflow.retryAfterRejection(session, record.id, schemas.RetryPayload(actor_id=STAFF))

    record = workflow.issuePermit(
        session,
        record.id,
        schemas.PermitPayload(
            permit_status="approved", transport_order_code="TO-2", actor_id=STAFF
        ),
    )
    assert record.status == DispatchStatus.PERMIT_ISSUED
    assert record.rejection_reason == "Expired insurance"


def test_replacement_vehicle_is_kept_in_attributes(session, dropped):
    session.query(DispatchRecord).filter(DispatchRecord.id == dropped.id).update(
        {"attributes": {"bay": 4}}
    )
    session.commit()

    record = workflow.issuePermit(
        session,
        dropped.id,
        schemas.PermitPayload(
            permit_status="rejected", replacement_vehicle_id="v9", actor_id=STAFF
        ),
    )
    assert record.attributes == {"bay": 4, "replacement_vehicle_id": "v9"}

    record = workflow.retryAfterRejection(
        session, record.id, schemas.RetryPayload(actor_id=STAFF)
    )
    assert record.attributes["replacement_vehicle_id"] == "v9"

    record = workflow.issuePermit(
        session,
        record.id,
        schemas.PermitPayload(
            permit_status="approved",
            transport_order_code="TO-2",
            replacement_vehicle_id="",
            actor_id=STAFF,
        ),
    )
    assert record.attributes == {"bay": 4}
    assert _stored(record.id)["attributes"] == {"bay": 4}


def test_replacement_vehicle_untouched_when_not_given(session, dropped):
    record = workflow.issuePermit(
        session,
        dropped.id,
        schemas.PermitPayload(
            permit_status="rejected", replacement_vehicle_id="v9", actor_id=STAFF
        ),
    )
    record = workflow.retryAfterRejection(
        session, record.id, schemas.RetryPayload(actor_id=STAFF)
    )
    record = workflow.issuePermit(
        session,
        record.id,
        schemas.PermitPayload(
            permit_status="approved", transport_order_code="TO-2", actor_id=STAFF
        ),
    )
    assert record.attributes == {"replacement_vehicle_id": "v9"}


def test_refused_permit_does_not_record_replacement(session, entered):
    with pytest.raises(exceptions.IllegalTransition):
        workflow.issuePermit(
            session,
            entered.id,
            schemas.PermitPayload(
                permit_status="rejected", replacement_vehicle_id="v9", actor_id=STAFF
            ),
        )
    assert _stored(entered.id)["attributes"] is None


def test_exit_from_departed(session, ordered):
    record = workflow.depart(session, ordered.id, schemas.DeparturePayload(actor_id="gate"))
    assert record.status == DispatchStatus.DEPARTED
    assert record.departure_time is not None
    assert record.departure_by == "gate"

    record = workflow.recordExit(
        session,
        record.id,
        schemas.ExitPayload(passengers_departing=27, actor_id="gate"),
    )
    assert record.status == DispatchStatus.EXITED
    assert record.exit_time is not None
    assert record.passengers_departing == 27


def test_cancel_freezes_record(session, paid):
    before = _stored(paid.id)
    record = workflow.cancel(
        session, paid.id, schemas.CancelPayload(reason="Breakdown", actor_id="admin")
    )
    assert record.status == DispatchStatus.CANCELLED
    assert record.cancel_reason == "Breakdown"
    assert record.cancelled_by == "admin"
    assert record.cancelled_on is not None

    after = _stored(paid.id)
    for field in ("payment_amount", "payment_time", "transport_order_code", "entry_time"):
        assert after[field] == before[field]

    with pytest.raises(exceptions.IllegalTransition) as error:
        workflow.orderDeparture(
            session, paid.id, schemas.DepartureOrderPayload(actor_id=STAFF)
        )
    assert error.value.current == "cancelled"
    assert error.value.allowed_next == []

    with pytest.raises(exceptions.IllegalTransition):
        workflow.cancel(session, paid.id, schemas.CancelPayload(actor_id="admin"))


def test_cannot_cancel_after_exit(session, ordered):
    workflow.recordExit(session, ordered.id, schemas.ExitPayload(actor_id=STAFF))
    with pytest.raises(exceptions.IllegalTransition):
        workflow.cancel(session, ordered.id, schemas.CancelPayload(actor_id="admin"))


def test_cancel_is_not_a_transition(session, entered):
    with pytest.raises(exceptions.IllegalTransition):
        store.transitionDispatch(session, entered.id, schemas.CancelPayload(actor_id="admin"))


def test_edit_entry(session, entered):
    record, changed = workflow.editEntry(
        session, entered.id, schemas.EntryEditPayload(notes="Bay 4", vehicle_id="v1")
    )
    assert changed == ["notes"]
    assert record.notes == "Bay 4"

    record, changed = workflow.editEntry(session, entered.id, schemas.EntryEditPayload())
    assert changed == []


def test_edit_refused_after_permit(session, permitted):
    with pytest.raises(exceptions.ImmutableRecord):
        workflow.editEntry(session, permitted.id, schemas.EntryEditPayload(notes="late"))


def test_remove(session, entered):
    assert workflow.remove(session, entered.id).id == entered.id
    assert store.findDispatch(session, entered.id) is None
    assert store.findEvents(session, entered.id) == []
    assert workflow.remove(session, entered.id) is None


def test_remove_refused_after_departure(session, ordered):
    workflow.depart(session, ordered.id, schemas.DeparturePayload(actor_id=STAFF))
    with pytest.raises(exceptions.ImmutableRecord):
        workflow.remove(session, ordered.id)
    assert store.findDispatch(session, ordered.id) is not None


def test_search_filters_are_conjunctive(session, dropped):
    for vehicle in ("v2", "v3"):
        workflow.enter(
            session,
            schemas.EntryPayload(
                vehicle_id=vehicle,
                driver_id="d2",
                entry_time="2024-12-18T09:00:00Z",
                actor_id=STAFF,
            ),
        )

    found = store.searchDispatch(session, schemas.DispatchFilter(driver_id="d2"))
    assert {r.vehicle_id for r in found} == {"v2", "v3"}

    found = store.searchDispatch(
        session, schemas.DispatchFilter(driver_id="d2", vehicle_id="v3")
    )
    assert [r.vehicle_id for r in found] == ["v3"]

    found = store.searchDispatch(
        session, schemas.DispatchFilter(status=DispatchStatus.PASSENGERS_DROPPED)
    )
    assert [r.id for r in found] == [dropped.id]

    found = store.searchDispatch(
        session,
        schemas.DispatchFilter(
            status_list=[DispatchStatus.ENTERED, DispatchStatus.PASSENGERS_DROPPED],
            order_in=OrderIn.ASC,
        ),
    )
    assert [r.vehicle_id for r in found][0] == "v1"
    assert len(found) == 3

    found = store.searchDispatch(
        session, schemas.DispatchFilter(driver_id="d2", vehicle_id="v1")
    )
    assert found == []


@pytest.mark.parametrize(
    "lower,upper",
    [
        # Station local time, UTC+7
        ("2024-12-18T15:00:00", "2024-12-18T15:00:00"),
        ("2024-12-18T08:00:00Z", "2024-12-18T08:00:00Z"),
        ("2024-12-18T15:00:00+07:00", "2024-12-18T08:30:00+00:00"),
    ],
)
def test_entry_time_range_follows_station_clock(session, lower, upper):
    record = workflow.enter(
        session,
        schemas.EntryPayload(
            vehicle_id="v1", driver_id="d1", entry_time="2024-12-18T15:00:00", actor_id=STAFF
        ),
    )
    workflow.enter(
        session,
        schemas.EntryPayload(
            vehicle_id="v2", driver_id="d1", entry_time="2024-12-18T17:00:00", actor_id=STAFF
        ),
    )

    found = store.searchDispatch(
        session, schemas.DispatchFilter(entry_time_ge=lower, entry_time_le=upper)
    )
    assert [r.id for r in found] == [record.id]


def test_naive_range_bounds_are_not_read_as_utc(session):
    workflow.enter(
        session,
        schemas.EntryPayload(
            vehicle_id="v1", driver_id="d1", entry_time="2024-12-18T15:00:00", actor_id=STAFF
        ),
    )
    # 08:00 local is 01:00 UTC, seven hours before the entry
    found = store.searchDispatch(
        session, schemas.DispatchFilter(entry_time_le="2024-12-18T08:00:00")
    )
    assert found == []


def test_created_on_bounds_are_normalized():
    qFilter = schemas.DispatchFilter(
        created_on_ge="2024-12-18T07:00:00", created_on_le="2024-12-18T07:00:00+00:00"
    )
    assert qFilter.created_on_ge == datetime(2024, 12, 18, 0, 0, tzinfo=timezone.utc)
    assert qFilter.created_on_le == datetime(2024, 12, 18, 7, 0, tzinfo=timezone.utc)
