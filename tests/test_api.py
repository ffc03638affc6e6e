import pytest
from fastapi import status
from fastapi.testclient import TestClient

from busstation.api.dispatch import TRANSITION_ERRORS
from busstation.main import app
from busstation.src.constants import API_VERSION, HEADER_ACTOR_ID
from busstation.src.functions import makeExceptionResponses

BASE = "/station/dispatch"
ACTOR = {HEADER_ACTOR_ID: "staff-9"}


@pytest.fixture
def client():
    with TestClient(app, headers=ACTOR) as client:
        yield client


@pytest.fixture
def created(client):
    response = client.post(
        BASE,
        headers=ACTOR,
        data={
            "vehicle_id": "v1",
            "driver_id": "d1",
            "entry_time": "2024-12-18T08:00:00Z",
            "notes": "Bay 2",
        },
    )
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "OK", "version": API_VERSION}


def test_create_dispatch(created, openobserve):
    assert created["status"] == "entered"
    assert created["entry_by"] == "staff-9"
    assert created["rejection_count"] == 0
    assert created["passenger_drop_time"] is None
    logged = openobserve.call_args.args[0]
    assert logged["_actor_id"] == "staff-9"
    assert logged["_path"] == BASE
    assert logged["id"] == created["id"]


def test_create_requires_vehicle(client):
    response = client.post(
        BASE, data={"driver_id": "d1", "entry_time": "2024-12-18T08:00:00Z"}
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.parametrize("actor", [None, ""])
def test_mutations_require_actor(created, actor):
    headers = {} if actor is None else {HEADER_ACTOR_ID: actor}
    anonymous = TestClient(app, headers=headers)
    response = anonymous.post(
        BASE,
        data={"vehicle_id": "v2", "driver_id": "d2", "entry_time": "2024-12-18T09:00:00Z"},
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.headers["X-Error"] == "MissingActor"

    response = anonymous.post(f"{BASE}/passenger_drop", data={"id": created["id"]})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

    # Reads stay open
    response = anonymous.get(BASE, params={"id": created["id"]})
    assert response.status_code == status.HTTP_200_OK
    assert response.json()[0]["status"] == "entered"
    assert response.json()[0]["passenger_drop_by"] is None


def test_out_of_order_step_names_allowed_next(client, created):
    response = client.post(
        f"{BASE}/passenger_drop",
        headers=ACTOR,
        data={"id": created["id"], "passengers_arrived": 30},
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["passenger_drop_by"] == "staff-9"

    response = client.post(
        f"{BASE}/payment", data={"id": created["id"], "payment_amount": "150000"}
    )
    assert response.status_code == status.HTTP_406_NOT_ACCEPTABLE
    assert response.headers["X-Error"] == "IllegalTransition"
    detail = response.json()["detail"]
    assert detail["current"] == "passengers_dropped"
    assert detail["target"] == "paid"
    assert detail["allowed_next"] == ["permit_issued", "permit_rejected"]


def test_approval_without_code_is_rejected(client, created):
    client.post(f"{BASE}/passenger_drop", data={"id": created["id"]})
    response = client.post(
        f"{BASE}/permit", data={"id": created["id"], "permit_status": "approved"}
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.headers["X-Error"] == "PydanticError"


def test_full_visit_over_http(client, created):
    dispatchId = created["id"]
    steps = [
        ("passenger_drop", {"passengers_arrived": 30}),
        ("permit", {"permit_status": "rejected", "rejection_reason": "No insurance"}),
        ("permit/retry", {}),
        ("permit", {"permit_status": "approved", "transport_order_code": "TO-1"}),
        ("payment", {"payment_amount": "150000", "payment_method": "transfer"}),
        ("departure_order", {"passengers_departing": 28}),
        ("exit", {"exit_time": "2024-12-18T10:30:00Z"}),
    ]
    for path, data in steps:
        response = client.post(f"{BASE}/{path}", data={"id": dispatchId, **data})
        assert response.status_code == status.HTTP_200_OK, (path, response.text)

    dispatch = response.json()
    assert dispatch["status"] == "exited"
    assert dispatch["rejection_reason"] == "No insurance"
    assert dispatch["rejection_count"] == 1
    assert dispatch["payment_method"] == "transfer"

    response = client.get(f"{BASE}/event", params={"dispatch_id": dispatchId})
    assert response.status_code == status.HTTP_200_OK
    assert [e["to_status"] for e in response.json()] == [
        "entered",
        "passengers_dropped",
        "permit_rejected",
        "passengers_dropped",
        "permit_issued",
        "paid",
        "departure_ordered",
        "departed",
        "exited",
    ]


def test_unknown_dispatch(client):
    response = client.post(f"{BASE}/passenger_drop", data={"id": "missing"})
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.headers["X-Error"] == "InvalidIdentifier"


def test_cancel(client, created):
    response = client.post(
        f"{BASE}/cancel", headers=ACTOR, data={"id": created["id"], "reason": "Breakdown"}
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancelled_by"] == "staff-9"

    response = client.post(f"{BASE}/passenger_drop", data={"id": created["id"]})
    assert response.status_code == status.HTTP_406_NOT_ACCEPTABLE
    assert response.json()["detail"]["allowed_next"] == []


def test_edit_dispatch(client, created):
    response = client.patch(BASE, data={"id": created["id"], "notes": "Bay 5"})
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["notes"] == "Bay 5"


def test_fetch_with_filters(client, created):
    client.post(
        BASE,
        data={"vehicle_id": "v2", "driver_id": "d2", "entry_time": "2024-12-18T09:00:00Z"},
    )

    response = client.get(BASE, params={"driver_id": "d2"})
    assert response.status_code == status.HTTP_200_OK
    assert [d["vehicle_id"] for d in response.json()] == ["v2"]

    response = client.get(BASE, params={"status": "entered"})
    assert [d["vehicle_id"] for d in response.json()] == ["v2", "v1"]

    response = client.get(BASE, params={"status": "boarding"})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_fetch_status_table(client):
    response = client.get(f"{BASE}/status")
    assert response.status_code == status.HTTP_200_OK
    table = {row["status"]: row for row in response.json()}
    assert table["passengers_dropped"]["next"] == ["permit_issued", "permit_rejected"]
    assert table["exited"]["is_terminal"] is True
    assert table["cancelled"]["next"] == []


def test_delete_dispatch(client, created):
    response = client.request("DELETE", BASE, data={"id": created["id"]})
    assert response.status_code == status.HTTP_204_NO_CONTENT

    response = client.get(BASE, params={"id": created["id"]})
    assert response.json() == []

    response = client.request("DELETE", BASE, data={"id": created["id"]})
    assert response.status_code == status.HTTP_204_NO_CONTENT


def test_permit_records_replacement_vehicle(client, created):
    dispatchId = created["id"]
    client.post(f"{BASE}/passenger_drop", data={"id": dispatchId})
    response = client.post(
        f"{BASE}/permit",
        data={
            "id": dispatchId,
            "permit_status": "rejected",
            "rejection_reason": "Brake failure",
            "replacement_vehicle_id": "v9",
        },
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["attributes"] == {"replacement_vehicle_id": "v9"}

    client.post(f"{BASE}/permit/retry", data={"id": dispatchId})
    response = client.post(
        f"{BASE}/permit",
        data={
            "id": dispatchId,
            "permit_status": "approved",
            "transport_order_code": "TO-1",
            "clear_replacement_vehicle": "true",
        },
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["attributes"] == {}


@pytest.mark.parametrize(
    "bounds",
    [
        # Station local time, UTC+7
        {"entry_time_ge": "2024-12-18T15:00:00", "entry_time_le": "2024-12-18T15:00:00"},
        {"entry_time_ge": "2024-12-18T08:00:00Z", "entry_time_le": "2024-12-18T08:00:00Z"},
    ],
)
def test_fetch_by_entry_time_range(client, created, bounds):
    response = client.get(BASE, params=bounds)
    assert response.status_code == status.HTTP_200_OK
    assert [d["id"] for d in response.json()] == [created["id"]]

    response = client.get(BASE, params={"entry_time_le": "2024-12-18T14:59:00"})
    assert response.json() == []


def test_transition_error_example_is_a_real_refusal():
    responses = makeExceptionResponses(TRANSITION_ERRORS)
    examples = responses[status.HTTP_406_NOT_ACCEPTABLE]["content"]["application/json"]
    detail = examples["examples"]["IllegalTransition"]["value"]["detail"]
    assert detail["current"] == "passengers_dropped"
    assert detail["target"] == "paid"
    assert detail["allowed_next"] == ["permit_issued", "permit_rejected"]
    assert "MissingActor" in responses[status.HTTP_401_UNAUTHORIZED]["content"][
        "application/json"
    ]["examples"]
