import argparse
from http import HTTPStatus
from requests import post
from datetime import datetime, time, timezone

from busstation.src.constants import HEADER_ACTOR_ID
from busstation.src.enums import PaymentMethod, PermitStatus
from busstation.src.urls import (
    URL_DISPATCH,
    URL_PASSENGER_DROP,
    URL_PERMIT,
    URL_PAYMENT,
    URL_DEPARTURE_ORDER,
    URL_EXIT,
)
from busstation.src.db import Shift, sessionMaker, engine, ORMbase


# ----------------------------------- Project Setup -------------------------------------------#
def removeTables():
    session = sessionMaker()
    ORMbase.metadata.drop_all(engine)
    session.commit()
    print("* All tables deleted")
    session.close()


def createTables():
    session = sessionMaker()
    ORMbase.metadata.create_all(engine)
    session.commit()
    print("* All tables created")
    session.close()


def initDB():
    session = sessionMaker()
    shifts = [
        Shift(name="Shift 1", starting_at=time(6, 0), ending_at=time(14, 0)),
        Shift(name="Shift 2", starting_at=time(14, 0), ending_at=time(22, 0)),
        Shift(name="Shift 3", starting_at=time(22, 0), ending_at=time(6, 0)),
    ]
    session.add_all(shifts)
    session.flush()

    session.commit()
    print("* Initialization completed")
    session.close()


def POST(URL: str, header: dict = {}, status_code: int = HTTPStatus.OK, **kwargs):
    response = post(URL, headers=header, **kwargs)
    if response.status_code != status_code:
        assert response.status_code == status_code
    else:
        return response


def testDB():
    # Base URL
    BASE_URL = "http://127.0.0.1:8080/station"
    actor = {HEADER_ACTOR_ID: "setup"}

    # Vehicle enters the station
    entryData = {
        "vehicle_id": "test-vehicle",
        "driver_id": "test-driver",
        "entry_time": datetime.now(timezone.utc).isoformat(),
        "notes": "Created by setup",
    }
    dispatch = POST(
        (BASE_URL + URL_DISPATCH),
        header=actor,
        data=entryData,
        status_code=HTTPStatus.CREATED,
    )
    dispatchID = dispatch.json()["id"]
    print("* Created dispatch")

    POST(
        (BASE_URL + URL_PASSENGER_DROP),
        header=actor,
        data={"id": dispatchID, "passengers_arrived": 30},
    )
    print("* Dropped passengers")

    POST(
        (BASE_URL + URL_PERMIT),
        header=actor,
        data={
            "id": dispatchID,
            "permit_status": PermitStatus.APPROVED,
            "transport_order_code": "TO-SETUP",
        },
    )
    print("* Issued boarding permit")

    POST(
        (BASE_URL + URL_PAYMENT),
        header=actor,
        data={
            "id": dispatchID,
            "payment_amount": 150000,
            "payment_method": PaymentMethod.CASH,
        },
    )
    print("* Recorded payment")

    POST(
        (BASE_URL + URL_DEPARTURE_ORDER),
        header=actor,
        data={"id": dispatchID, "passengers_departing": 28},
    )
    print("* Ordered departure")

    POST((BASE_URL + URL_EXIT), header=actor, data={"id": dispatchID})
    print("* Recorded exit")


# Setup database
if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    # remove tables
    parser.add_argument("-rm", action="store_true", help="remove tables")
    parser.add_argument("-cr", action="store_true", help="create tables")
    parser.add_argument("-init", action="store_true", help="initialize DB")
    parser.add_argument("-test", action="store_true", help="add test data")
    args = parser.parse_args()

    if args.cr:
        createTables()
    if args.init:
        initDB()
    if args.test:
        testDB()
    if args.rm:
        removeTables()
