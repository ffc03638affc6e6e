import os
import tempfile
import threading
from collections import defaultdict

# The engine is built at import time, so point it at a throwaway database
# before anything from the package is imported.
_workdir = tempfile.mkdtemp(prefix="busstation-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_workdir, "dispatch.db")
os.environ["FLEET_API_URL"] = ""
os.environ["INVOICE_API_URL"] = ""

from unittest.mock import patch

import pytest

from busstation.src import schemas, workflow
from busstation.src.db import ORMbase, engine, sessionMaker


ACTOR_ID = "staff-1"

_recordLocks = defaultdict(threading.Lock)


def _acquireLock(tableName, pk=None, *args, **kwargs):
    lock = _recordLocks[(tableName, pk)]
    lock.acquire()
    return lock


def _releaseLock(lock):
    if lock is not None and lock.locked():
        lock.release()


@pytest.fixture(autouse=True)
def database():
    ORMbase.metadata.create_all(engine)
    yield
    ORMbase.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def recordLocks():
    """In-process stand-in for the Redis mutex, one lock per record."""
    with patch("busstation.src.store.acquireLock", side_effect=_acquireLock), patch(
        "busstation.src.store.releaseLock", side_effect=_releaseLock
    ):
        yield


@pytest.fixture(autouse=True)
def published():
    with patch("busstation.src.redis.publish") as publish:
        yield publish


@pytest.fixture(autouse=True)
def openobserve():
    with patch("busstation.src.openobserve.logEvent") as logEvent:
        yield logEvent


@pytest.fixture
def session():
    session = sessionMaker()
    yield session
    session.close()


@pytest.fixture
def entered(session):
    payload = schemas.EntryPayload(
        vehicle_id="v1",
        driver_id="d1",
        entry_time="2024-12-18T08:00:00Z",
        actor_id=ACTOR_ID,
    )
    return workflow.enter(session, payload)


@pytest.fixture
def dropped(session, entered):
    payload = schemas.PassengerDropPayload(passengers_arrived=30, actor_id=ACTOR_ID)
    return workflow.dropPassengers(session, entered.id, payload)


@pytest.fixture
def permitted(session, dropped):
    payload = schemas.PermitPayload(
        permit_status="approved", transport_order_code="TO-1", actor_id=ACTOR_ID
    )
    return workflow.issuePermit(session, dropped.id, payload)


@pytest.fixture
def rejected(session, dropped):
    payload = schemas.PermitPayload(
        permit_status="rejected", rejection_reason="Expired insurance", actor_id=ACTOR_ID
    )
    return workflow.issuePermit(session, dropped.id, payload)


@pytest.fixture
def paid(session, permitted):
    payload = schemas.PaymentPayload(
        payment_amount=150000, payment_method="cash", actor_id=ACTOR_ID
    )
    return workflow.pay(session, permitted.id, payload)


@pytest.fixture
def ordered(session, paid):
    payload = schemas.DepartureOrderPayload(passengers_departing=28, actor_id=ACTOR_ID)
    return workflow.orderDeparture(session, paid.id, payload)
