import os
import tempfile

# Point the app at a throwaway database before anything imports haulops.db
_TMP = tempfile.mkdtemp(prefix="haulops-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_TMP, "test.db")
os.environ["FILES_DIR"] = os.path.join(_TMP, "files")
os.environ["WORKER_ENABLED"] = "false"
os.environ["ORDER_LOCK_TIMEOUT"] = "10"

from datetime import date, timedelta
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from haulops import lifecycle, notify
from haulops.db import Base, SessionLocal, engine
from haulops.main import app
from haulops.schemas import Actor, EnterpriseIn, OrderCreate

ADMIN = Actor(id="admin-1", role="admin")
REQUESTER = Actor(id="req-1", role="requester")


class RecordingNotifier(notify.Notifier):
    def __init__(self, fail: bool = False):
        self.sent: List[Any] = []
        self.fail = fail

    def send(self, notification) -> None:
        if self.fail:
            raise RuntimeError("gateway down")
        self.sent.append((notification.recipient_id, notification.kind))


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    previous = notify.get_notifier()
    recording = RecordingNotifier()
    notify.set_notifier(recording)
    yield recording
    notify.set_notifier(previous)


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def headers(role: str, actor_id: str) -> Dict[str, str]:
    return {"X-Actor-Id": actor_id, "X-Actor-Role": role}


@pytest.fixture
def make_order(db):
    """Factory for parcel orders priced from an explicit base price."""

    def _make(actor: Actor = REQUESTER, **overrides) -> Any:
        data = dict(
            category="parcel",
            quantity=100,
            base_price_per_unit=1500,
            scheduled_date=date.today() + timedelta(days=1),
            delivery_area="서울 강남구",
            contact_phone="010-5555-1234",
        )
        data.update(overrides)
        return lifecycle.create_order(db, OrderCreate(**data), actor)

    return _make


@pytest.fixture
def open_order(db, make_order):
    """An open-application order past the deposit step."""

    def _open(**overrides) -> Any:
        order = make_order(**overrides)
        return lifecycle.approve_deposit(db, order.id, ADMIN)

    return _open


@pytest.fixture
def enterprise(db):
    return lifecycle.create_enterprise(db, EnterpriseIn(name="Acme Logistics", contact_phone="02-123-4567",
                                                        commission_rate=15), ADMIN)
