"""Shared fixtures: in-memory database, plan doubles and an authenticated API client."""
import os

# Must be set before app modules read their configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ENABLE_ALARM_JOBS"] = "0"
os.environ["PLAN_TIMEZONE"] = "Asia/Seoul"

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

import app.models  # noqa: E402,F401
from app.db.config import engine  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.plan_cache_service import PlanCacheService, plan_cache  # noqa: E402
from app.utils.metrics import metrics_collector  # noqa: E402


class RecordingPublisher:
    """Event publisher double that keeps every event it is asked to send."""

    def __init__(self, fail_times: int = 0):
        self.events = []
        self.fail_times = fail_times

    def _record(self, event_type, data):
        self.events.append((event_type, data))
        return {"success": True}

    def publish_plan_created(self, data):
        return self._record("plan.created", data)

    def publish_plan_updated(self, data):
        return self._record("plan.updated", data)

    def publish_plan_deleted(self, data):
        return self._record("plan.deleted", data)

    def publish_alarm_due(self, data):
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("sidecar unavailable")
        return self._record("alarm.due", data)

    def of_type(self, event_type):
        return [data for kind, data in self.events if kind == event_type]


def _plan_double(start, end=None, rule=None, plan_id=1):
    return SimpleNamespace(id=plan_id, start_date=start, end_date=end or start, recurrence=rule)


@pytest.fixture(autouse=True)
def database():
    """Fresh schema for every test."""
    SQLModel.metadata.create_all(engine)
    plan_cache.clear()
    metrics_collector.reset()
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(database):
    with Session(database) as session:
        yield session


@pytest.fixture
def user(session):
    user = User(id="user-1", email="planner@example.com", name="Planner", phone_number="01012345678")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def cache():
    return PlanCacheService(maxsize=128, ttl=3600)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def publisher_factory():
    return RecordingPublisher


@pytest.fixture
def make_plan():
    """Factory for plan-like objects used by the pure engine tests."""
    return _plan_double


@pytest.fixture
def client():
    from app.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth(client):
    """Signed-up user: (user_id, headers)."""
    response = client.post(
        "/auth/sign-up",
        json={"email": "api@example.com", "password": "pw", "name": "Api", "phone_number": "01099998888"},
    )
    assert response.status_code == 200
    body = response.json()
    return body["user_id"], {"Authorization": f"Bearer {body['token']}"}
