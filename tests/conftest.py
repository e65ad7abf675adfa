from datetime import datetime, timedelta

import mongomock
import pytest

from buteco.aggregates import DailyAggregationEngine
from buteco.auth import AuthGate
from buteco.lifecycle import LifecycleManager
from buteco.menu import MenuCatalog
from buteco.models import Role
from buteco.reports import ReportingFacade
from buteco.store.mongo import MongoStore
from buteco.store.sqlite import SqliteStore

PASSWORD = "secret123"


class FakeClock:
    """deterministic clock; each reading advances one second"""
    def __init__(self, start: datetime = datetime(2025, 3, 14, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current

    def set(self, when: datetime):
        self.now = when


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sqlite_store(clock):
    store = SqliteStore(":memory:", clock=clock)
    yield store
    store.close()


@pytest.fixture
def mongo_store(clock):
    return MongoStore(mongomock.MongoClient()["buteco_test"], clock=clock)


@pytest.fixture(params=["sqlite", "mongo"])
def store(request):
    """every backend must pass the same behavioural tests"""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def auth(store):
    return AuthGate(store)


@pytest.fixture
def admin(auth):
    user = auth.bootstrap_first_admin("admin", PASSWORD)
    auth.login("admin", PASSWORD)
    return user


@pytest.fixture
def aggregates(store, clock):
    return DailyAggregationEngine(store, clock)


@pytest.fixture
def lifecycle(store, aggregates, auth):
    return LifecycleManager(store, aggregates, auth)


@pytest.fixture
def menu(store, auth):
    return MenuCatalog(store, auth)


@pytest.fixture
def reports(store, aggregates):
    return ReportingFacade(store, aggregates)


@pytest.fixture
def login_as(auth, admin):
    """create (once) and log in a user with the given role; admin stays the creator"""
    def _login_as(role: Role):
        name = f"{role.value}-user"
        if auth.authenticate(name, PASSWORD) is None:
            auth.login("admin", PASSWORD)
            auth.create_user(name, PASSWORD, role)
        return auth.login(name, PASSWORD)
    return _login_as
