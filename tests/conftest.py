import threading
import uuid

import pytest

from delegation.allocator import CountryAllocator
from delegation.config import DelegationSettings
from delegation.database import DatabaseConfig, DatabaseManager
from delegation.repository import ProfileRepository

DEFAULT_POOL = ["Canada", "France", "Germany", "Japan"]


@pytest.fixture
def make_database(tmp_path):
    """Initialize a fresh file-backed SQLite database seeded with `countries`."""

    def _make(countries=DEFAULT_POOL):
        DatabaseManager.dispose()
        path = tmp_path / f"delegates-{uuid.uuid4().hex}.db"
        DatabaseManager.initialize(DatabaseConfig(f"sqlite:///{path}"), seed_countries=list(countries))
        return DatabaseManager

    yield _make
    DatabaseManager.dispose()


@pytest.fixture
def database(make_database):
    return make_database()


@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def allocator():
    return CountryAllocator(DelegationSettings(max_allocation_retries=5, seed_countries=[]))


@pytest.fixture
def make_profile():
    """Insert a profile directly (no allocation) and return its identity."""

    def _make(db, user_id=None, name="Test", surname="Delegate", is_admin=False):
        user_id = user_id or str(uuid.uuid4())
        profile = ProfileRepository.create(db, user_id, name, surname)
        profile.is_admin = is_admin
        db.commit()
        return user_id

    return _make


def run_concurrently(database, count, target):
    """
    Run `target(session, index)` in `count` threads released together.

    Returns a list of (index, result_or_exception) in completion order.
    """
    barrier = threading.Barrier(count)
    results = []
    lock = threading.Lock()

    def worker(index):
        session = database.session()
        try:
            barrier.wait()
            outcome = target(session, index)
        except Exception as e:
            outcome = e
        finally:
            session.close()
        with lock:
            results.append((index, outcome))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


def assert_pool_consistent(session):
    """Profiles and countries form a partial bijection."""
    from delegation.models import Country, Profile

    session.expire_all()
    countries = {c.name: c.assigned_user for c in session.query(Country).all()}
    profiles = {p.user_id: p.assigned_country for p in session.query(Profile).all()}

    for user_id, country in profiles.items():
        if country is not None:
            assert countries[country] == user_id, f"{country} not held by {user_id}"
    for country, holder in countries.items():
        if holder is not None:
            assert profiles.get(holder) == country, f"{holder} does not point at {country}"
    held = [c for c in profiles.values() if c is not None]
    assert len(held) == len(set(held))
