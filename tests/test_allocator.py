import random

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import assert_pool_consistent, run_concurrently
from delegation.allocator import CountryAllocator
from delegation.config import DelegationSettings
from delegation.errors import NotAuthorized, PoolExhausted, RecordNotFound, ResourceUnavailable
from delegation.models import Country, Profile
from delegation.policy import Caller
from delegation.repository import CountryRepository, ProfileRepository

ADMIN = Caller(user_id="admin", is_admin=True)


def test_allocate_random_claims_free_country(db, allocator, make_profile):
    user_id = make_profile(db)

    country = allocator.allocate_random(db, user_id)

    assert country in {"Canada", "France", "Germany", "Japan"}
    assert db.get(Country, country).assigned_user == user_id
    assert db.get(Profile, user_id).assigned_country == country
    assert_pool_consistent(db)


def test_allocate_random_keeps_existing_country(db, allocator, make_profile):
    user_id = make_profile(db)
    first = allocator.allocate_random(db, user_id)

    second = allocator.allocate_random(db, user_id)

    assert second == first
    assert len(CountryRepository.free_names(db)) == 3


def test_allocate_random_picks_from_free_set_only(db, make_profile):
    taken = make_profile(db)
    rigged = CountryAllocator(DelegationSettings(max_allocation_retries=3, seed_countries=[]), rng=random.Random(7))
    rigged.reassign(db, taken, "Canada", ADMIN)

    for _ in range(3):
        user_id = make_profile(db)
        assert rigged.allocate_random(db, user_id) != "Canada"

    assert CountryRepository.free_names(db) == []


def test_allocate_random_pool_exhausted(make_database, allocator, make_profile):
    database = make_database(["Canada"])
    db = database.session()
    try:
        first = make_profile(db)
        second = make_profile(db)
        allocator.allocate_random(db, first)

        with pytest.raises(PoolExhausted):
            allocator.allocate_random(db, second)

        assert db.get(Profile, second).assigned_country is None
        assert_pool_consistent(db)
    finally:
        db.close()


def test_allocate_random_unknown_profile(db, allocator):
    with pytest.raises(RecordNotFound):
        allocator.allocate_random(db, "nobody")
    assert len(CountryRepository.free_names(db)) == 4


def test_allocate_random_retries_lost_race(db, allocator, make_profile, monkeypatch):
    user_id = make_profile(db)
    real_claim = CountryRepository.claim
    attempts = []

    def flaky_claim(session, name, holder):
        attempts.append(name)
        if len(attempts) == 1:
            return False
        return real_claim(session, name, holder)

    monkeypatch.setattr(CountryRepository, "claim", staticmethod(flaky_claim))

    country = allocator.allocate_random(db, user_id)

    assert len(attempts) == 2
    assert db.get(Profile, user_id).assigned_country == country


def test_allocate_random_gives_up_after_retry_ceiling(db, make_profile, monkeypatch):
    user_id = make_profile(db)
    attempts = []

    def always_lose(session, name, holder):
        attempts.append(name)
        return False

    monkeypatch.setattr(CountryRepository, "claim", staticmethod(always_lose))
    bounded = CountryAllocator(DelegationSettings(max_allocation_retries=3, seed_countries=[]))

    with pytest.raises(PoolExhausted):
        bounded.allocate_random(db, user_id)

    assert len(attempts) == 3
    assert db.get(Profile, user_id).assigned_country is None


def test_allocate_random_same_identity_race_returns_winner(database, db, allocator, make_profile, monkeypatch):
    user_id = make_profile(db)
    real_claim = CountryRepository.claim

    def claimed_elsewhere(session, name, holder):
        # Another request for the same participant commits first
        other = database.session()
        try:
            real_claim(other, "Japan", holder)
            other.commit()
        finally:
            other.close()
        raise IntegrityError("UPDATE countries", {}, Exception("UNIQUE constraint failed: countries.assigned_user"))

    monkeypatch.setattr(CountryRepository, "claim", staticmethod(claimed_elsewhere))

    assert allocator.allocate_random(db, user_id) == "Japan"

    db.expire_all()
    assert db.get(Profile, user_id).assigned_country == "Japan"
    assert_pool_consistent(db)


def test_allocate_random_integrity_error_without_holder_propagates(db, allocator, make_profile, monkeypatch):
    user_id = make_profile(db)

    def broken_claim(session, name, holder):
        raise IntegrityError("UPDATE countries", {}, Exception("constraint failed"))

    monkeypatch.setattr(CountryRepository, "claim", staticmethod(broken_claim))

    with pytest.raises(IntegrityError):
        allocator.allocate_random(db, user_id)
    assert db.get(Profile, user_id).assigned_country is None


def test_concurrent_allocation_two_free_countries(make_database, allocator, make_profile):
    database = make_database(["Canada", "Japan"])
    setup = database.session()
    a, b, c = (make_profile(setup) for _ in range(3))
    setup.close()

    results = run_concurrently(
        database, 2, lambda session, i: allocator.allocate_random(session, (a, b)[i])
    )

    won = {outcome for _, outcome in results}
    assert won == {"Canada", "Japan"}

    session = database.session()
    try:
        with pytest.raises(PoolExhausted):
            allocator.allocate_random(session, c)
        assert_pool_consistent(session)
    finally:
        session.close()


def test_concurrent_allocation_n_plus_one(make_database, allocator, make_profile):
    pool = ["Canada", "France", "Germany", "Japan", "Spain"]
    database = make_database(pool)
    setup = database.session()
    users = [make_profile(setup) for _ in range(len(pool) + 1)]
    setup.close()

    results = run_concurrently(
        database, len(users), lambda session, i: allocator.allocate_random(session, users[i])
    )

    countries = [o for _, o in results if isinstance(o, str)]
    failures = [o for _, o in results if not isinstance(o, str)]
    assert sorted(countries) == sorted(pool)
    assert len(failures) == 1
    assert isinstance(failures[0], PoolExhausted)

    session = database.session()
    try:
        assert_pool_consistent(session)
    finally:
        session.close()


def test_reassign_moves_participant(db, allocator, make_profile):
    participant = make_profile(db)
    allocator.reassign(db, participant, "France", ADMIN)

    result = allocator.reassign(db, participant, "Germany", ADMIN)

    db.expire_all()
    assert result == "Germany"
    assert db.get(Country, "France").assigned_user is None
    assert db.get(Country, "Germany").assigned_user == participant
    assert db.get(Profile, participant).assigned_country == "Germany"
    assert_pool_consistent(db)


def test_reassign_to_held_country_fails_and_keeps_previous(db, allocator, make_profile):
    holder = make_profile(db)
    participant = make_profile(db)
    allocator.reassign(db, holder, "Japan", ADMIN)
    allocator.reassign(db, participant, "France", ADMIN)

    with pytest.raises(ResourceUnavailable):
        allocator.reassign(db, participant, "Japan", ADMIN)

    db.expire_all()
    assert db.get(Profile, participant).assigned_country == "France"
    assert db.get(Country, "France").assigned_user == participant
    assert db.get(Country, "Japan").assigned_user == holder
    assert_pool_consistent(db)


def test_reassign_to_own_country_is_allowed(db, allocator, make_profile):
    participant = make_profile(db)
    allocator.reassign(db, participant, "Canada", ADMIN)

    assert allocator.reassign(db, participant, "Canada", ADMIN) == "Canada"
    assert_pool_consistent(db)


def test_reassign_to_none_frees_country(db, allocator, make_profile):
    participant = make_profile(db)
    allocator.allocate_random(db, participant)

    assert allocator.reassign(db, participant, None, ADMIN) is None

    assert db.get(Profile, participant).assigned_country is None
    assert len(CountryRepository.free_names(db)) == 4


def test_reassign_unknown_country(db, allocator, make_profile):
    participant = make_profile(db)
    with pytest.raises(ResourceUnavailable):
        allocator.reassign(db, participant, "Atlantis", ADMIN)


def test_reassign_requires_admin(db, allocator, make_profile):
    participant = make_profile(db)
    with pytest.raises(NotAuthorized):
        allocator.reassign(db, participant, "France", Caller(user_id=participant))
    assert db.get(Profile, participant).assigned_country is None


def test_concurrent_reassign_same_target(database, allocator, make_profile):
    setup = database.session()
    first, second = make_profile(setup), make_profile(setup)
    setup.close()

    results = run_concurrently(
        database, 2, lambda session, i: allocator.reassign(session, (first, second)[i], "Germany", ADMIN)
    )

    outcomes = [o for _, o in results]
    assert outcomes.count("Germany") == 1
    assert sum(isinstance(o, ResourceUnavailable) for o in outcomes) == 1

    session = database.session()
    try:
        assert_pool_consistent(session)
    finally:
        session.close()


def test_release_is_idempotent(db, allocator, make_profile):
    participant = make_profile(db)
    country = allocator.allocate_random(db, participant)

    assert CountryAllocator.release(db, participant) == 1
    assert CountryAllocator.release(db, participant) == 0
    db.commit()

    assert db.get(Country, country).assigned_user is None


def test_reconcile_repairs_drift(db, allocator, make_profile):
    linked = make_profile(db)
    stale = make_profile(db)
    allocator.reassign(db, linked, "Canada", ADMIN)

    # Drift: an orphaned holder and a profile pointing at a country it lost
    CountryRepository.claim(db, "Japan", "ghost")
    ProfileRepository.set_country(db, stale, "France")
    db.commit()

    report = allocator.reconcile(db)

    assert report["released"] == ["ghost"]
    assert report["relinked"] == [stale]
    db.expire_all()
    assert db.get(Country, "Japan").assigned_user is None
    assert db.get(Profile, stale).assigned_country is None
    assert db.get(Profile, linked).assigned_country == "Canada"
    assert_pool_consistent(db)
