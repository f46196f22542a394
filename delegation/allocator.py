"""
Exclusive country allocation.

The allocator is the only component that writes the profile/country link
(apart from the profile delete hook, which goes through `release`). Every
claim is a single conditional UPDATE on the country row followed by the
profile stamp, and both are committed in one transaction.
"""

import random
from typing import Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from delegation.config import DelegationSettings
from delegation.errors import NotAuthorized, PoolExhausted, RecordNotFound, ResourceUnavailable
from delegation.repository import CountryRepository, ProfileRepository


class CountryAllocator:
    """
    Assigns, reassigns and frees countries.

    Usage:
        allocator = CountryAllocator()
        country = allocator.allocate_random(db, user_id)
    """

    def __init__(self, settings: Optional[DelegationSettings] = None, rng: Optional[random.Random] = None):
        self.settings = settings or DelegationSettings()
        self.max_retries = self.settings.max_allocation_retries
        self.rng = rng or random.SystemRandom()

    # ==================== RANDOM ALLOCATION ====================

    def allocate_random(self, db: Session, user_id: str) -> str:
        """
        Claim a uniformly random free country for `user_id`.

        A participant that already holds a country keeps it. Losing a race for
        a candidate retries against the fresh free set, at most
        `max_retries` times.

        Raises:
            RecordNotFound: no profile for `user_id`
            PoolExhausted: no free country, or every attempt lost its race
        """
        try:
            profile = ProfileRepository.get_for_update(db, user_id)
            if profile is None:
                raise RecordNotFound(f"Profile {user_id} not found")

            held = CountryRepository.held_by(db, user_id)
            if held is not None:
                if profile.assigned_country != held:
                    ProfileRepository.set_country(db, user_id, held)
                db.commit()
                logger.debug(f"[ALLOCATE] {user_id} already holds {held}")
                return held

            for attempt in range(1, self.max_retries + 1):
                free = CountryRepository.free_names(db)
                if not free:
                    logger.warning(f"[ALLOCATE] Pool exhausted for {user_id}")
                    raise PoolExhausted()

                candidate = self.rng.choice(free)
                if CountryRepository.claim(db, candidate, user_id):
                    ProfileRepository.set_country(db, user_id, candidate)
                    db.commit()
                    logger.info(f"[ALLOCATE] {candidate} -> {user_id} (attempt {attempt})")
                    return candidate

                logger.info(f"[ALLOCATE] Lost race for {candidate} ({user_id}, attempt {attempt})")

            logger.warning(f"[ALLOCATE] Gave up after {self.max_retries} attempts for {user_id}")
            raise PoolExhausted(f"No countries available after {self.max_retries} attempts")
        except IntegrityError:
            # assigned_user is unique: a concurrent call for the same
            # participant claimed first
            db.rollback()
            try:
                held = CountryRepository.held_by(db, user_id)
                if held is not None:
                    ProfileRepository.set_country(db, user_id, held)
                    db.commit()
            except Exception:
                db.rollback()
                raise
            if held is None:
                raise
            logger.info(f"[ALLOCATE] Concurrent allocation for {user_id} already won {held}")
            return held
        except Exception:
            db.rollback()
            raise

    # ==================== ADMIN REASSIGNMENT ====================

    def reassign(self, db: Session, user_id: str, country: Optional[str], caller) -> Optional[str]:
        """
        Move `user_id` to `country`, or leave them without one when `country`
        is None. Admin only.

        The previous country is freed before the new one is claimed. A failed
        claim rolls back the whole transaction, so the participant keeps the
        previous country.

        Raises:
            NotAuthorized: caller is not an admin
            RecordNotFound: no profile for `user_id`
            ResourceUnavailable: `country` is unknown or held by someone else
        """
        if not caller.is_admin:
            logger.warning(f"[REASSIGN] Non-admin {caller.user_id} tried to reassign {user_id}")
            raise NotAuthorized()

        try:
            profile = ProfileRepository.get_for_update(db, user_id)
            if profile is None:
                raise RecordNotFound(f"Profile {user_id} not found")

            previous = profile.assigned_country
            CountryRepository.release(db, user_id)

            if country is None:
                ProfileRepository.set_country(db, user_id, None)
                db.commit()
                logger.info(f"[REASSIGN] {caller.user_id} freed {previous} from {user_id}")
                return None

            if CountryRepository.get(db, country) is None:
                raise ResourceUnavailable(f"Unknown country: {country}")

            if not CountryRepository.claim(db, country, user_id):
                raise ResourceUnavailable()

            ProfileRepository.set_country(db, user_id, country)
            db.commit()
            logger.info(f"[REASSIGN] {caller.user_id} moved {user_id}: {previous} -> {country}")
            return country
        except Exception:
            db.rollback()
            raise

    # ==================== RELEASE ====================

    @staticmethod
    def release(executor, user_id: str) -> int:
        """
        Free whatever `user_id` holds. Idempotent.

        `executor` may be a Session or the Connection of an in-progress flush;
        the caller owns the transaction.

        Returns:
            Number of countries freed (0 or 1)
        """
        freed = CountryRepository.release(executor, user_id)
        if freed:
            logger.info(f"[RELEASE] Freed country held by {user_id}")
        return freed

    # ==================== RECONCILIATION ====================

    def reconcile(self, db: Session) -> Dict[str, List[str]]:
        """
        Repair drift between the pool and profiles. The pool is authoritative:
        countries held by identities without a profile are freed, and each
        profile is relinked to the country it actually holds.

        Returns:
            {'released': [user_id, ...], 'relinked': [user_id, ...]}
        """
        try:
            holdings = CountryRepository.holdings(db)
            profiles = {p.user_id: p for p in ProfileRepository.list_all(db)}

            released = [user_id for user_id in holdings if user_id not in profiles]
            for user_id in released:
                CountryRepository.release(db, user_id)

            drifted = [
                p.user_id for p in profiles.values()
                if p.assigned_country != holdings.get(p.user_id)
            ]
            # Clear first: assigned_country is unique, so swaps would collide
            for user_id in drifted:
                ProfileRepository.set_country(db, user_id, None)
            for user_id in drifted:
                if holdings.get(user_id) is not None:
                    ProfileRepository.set_country(db, user_id, holdings[user_id])

            db.commit()

            if released or drifted:
                logger.warning(f"[RECONCILE] released={released} relinked={drifted}")
            else:
                logger.info("[RECONCILE] Pool and profiles consistent")

            return {'released': released, 'relinked': drifted}
        except Exception:
            db.rollback()
            raise
