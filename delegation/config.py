"""
Runtime settings for the delegation core, read from the environment.
"""

import os
from typing import List, Optional

import dotenv

dotenv.load_dotenv()

DEFAULT_COUNTRIES = [
    "Azerbaijan", "United Kingdom", "United States", "Turkey", "France",
    "Germany", "Russia", "China", "India", "Japan", "Italy", "Spain",
    "Brazil", "Canada", "Australia",
]


class DelegationSettings:
    """Allocation and seeding settings"""

    def __init__(
        self,
        max_allocation_retries: Optional[int] = None,
        seed_countries: Optional[List[str]] = None,
    ):
        if max_allocation_retries is None:
            max_allocation_retries = int(os.getenv("ALLOCATION_MAX_RETRIES", "5"))
        if max_allocation_retries < 1:
            raise ValueError("ALLOCATION_MAX_RETRIES must be at least 1")
        self.max_allocation_retries = max_allocation_retries

        if seed_countries is None:
            raw = os.getenv("SEED_COUNTRIES", "")
            seed_countries = [c.strip() for c in raw.split(",") if c.strip()] or DEFAULT_COUNTRIES
        self.seed_countries = list(seed_countries)


class AuthSettings:
    """Bearer-token verification settings (tokens are issued elsewhere)"""

    def __init__(self):
        self.jwt_secret = os.getenv("JWT_SECRET", "")
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.identity_claim = os.getenv("JWT_IDENTITY_CLAIM", "sub")
