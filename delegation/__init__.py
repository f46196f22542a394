"""
Delegation core: country allocation, profiles and access policy.
"""

# Registers the profile lifecycle listeners on import
from delegation import hooks  # noqa: F401
