"""
Profile lifecycle hooks.

- before_update: stamp updated_at
- before_delete: free the held country on the same connection as the
  DELETE, so the release commits or rolls back with the deletion

Importing this module registers the listeners.
"""

from sqlalchemy import event

from delegation.allocator import CountryAllocator
from delegation.models import Profile, utcnow


@event.listens_for(Profile, 'before_update')
def stamp_updated_at(mapper, connection, target):
    """Automatically update modified timestamp"""
    target.updated_at = utcnow()


@event.listens_for(Profile, 'before_delete')
def release_country_on_delete(mapper, connection, target):
    """Return the deleted participant's country to the pool"""
    CountryAllocator.release(connection, target.user_id)
