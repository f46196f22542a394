"""
Error taxonomy for the delegation core.

Every error carries the HTTP status the API layer should answer with, so
routes can translate them without a lookup table.
"""


class DelegationError(Exception):
    """Base class for all errors surfaced by the delegation core"""

    status_code = 400

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class NotAuthorized(DelegationError):
    """Not authorized"""

    status_code = 403


class PoolExhausted(DelegationError):
    """No countries available"""

    status_code = 409


class ResourceUnavailable(DelegationError):
    """Country is already assigned"""

    status_code = 409


class ValidationError(DelegationError):
    """Invalid input"""

    status_code = 422


class RecordNotFound(DelegationError):
    """Record not found"""

    status_code = 404
