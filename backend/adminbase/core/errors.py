"""
Exception taxonomy for AdminBase.

Storage failures are not wrapped: they surface as
``sqlalchemy.exc.SQLAlchemyError`` subclasses exactly as the driver raised them.
"""


class AdminBaseError(Exception):
    """Base error for AdminBase."""


class QueryValidationError(AdminBaseError, ValueError):
    """Calling code handed the query builder an unsafe identifier or keyword."""


class AuthenticationFailure(AdminBaseError):
    """Credentials or token rejected. The message never says why."""

    def __init__(self, message: str = "Invalid credentials"):
        self.message = message
        super().__init__(message)


class AuditSerializationFailure(AdminBaseError):
    """A value could not be encoded for the audit trail."""
