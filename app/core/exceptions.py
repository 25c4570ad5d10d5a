"""Domain exceptions raised by the authorization core.

Routes never catch these directly; exception handlers in ``app.main``
translate them into HTTP responses.
"""
from typing import Optional


class AuthorizationCoreError(Exception):
    """Base exception for the authorization core."""

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class RoleValidationError(AuthorizationCoreError):
    """Raised when input to a custom role operation is malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class RoleNotFoundError(AuthorizationCoreError):
    """Raised when a referenced custom role or user does not exist."""
    pass


class RoleConflictError(AuthorizationCoreError):
    """Raised when an operation conflicts with existing state (role in use, duplicate name)."""
    pass


class InvalidRoleReferenceError(AuthorizationCoreError):
    """Raised when a stored role reference string cannot be parsed."""
    pass


class RolePrivilegeError(AuthorizationCoreError):
    """Raised when a caller would grant permissions they do not hold themselves."""
    pass
