"""
Principal: the role a permission check is evaluated for.

A user's stored role reference is either a system role literal
(``"editor"``) or a custom role reference (``"custom:42"``). Parsing happens
once at the boundary; resolution only ever sees the typed variants.
"""
import re
from dataclasses import dataclass
from typing import Union

from app.core.exceptions import InvalidRoleReferenceError
from app.features.permissions.system_roles import SystemRole, is_system_role


CUSTOM_ROLE_PREFIX = "custom"

# Canonical ids only: no leading zeros, and short enough to fit a signed 64-bit column
_CUSTOM_REFERENCE = re.compile(rf"{CUSTOM_ROLE_PREFIX}:([1-9][0-9]{{0,17}})")


@dataclass(frozen=True)
class SystemPrincipal:
    role: SystemRole

    @property
    def is_superadmin(self) -> bool:
        return self.role is SystemRole.SUPERADMIN


@dataclass(frozen=True)
class CustomPrincipal:
    role_id: int


Principal = Union[SystemPrincipal, CustomPrincipal]


def parse_role_reference(reference: str) -> Principal:
    """
    Parse a stored role reference into a principal.

    Raises:
        InvalidRoleReferenceError: for anything that is neither a system role
            literal nor ``custom:<id>`` with a canonical positive id
    """
    if not isinstance(reference, str):
        raise InvalidRoleReferenceError(f"Role reference must be a string, got {type(reference).__name__}")
    if is_system_role(reference):
        return SystemPrincipal(SystemRole(reference))
    match = _CUSTOM_REFERENCE.fullmatch(reference)
    if match is None:
        raise InvalidRoleReferenceError(f"Unrecognized role reference: {reference!r}")
    return CustomPrincipal(int(match.group(1)))


def format_role_reference(principal: Principal) -> str:
    """Inverse of :func:`parse_role_reference`."""
    if isinstance(principal, SystemPrincipal):
        return principal.role.value
    return f"{CUSTOM_ROLE_PREFIX}:{principal.role_id}"
