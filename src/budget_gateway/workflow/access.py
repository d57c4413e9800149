"""Access Policy - role and institution scoping for every operation.

Checks run in a fixed order and stop at the first failure:

1. a verified caller is present            -> else Unauthenticated
2. the caller holds the operation's role   -> else Forbidden
3. the target institution is the caller's  -> else Forbidden
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..errors import ForbiddenError, UnauthenticatedError


class Role(str, Enum):
    AUDITOR = "auditor"
    ASSOCIATE = "associate"


@dataclass(frozen=True, slots=True)
class Principal:
    """A verified caller: ``(subjectId, role, institutionId)``."""

    subject_id: str
    role: Role
    institution_id: str


def authorize(
    principal: Principal | None,
    *,
    role: Role | None = None,
    institution_id: str | None = None,
) -> Principal:
    """Apply the policy and return the verified principal.

    ``role=None`` accepts either role; ``institution_id=None`` means the
    operation is implicitly scoped to the caller's own institution.
    """
    if principal is None:
        raise UnauthenticatedError("Access token required")
    if role is not None and principal.role != role:
        raise ForbiddenError(f"Operation requires the {role.value} role")
    if institution_id is not None and principal.institution_id != institution_id:
        raise ForbiddenError("Access denied to this institution")
    return principal


__all__ = ["Principal", "Role", "authorize"]
