"""Caller identity and role checks for the scheduling core."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status

from schoolmed.models.user import CLINICAL_ROLES, UserRole


@dataclass(frozen=True)
class CallerIdentity:
    """Who is acting, as supplied by the identity provider's token."""

    user_id: uuid.UUID
    role: UserRole

    @property
    def is_clinical(self) -> bool:
        return self.role in CLINICAL_ROLES


def can_read_dose(
    caller: CallerIdentity, *, student_id: uuid.UUID, parent_id: uuid.UUID
) -> bool:
    """Clinical staff read any dose; students and parents only their own."""
    if caller.is_clinical:
        return True
    if caller.role == UserRole.STUDENT:
        return caller.user_id == student_id
    if caller.role == UserRole.PARENT:
        return caller.user_id == parent_id
    return False


def require_roles(caller: CallerIdentity, allowed: set[UserRole]) -> None:
    """Raise HTTP 403 if the caller is not a member of the allowed role set."""

    if caller.role not in allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )


__all__ = ["CallerIdentity", "can_read_dose", "require_roles"]
