"""
Multi-Tenant Service: Actor Context and Tenant Scoping Helpers

Every operation runs on behalf of an actor (user id, role, organization) that
the caller supplies and the core trusts. Lookups are always scoped by the
actor's organization: an entity in another organization is reported as not
found rather than forbidden, so its existence is not revealed.

USAGE:
    from coachhub.services.tenant_service import ActorContext, require_user_in_org

    actor = ActorContext(user_id=7, role="manager", org_id=1)
    coach = require_user_in_org(coach_id, actor.org_id, role="coach", field="coach_id")
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ForbiddenError, ValidationError
from ..extensions import db
from ..models import User
from ..models.tenancy import ROLE_ADMIN, ROLE_MANAGER, VALID_ROLES


@dataclass(frozen=True)
class ActorContext:
    user_id: int
    role: str
    org_id: int

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_staff(self) -> bool:
        """Admins and managers bypass per-record ownership checks."""
        return self.role in (ROLE_ADMIN, ROLE_MANAGER)

    def __post_init__(self):
        if self.role not in VALID_ROLES:
            raise ValidationError(f"Invalid actor role '{self.role}'")


def require_user_in_org(
    user_id,
    org_id: int,
    *,
    role: str | None = None,
    field: str = "user_id",
) -> User:
    """
    Validate that a referenced user is an active member of the organization.

    Raises ValidationError (the reference is part of the caller's input) when
    the user is missing, inactive, in another organization or has the wrong role.
    """
    if user_id is None:
        raise ValidationError(f"{field} is required")

    user = db.session.get(User, user_id)
    if user is None or user.org_id != org_id or not user.is_active:
        raise ValidationError(f"{field} {user_id} is not an active user of this organization")
    if role is not None and user.role != role:
        raise ValidationError(f"{field} {user_id} must be a {role}")
    return user


def require_participant(actor: ActorContext, *user_ids: int, action: str = "access this record") -> None:
    """Staff pass; everyone else must be one of the listed users."""
    if actor.is_staff:
        return
    if actor.user_id not in user_ids:
        raise ForbiddenError(f"Not allowed to {action}")
