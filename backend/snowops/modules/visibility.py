"""Caller identity and fleet visibility.

Authentication happens upstream; the gateway forwards the caller's id, role
and organization. This module only maps a role onto the set of vehicles the
caller may see:

  AKIMAT_ADMIN, KGU_ZKH_ADMIN, TOO_ADMIN  -> FULL (whole fleet)
  CONTRACTOR_ADMIN                        -> ORGANIZATION (own contractor's fleet)
  DRIVER                                  -> SELF (vehicles assigned to the driver)
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

from snowops.models.base import UserRoleEnum

SCOPE_FULL = "FULL"
SCOPE_ORGANIZATION = "ORGANIZATION"
SCOPE_SELF = "SELF"

_FULL_FLEET_ROLES = frozenset({
    UserRoleEnum.AKIMAT_ADMIN,
    UserRoleEnum.KGU_ZKH_ADMIN,
    UserRoleEnum.TOO_ADMIN,
})

# City administration may bulk-delete telemetry; nobody else may.
PURGE_ROLES = frozenset({UserRoleEnum.AKIMAT_ADMIN, UserRoleEnum.KGU_ZKH_ADMIN})


class PermissionDeniedError(Exception):
    """Caller is not allowed to perform the operation."""


class NotFoundError(Exception):
    """Requested record does not exist or is outside the caller's scope."""


@dataclass(frozen=True)
class Principal:
    user_id: uuid.UUID
    role: UserRoleEnum
    organization_id: Optional[uuid.UUID] = None
    driver_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class VisibilityScope:
    kind: str
    organization_id: Optional[uuid.UUID] = None
    driver_id: Optional[uuid.UUID] = None

    def allows(self, vehicle) -> bool:
        if self.kind == SCOPE_FULL:
            return True
        if self.kind == SCOPE_ORGANIZATION:
            return vehicle.contractor_id is not None and vehicle.contractor_id == self.organization_id
        if self.kind == SCOPE_SELF:
            return vehicle.driver_id is not None and vehicle.driver_id == self.driver_id
        return False


FULL_SCOPE = VisibilityScope(kind=SCOPE_FULL)


def scope_for(principal: Principal) -> VisibilityScope:
    """Resolve the caller's fleet scope. Raises PermissionDeniedError for unknown roles."""
    if principal.role in _FULL_FLEET_ROLES:
        return FULL_SCOPE
    if principal.role == UserRoleEnum.CONTRACTOR_ADMIN:
        if principal.organization_id is None:
            raise PermissionDeniedError("Contractor account has no organization")
        return VisibilityScope(kind=SCOPE_ORGANIZATION, organization_id=principal.organization_id)
    if principal.role == UserRoleEnum.DRIVER:
        return VisibilityScope(kind=SCOPE_SELF, driver_id=principal.driver_id or principal.user_id)
    raise PermissionDeniedError(f"Role {principal.role} may not view vehicles")


def require_purge_permission(principal: Principal) -> None:
    if principal.role not in PURGE_ROLES:
        raise PermissionDeniedError("Only city administration may delete GPS points")
