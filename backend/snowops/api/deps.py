"""Request dependencies: caller identity forwarded by the auth gateway."""
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import Header, HTTPException

from snowops.models.base import UserRoleEnum
from snowops.modules.visibility import Principal


def _parse_uuid(value: Optional[str], header: str) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Malformed {header} header")


def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_organization_id: Optional[str] = Header(None),
    x_driver_id: Optional[str] = Header(None),
) -> Principal:
    user_id = _parse_uuid(x_user_id, "X-User-Id")
    if user_id is None or not x_user_role:
        raise HTTPException(status_code=401, detail="Missing caller identity")
    try:
        role = UserRoleEnum(x_user_role.strip().upper())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role '{x_user_role}'")
    return Principal(
        user_id=user_id,
        role=role,
        organization_id=_parse_uuid(x_organization_id, "X-Organization-Id"),
        driver_id=_parse_uuid(x_driver_id, "X-Driver-Id"),
    )
