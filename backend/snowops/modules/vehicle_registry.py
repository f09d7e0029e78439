"""Vehicle registry lookups used by the simulator bootstrap and the read paths."""
from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import false
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from snowops.models.vehicle import Vehicle
from snowops.modules.visibility import (
    SCOPE_FULL,
    SCOPE_ORGANIZATION,
    SCOPE_SELF,
    NotFoundError,
    VisibilityScope,
)

logger = logging.getLogger(__name__)


def get_or_create(db: Session, plate_number: str) -> Vehicle:
    """Return the vehicle with this plate, creating an active one if missing."""
    vehicle = db.query(Vehicle).filter(Vehicle.plate_number == plate_number).first()
    if vehicle is not None:
        return vehicle

    vehicle = Vehicle(plate_number=plate_number, is_active=True)
    db.add(vehicle)
    try:
        db.commit()
    except IntegrityError:
        # Another process created it between the lookup and the insert
        db.rollback()
        vehicle = db.query(Vehicle).filter(Vehicle.plate_number == plate_number).one()
        return vehicle
    logger.info("Created simulator vehicle %s (%s)", plate_number, vehicle.id)
    return vehicle


def scoped_query(db: Session, scope: VisibilityScope) -> Query:
    q = db.query(Vehicle)
    if scope.kind == SCOPE_FULL:
        return q
    if scope.kind == SCOPE_ORGANIZATION:
        return q.filter(Vehicle.contractor_id == scope.organization_id)
    if scope.kind == SCOPE_SELF:
        return q.filter(Vehicle.driver_id == scope.driver_id)
    # Unknown scope kinds see nothing
    return q.filter(false())


def list_visible(
    db: Session,
    scope: VisibilityScope,
    contractor_id: Optional[uuid.UUID] = None,
) -> list[Vehicle]:
    """Vehicles in the caller's scope, optionally narrowed to one contractor."""
    q = scoped_query(db, scope)
    if contractor_id is not None:
        q = q.filter(Vehicle.contractor_id == contractor_id)
    return q.order_by(Vehicle.plate_number.asc()).all()


def get_visible(db: Session, scope: VisibilityScope, vehicle_id: uuid.UUID) -> Vehicle:
    """Fetch one vehicle, treating out-of-scope exactly like missing."""
    vehicle = db.get(Vehicle, vehicle_id)
    if vehicle is None or not scope.allows(vehicle):
        raise NotFoundError(f"Vehicle {vehicle_id} not found")
    return vehicle
