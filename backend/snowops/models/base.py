"""Shared declarative base and enums for all models."""
from __future__ import annotations

import enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class UserRoleEnum(str, enum.Enum):
    AKIMAT_ADMIN = "AKIMAT_ADMIN"
    KGU_ZKH_ADMIN = "KGU_ZKH_ADMIN"
    # Technical operator (TOO) sees the whole fleet but does not administer it
    TOO_ADMIN = "TOO_ADMIN"
    CONTRACTOR_ADMIN = "CONTRACTOR_ADMIN"
    DRIVER = "DRIVER"


class VehicleStatusEnum(str, enum.Enum):
    IN_TRIP = "IN_TRIP"
    IDLE = "IDLE"
    OFFLINE = "OFFLINE"


class CameraTypeEnum(str, enum.Enum):
    LPR = "LPR"
    VOLUME = "VOLUME"


class GeofenceEventTypeEnum(str, enum.Enum):
    # No EXIT: leaving a polygon is not reported.
    ENTRY = "ENTRY"
