"""GPSPoint entity: one immutable telemetry sample per vehicle tick.

Rows are appended by the producer (simulator or a device feed) and removed
only by the retention janitor or an administrative purge. Nothing updates them.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Float, DateTime, ForeignKey, Text, Uuid, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from snowops.models.base import Base
from snowops.models.vehicle import _utcnow


class GPSPoint(Base):
    __tablename__ = "gps_points"
    __table_args__ = (
        CheckConstraint("lat >= -90 AND lat <= 90", name="ck_gps_lat_bounds"),
        CheckConstraint("lon >= -180 AND lon <= 180", name="ck_gps_lon_bounds"),
        Index("ix_gps_vehicle_captured", "vehicle_id", "captured_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    gps_device_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    vehicle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    captured_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    speed_kmh: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    heading_deg: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # JSON text: {"simulated": bool, "source": str, "geofence_event": {...}?}
    raw_payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    vehicle: Mapped["Vehicle"] = relationship("Vehicle", back_populates="gps_points")
