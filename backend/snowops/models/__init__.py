"""Import all models to register them with SQLAlchemy metadata."""
from snowops.models.base import Base
from snowops.models.vehicle import Vehicle
from snowops.models.gps_point import GPSPoint
from snowops.models.polygon import Polygon
from snowops.models.camera import Camera

__all__ = [
    "Base",
    "Vehicle",
    "GPSPoint",
    "Polygon",
    "Camera",
]
