"""TripTrack Core - distance accumulation, trip state and session control."""

from .accumulator import (
    EARTH_RADIUS_KM,
    append_fix,
    geo_distance_km,
    initial_bearing,
    path_distance_km,
)
from .controller import TrackingSessionController
from .store import TripStateStore

__all__ = [
    "EARTH_RADIUS_KM",
    "TrackingSessionController",
    "TripStateStore",
    "append_fix",
    "geo_distance_km",
    "initial_bearing",
    "path_distance_km",
]
