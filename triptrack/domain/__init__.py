"""TripTrack Domain Layer - Core trip records, phases and errors."""

from .models import (
    ErrorKind,
    Fix,
    InvalidTransitionError,
    PersistenceError,
    PositionError,
    TrackingPhase,
    TripState,
    TripTrackError,
)

__all__ = [
    "ErrorKind",
    "Fix",
    "InvalidTransitionError",
    "PersistenceError",
    "PositionError",
    "TrackingPhase",
    "TripState",
    "TripTrackError",
]
