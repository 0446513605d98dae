"""TripTrack Domain Models - fixes, trip state, phases and errors."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum


class TrackingPhase(str, Enum):
    """Lifecycle phase of a tracking session."""

    IDLE = "idle"
    ACQUIRING = "acquiring"  # waiting for the anchor fix
    TRACKING = "tracking"
    STOPPED = "stopped"
    ERRORED = "errored"

    @property
    def is_active(self) -> bool:
        """True while a position subscription is (or is about to be) live."""
        return self in (TrackingPhase.ACQUIRING, TrackingPhase.TRACKING)


class ErrorKind(str, Enum):
    """Failure taxonomy shared by the sensor and storage layers."""

    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    PERSISTENCE_CORRUPT = "persistence_corrupt"
    INVALID_FIX = "invalid_fix"


class TripTrackError(Exception):
    """Base class for all TripTrack errors."""


class PositionError(TripTrackError):
    """Position acquisition failed."""

    def __init__(self, kind: ErrorKind, message: str = "") -> None:
        self.kind = kind
        self.message = message or kind.value.replace("_", " ")
        super().__init__(f"{kind.value}: {self.message}")


class PersistenceError(TripTrackError):
    """A persistence backend could not read or write its snapshot."""


class InvalidTransitionError(TripTrackError):
    """A controller command is not allowed in the current phase."""

    def __init__(self, command: str, phase: TrackingPhase) -> None:
        self.command = command
        self.phase = phase
        super().__init__(f"cannot {command} while {phase.value}")


@dataclass(frozen=True, slots=True)
class Fix:
    """
    One reported position sample.

    Attributes:
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        captured_at: Unix epoch milliseconds.
    """

    latitude: float
    longitude: float
    captured_at: int

    @classmethod
    def now(cls, latitude: float, longitude: float) -> Fix:
        """Create a fix stamped with the current wall-clock time."""
        return cls(latitude=latitude, longitude=longitude, captured_at=int(time.time() * 1000))

    @property
    def is_valid(self) -> bool:
        """Check coordinates are finite and within range."""
        lat, lon = self.latitude, self.longitude
        if not (math.isfinite(lat) and math.isfinite(lon)):
            return False
        return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0

    @property
    def captured_at_dt(self) -> datetime:
        return datetime.fromtimestamp(self.captured_at / 1000.0, tz=UTC)


@dataclass(frozen=True, slots=True)
class TripState:
    """
    Accumulated record of one trip.

    ``fixes`` is the path in arrival order. ``distance_km`` is only ever
    grown incrementally by the accumulator, and ``cost_amount`` always
    equals ``distance_km * rate_per_km``.
    """

    fixes: tuple[Fix, ...] = ()
    distance_km: float = 0.0
    cost_amount: float = 0.0
    rate_per_km: float = 10.0

    @classmethod
    def empty(cls, rate_per_km: float) -> TripState:
        return cls(rate_per_km=rate_per_km)

    @property
    def fix_count(self) -> int:
        return len(self.fixes)

    @property
    def is_empty(self) -> bool:
        return not self.fixes

    @property
    def last_fix(self) -> Fix | None:
        return self.fixes[-1] if self.fixes else None

    @property
    def started_at(self) -> datetime | None:
        """Wall-clock time of the first fix."""
        return self.fixes[0].captured_at_dt if self.fixes else None

    @property
    def ended_at(self) -> datetime | None:
        """Wall-clock time of the most recent fix."""
        return self.fixes[-1].captured_at_dt if self.fixes else None
