"""Persisted trip document - pydantic schema and codec."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ...domain.models import ErrorKind, Fix, TripState

logger = logging.getLogger(__name__)

DEFAULT_RATE_PER_KM = TripState().rate_per_km


class CoordinateRecord(BaseModel):
    """One path point as stored: ``{lat, lng, timestamp}``."""

    model_config = ConfigDict(extra="ignore")

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    timestamp: int


class TripSnapshot(BaseModel):
    """Latest full copy of a trip; unknown fields are ignored on load."""

    model_config = ConfigDict(extra="ignore")

    coordinates: list[CoordinateRecord]
    distance: float = Field(..., ge=0)
    cost: float = Field(..., ge=0)

    @classmethod
    def from_state(cls, state: TripState) -> TripSnapshot:
        return cls(
            coordinates=[
                CoordinateRecord(lat=f.latitude, lng=f.longitude, timestamp=f.captured_at)
                for f in state.fixes
            ],
            distance=state.distance_km,
            cost=state.cost_amount,
        )

    def to_state(self, rate_per_km: float = DEFAULT_RATE_PER_KM) -> TripState:
        """Rebuild the trip. Documents carry no rate, so the caller's rate is used."""
        return TripState(
            fixes=tuple(
                Fix(latitude=c.lat, longitude=c.lng, captured_at=c.timestamp)
                for c in self.coordinates
            ),
            distance_km=self.distance,
            cost_amount=self.cost,
            rate_per_km=rate_per_km,
        )


def encode_snapshot(state: TripState) -> str:
    return TripSnapshot.from_state(state).model_dump_json()


def decode_snapshot(raw: str | bytes) -> TripState | None:
    """
    Decode a stored document.

    A corrupted or unparsable document is treated as no saved trip.
    """
    try:
        snapshot = TripSnapshot.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning(
            "Discarding saved trip (%s): %d validation error(s)",
            ErrorKind.PERSISTENCE_CORRUPT.value,
            exc.error_count(),
        )
        return None
    return snapshot.to_state()
