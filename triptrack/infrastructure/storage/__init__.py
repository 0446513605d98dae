"""Storage infrastructure - trip snapshot persistence."""

from .persistence import (
    DEFAULT_KEY,
    JsonFileTripPersistence,
    MemoryTripPersistence,
    SqliteTripPersistence,
    TripPersistence,
    create_persistence,
)
from .snapshot import CoordinateRecord, TripSnapshot, decode_snapshot, encode_snapshot

__all__ = [
    "DEFAULT_KEY",
    "CoordinateRecord",
    "JsonFileTripPersistence",
    "MemoryTripPersistence",
    "SqliteTripPersistence",
    "TripPersistence",
    "TripSnapshot",
    "create_persistence",
    "decode_snapshot",
    "encode_snapshot",
]
