"""
Trip Persistence
================

Durable key/value storage for the latest trip snapshot.

Every backend keeps exactly one record per key, so saving once per fix
overwrites rather than grows. Loading a damaged record yields ``None``.

Usage:
    store = SqliteTripPersistence("data/triptrack.db")
    store.save(state)
    restored = store.load()
    store.clear()
"""

from __future__ import annotations

import logging
import os
import sqlite3
import tempfile
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Optional, Protocol

from ...domain.models import PersistenceError, TripState
from .schema import TRIP_STATE_SCHEMA
from .snapshot import decode_snapshot, encode_snapshot

if TYPE_CHECKING:
    from ...config import StorageConfig

logger = logging.getLogger(__name__)

DEFAULT_KEY = "salesmanTrip"


class TripPersistence(Protocol):
    """Port used by the tracking controller."""

    def save(self, state: TripState) -> None: ...

    def load(self) -> Optional[TripState]: ...

    def clear(self) -> None: ...


class MemoryTripPersistence:
    """In-process store holding the encoded document."""

    def __init__(self, key: str = DEFAULT_KEY) -> None:
        self.key = key
        self._records: dict[str, str] = {}

    def save(self, state: TripState) -> None:
        self._records[self.key] = encode_snapshot(state)

    def load(self) -> Optional[TripState]:
        raw = self._records.get(self.key)
        return decode_snapshot(raw) if raw is not None else None

    def clear(self) -> None:
        self._records.pop(self.key, None)

    @property
    def raw(self) -> Optional[str]:
        """Stored document, for diagnostics."""
        return self._records.get(self.key)


class JsonFileTripPersistence:
    """
    One JSON document per key under a directory.

    Writes go to a temporary file that atomically replaces the record, so
    a crash mid-write never leaves a half-written snapshot.
    """

    def __init__(self, directory: str | Path, key: str = DEFAULT_KEY) -> None:
        self.directory = Path(directory).expanduser()
        self.key = key

    @property
    def path(self) -> Path:
        return self.directory / f"{self.key}.json"

    def save(self, state: TripState) -> None:
        payload = encode_snapshot(state)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{self.key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fp:
                    fp.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"cannot write {self.path}: {exc}") from exc

    def load(self) -> Optional[TripState]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Cannot read saved trip %s: %s", self.path, exc)
            return None
        return decode_snapshot(raw)

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"cannot remove {self.path}: {exc}") from exc


class SqliteTripPersistence:
    """Key/value table in SQLite; upsert keeps only the latest snapshot."""

    def __init__(self, db_path: str | Path, key: str = DEFAULT_KEY) -> None:
        self.db_path = Path(db_path).expanduser()
        self.key = key
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        try:
            with self._get_connection() as conn:
                conn.executescript(TRIP_STATE_SCHEMA)
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"cannot initialize {self.db_path}: {exc}") from exc
        logger.info("Trip database initialized: %s", self.db_path)

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def save(self, state: TripState) -> None:
        now = datetime.now(UTC).isoformat()
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO trip_state (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (self.key, encode_snapshot(state), now),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"cannot save trip: {exc}") from exc

    def load(self) -> Optional[TripState]:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT value FROM trip_state WHERE key = ?", (self.key,)
                ).fetchone()
        except sqlite3.Error as exc:
            logger.warning("Cannot read saved trip from %s: %s", self.db_path, exc)
            return None
        if row is None:
            return None
        return decode_snapshot(row[0])

    def clear(self) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM trip_state WHERE key = ?", (self.key,))
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"cannot clear trip: {exc}") from exc


def create_persistence(config: StorageConfig) -> TripPersistence:
    """Build the backend selected in the storage config."""
    from ...config import StorageBackend

    if config.backend == StorageBackend.MEMORY:
        return MemoryTripPersistence(config.key)
    if config.backend == StorageBackend.SQLITE:
        return SqliteTripPersistence(config.path / "triptrack.db", config.key)
    return JsonFileTripPersistence(config.path, config.key)
