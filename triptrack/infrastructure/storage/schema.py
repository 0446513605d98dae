"""SQLite database schema for trip snapshots."""

TRIP_STATE_SCHEMA = """
-- One row per key; value holds the latest JSON snapshot
CREATE TABLE IF NOT EXISTS trip_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""
