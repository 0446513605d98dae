"""CSV export of a trip summary and its recorded path."""

from __future__ import annotations

import csv
import logging
from datetime import datetime
from pathlib import Path

from .domain.models import TripState

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _fmt_time(value: datetime | None) -> str:
    return value.strftime(DATE_FORMAT) if value else ""


def trip_summary(state: TripState) -> dict[str, str]:
    """Display values for a trip, money and distance rounded to 2 places."""
    return {
        "Start": _fmt_time(state.started_at),
        "End": _fmt_time(state.ended_at),
        "Distance (km)": f"{state.distance_km:.2f}",
        "Cost": f"{state.cost_amount:.2f}",
        "Rate (per km)": f"{state.rate_per_km:.2f}",
        "Points": str(state.fix_count),
    }


def write_summary_csv(state: TripState, output_path: str | Path) -> Path:
    """Write a header row and one value row."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    summary = trip_summary(state)

    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(summary.keys())
        writer.writerow(summary.values())

    logger.info("Exported trip summary to %s", output_path)
    return output_path


def write_path_csv(state: TripState, output_path: str | Path) -> int:
    """
    Export the recorded path, one row per fix.

    Returns:
        Number of points exported
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["lat", "lng", "timestamp", "time"])
        for fix in state.fixes:
            writer.writerow(
                [
                    f"{fix.latitude:.6f}",
                    f"{fix.longitude:.6f}",
                    fix.captured_at,
                    _fmt_time(fix.captured_at_dt),
                ]
            )

    logger.info("Exported %d path points to %s", state.fix_count, output_path)
    return state.fix_count
