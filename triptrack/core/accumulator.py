"""
Trip Distance Accumulator
=========================

Great-circle distance between fixes and incremental accumulation of a
trip's traveled distance and cost.

Usage:
    state = TripState.empty(rate_per_km=10.0)

    for fix in fixes:
        state = append_fix(state, fix)
        print(f"total: {state.distance_km:.2f}km, cost: {state.cost_amount:.2f}")
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import replace

from ..domain.models import Fix, TripState

EARTH_RADIUS_KM = 6371.0


def geo_distance_km(a: Fix, b: Fix) -> float:
    """
    Calculate distance between two fixes using the Haversine formula.

    Args:
        a: First fix
        b: Second fix

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(a.latitude)
    lat2_rad = math.radians(b.latitude)
    dlat = math.radians(b.latitude - a.latitude)
    dlon = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    # Rounding can push h just outside [0, 1] for identical or antipodal points
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_KM * c


def append_fix(state: TripState, fix: Fix) -> TripState:
    """
    Append a fix to the trip path and grow the totals.

    Only the leg from the previous last fix is added, so the cost per
    fix is constant regardless of path length. The first fix of a trip
    contributes no distance.
    """
    previous = state.last_fix
    distance = state.distance_km
    if previous is not None:
        distance += geo_distance_km(previous, fix)

    return replace(
        state,
        fixes=state.fixes + (fix,),
        distance_km=distance,
        cost_amount=distance * state.rate_per_km,
    )


def path_distance_km(fixes: Iterable[Fix]) -> float:
    """Sum consecutive leg distances of a path in one pass."""
    total = 0.0
    previous: Fix | None = None
    for fix in fixes:
        if previous is not None:
            total += geo_distance_km(previous, fix)
        previous = fix
    return total


def initial_bearing(a: Fix, b: Fix) -> float:
    """
    Calculate bearing from fix a to fix b.

    Returns:
        Bearing in degrees (0-360, 0=North)
    """
    lat1_rad = math.radians(a.latitude)
    lat2_rad = math.radians(b.latitude)
    dlon = math.radians(b.longitude - a.longitude)

    x = math.sin(dlon) * math.cos(lat2_rad)
    y = math.cos(lat1_rad) * math.sin(lat2_rad) - math.sin(lat1_rad) * math.cos(
        lat2_rad
    ) * math.cos(dlon)

    bearing = math.degrees(math.atan2(x, y))
    return (bearing + 360) % 360
