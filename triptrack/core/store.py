"""In-memory holder of the current trip state."""

from __future__ import annotations

import logging
from dataclasses import replace

from ..domain.models import Fix, TripState
from .accumulator import append_fix

logger = logging.getLogger(__name__)


class TripStateStore:
    """
    Current trip record for a fixed rate.

    All mutations go through this object; readers get immutable snapshots.
    """

    def __init__(self, rate_per_km: float) -> None:
        if rate_per_km <= 0:
            raise ValueError("rate_per_km must be positive")
        self.rate_per_km = rate_per_km
        self._state = TripState.empty(rate_per_km)

    @property
    def state(self) -> TripState:
        return self._state

    def append(self, fix: Fix) -> TripState:
        """Append one fix and return the new state."""
        self._state = append_fix(self._state, fix)
        return self._state

    def replace(self, state: TripState) -> TripState:
        """
        Adopt a previously saved trip.

        Cost is re-derived with this store's rate so the cost invariant
        holds even if the snapshot was priced differently.
        """
        cost = state.distance_km * self.rate_per_km
        if abs(cost - state.cost_amount) > 1e-9:
            logger.info(
                "Repricing restored trip: %.2f -> %.2f (rate %.2f/km)",
                state.cost_amount,
                cost,
                self.rate_per_km,
            )
        self._state = replace(state, cost_amount=cost, rate_per_km=self.rate_per_km)
        return self._state

    def clear(self) -> TripState:
        self._state = TripState.empty(self.rate_per_km)
        return self._state
