"""
Tracking Session Controller
===========================

State machine for one trip-tracking session:

    idle/stopped/errored --start()--> acquiring --anchor fix--> tracking
    acquiring/tracking --stop()--> stopped
    acquiring --get_once failure--> errored
    tracking --stream error--> errored (subscription cancelled, totals kept)
    idle/stopped/errored --reset()--> idle (persisted copy erased)

The controller is the only writer of the trip state and the only owner
of the position subscription. Every accepted fix is appended, persisted
and published to listeners before the next one is processed.

Usage:
    controller = TrackingSessionController(source, persistence, rate_per_km=10)
    controller.on_change(lambda state, phase: print(phase, state.distance_km))

    await controller.start()
    ...
    controller.stop()
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Callable, Optional

from ..domain.models import (
    ErrorKind,
    Fix,
    InvalidTransitionError,
    PersistenceError,
    PositionError,
    TrackingPhase,
    TripState,
)
from ..infrastructure.gps.source import PositionSource, Subscription, WatchOptions
from ..infrastructure.storage.persistence import TripPersistence
from .store import TripStateStore

logger = logging.getLogger(__name__)

ChangeListener = Callable[[TripState, TrackingPhase], None]


class TrackingSessionController:
    """
    Start/stop/reset semantics around a position stream.

    Guarantees at most one live subscription, drops invalid fixes
    without changing phase, and never lets sensor or storage failures
    escape as exceptions.
    """

    def __init__(
        self,
        source: PositionSource,
        persistence: Optional[TripPersistence] = None,
        *,
        rate_per_km: float = 10.0,
        options: Optional[WatchOptions] = None,
        initial_timeout_ms: int = 5_000,
    ) -> None:
        self._source = source
        self._persistence = persistence
        self._store = TripStateStore(rate_per_km)
        self._watch_options = options or WatchOptions()
        self._initial_options = replace(
            self._watch_options, max_fix_age_ms=0, timeout_ms=initial_timeout_ms
        )
        self._phase = TrackingPhase.IDLE
        self._last_error: Optional[PositionError] = None
        self._subscription: Optional[Subscription] = None
        self._listeners: list[ChangeListener] = []
        self._lock = threading.RLock()
        # Bumped by stop()/reset() so a late anchor fix is ignored
        self._attempt = 0
        self._restore()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def phase(self) -> TrackingPhase:
        return self._phase

    @property
    def last_error(self) -> Optional[PositionError]:
        return self._last_error

    @property
    def rate_per_km(self) -> float:
        return self._store.rate_per_km

    def get_state(self) -> TripState:
        return self._store.state

    def get_phase(self) -> TrackingPhase:
        return self._phase

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Acquire an anchor fix, then stream.

        No-op while already acquiring or tracking. Failures land in the
        errored phase with ``last_error`` set; start() may be called again.
        If the awaiting task is cancelled, the phase held before start() is
        restored and the cancellation propagates.
        """
        with self._lock:
            if self._phase.is_active:
                logger.debug("start() ignored while %s", self._phase.value)
                return
            self._attempt += 1
            attempt = self._attempt
            previous_phase, previous_error = self._phase, self._last_error
            self._last_error = None
            self._set_phase(TrackingPhase.ACQUIRING)

        try:
            fix = await self._source.get_once(self._initial_options)
        except PositionError as exc:
            with self._lock:
                if self._is_current(attempt):
                    self._fail(exc)
            return
        except BaseException:
            with self._lock:
                if self._is_current(attempt):
                    logger.info("Start abandoned while acquiring; back to %s", previous_phase.value)
                    self._attempt += 1
                    self._last_error = previous_error
                    self._set_phase(previous_phase)
            raise

        with self._lock:
            if not self._is_current(attempt):
                logger.debug("Discarding anchor fix from a cancelled start")
                return
            if not fix.is_valid:
                self._fail(PositionError(ErrorKind.INVALID_FIX, "initial fix out of range"))
                return

            self._accept(fix, publish=False)
            try:
                self._subscription = self._source.watch(
                    self._on_fix, self._on_error, self._watch_options
                )
            except PositionError as exc:
                self._fail(exc)
                return
            self._set_phase(TrackingPhase.TRACKING)
            logger.info("Tracking started at %.6f, %.6f", fix.latitude, fix.longitude)

    def stop(self) -> None:
        """End the session. Safe to call repeatedly."""
        with self._lock:
            self._attempt += 1
            self._cancel_subscription()
            if self._phase.is_active:
                self._set_phase(TrackingPhase.STOPPED)
                state = self._store.state
                logger.info(
                    "Tracking stopped: %.2f km, cost %.2f, %d points",
                    state.distance_km,
                    state.cost_amount,
                    state.fix_count,
                )

    def reset(self) -> None:
        """
        Discard the trip in memory and in storage.

        Raises:
            InvalidTransitionError: while acquiring or tracking.
        """
        with self._lock:
            if self._phase.is_active:
                raise InvalidTransitionError("reset", self._phase)
            self._attempt += 1
            if self._persistence is not None:
                try:
                    self._persistence.clear()
                except PersistenceError as exc:
                    logger.error("Failed to clear saved trip: %s", exc)
            self._store.clear()
            self._last_error = None
            self._set_phase(TrackingPhase.IDLE)
            logger.info("Trip reset")

    # ------------------------------------------------------------------
    # Stream callbacks
    # ------------------------------------------------------------------

    def _on_fix(self, fix: Fix) -> None:
        with self._lock:
            if self._phase != TrackingPhase.TRACKING:
                logger.debug("Ignoring fix while %s", self._phase.value)
                return
            if not fix.is_valid:
                logger.warning(
                    "Dropping %s: %r, %r",
                    ErrorKind.INVALID_FIX.value,
                    fix.latitude,
                    fix.longitude,
                )
                return
            self._accept(fix)

    def _on_error(self, error: PositionError) -> None:
        with self._lock:
            if self._phase != TrackingPhase.TRACKING:
                logger.debug("Ignoring stream error while %s: %s", self._phase.value, error)
                return
            self._fail(error)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _restore(self) -> None:
        if self._persistence is None:
            return
        saved = self._persistence.load()
        if saved is None:
            return
        state = self._store.replace(saved)
        logger.info(
            "Restored unfinished trip: %.2f km over %d points",
            state.distance_km,
            state.fix_count,
        )

    def _is_current(self, attempt: int) -> bool:
        return attempt == self._attempt and self._phase == TrackingPhase.ACQUIRING

    def _accept(self, fix: Fix, publish: bool = True) -> None:
        state = self._store.append(fix)
        if self._persistence is not None:
            try:
                self._persistence.save(state)
            except PersistenceError as exc:
                logger.error("Failed to save trip: %s", exc)
        if publish:
            self._notify()

    def _fail(self, error: PositionError) -> None:
        self._cancel_subscription()
        self._last_error = error
        logger.warning("Tracking error: %s", error)
        self._set_phase(TrackingPhase.ERRORED)

    def _cancel_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            self._source.cancel(subscription)

    def _set_phase(self, phase: TrackingPhase) -> None:
        if phase != self._phase:
            logger.debug("Phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        self._notify()

    def _notify(self) -> None:
        state, phase = self._store.state, self._phase
        for listener in list(self._listeners):
            try:
                listener(state, phase)
            except Exception as e:
                logger.error("Listener error: %s - %s", getattr(listener, "__name__", listener), e)
