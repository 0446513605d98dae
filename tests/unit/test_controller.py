"""
Tracking Session Controller Unit Tests
======================================

Drives the state machine with a scriptable position source.
"""

import asyncio

import pytest

from conftest import MUMBAI, PUNE, FakePositionSource
from triptrack.core.accumulator import geo_distance_km
from triptrack.core.controller import TrackingSessionController
from triptrack.domain.models import (
    ErrorKind,
    Fix,
    InvalidTransitionError,
    PersistenceError,
    PositionError,
    TrackingPhase,
)
from triptrack.infrastructure.gps.source import WatchOptions
from triptrack.infrastructure.storage import MemoryTripPersistence

pytestmark = pytest.mark.asyncio


def step(i: int) -> Fix:
    return Fix(19.0760 + i * 0.001, 72.8777, MUMBAI.captured_at + i * 1000)


class BrokenPersistence:
    """Backend whose writes always fail."""

    def __init__(self) -> None:
        self.saves = 0

    def save(self, state):
        self.saves += 1
        raise PersistenceError("disk full")

    def load(self):
        return None

    def clear(self):
        raise PersistenceError("disk full")


@pytest.fixture
def controller(source, memory_store):
    return TrackingSessionController(source, memory_store, rate_per_km=10.0)


async def test_start_seeds_anchor_and_streams(controller, source, memory_store):
    assert controller.get_phase() == TrackingPhase.IDLE

    await controller.start()

    assert controller.get_phase() == TrackingPhase.TRACKING
    assert source.watch_calls == 1
    assert controller.get_state().fixes == (MUMBAI,)
    assert memory_store.load().fixes == (MUMBAI,)


async def test_start_while_tracking_is_noop(controller, source):
    await controller.start()
    await controller.start()

    assert source.watch_calls == 1
    assert controller.get_phase() == TrackingPhase.TRACKING


async def test_stream_fixes_accumulate_and_persist(controller, source, memory_store):
    await controller.start()
    source.emit(PUNE)

    state = controller.get_state()
    assert state.fix_count == 2
    assert state.distance_km == pytest.approx(geo_distance_km(MUMBAI, PUNE))
    assert state.cost_amount == state.distance_km * 10.0
    assert memory_store.load().distance_km == pytest.approx(state.distance_km)


async def test_stream_error_keeps_totals(controller, source):
    await controller.start()
    source.emit(step(1), step(2), step(3))
    distance = controller.get_state().distance_km

    source.fail(ErrorKind.UNAVAILABLE)

    assert controller.get_phase() == TrackingPhase.ERRORED
    assert controller.last_error.kind == ErrorKind.UNAVAILABLE
    assert controller.get_state().fix_count == 4
    assert controller.get_state().distance_km == distance
    assert source.released == 1
    assert not source.subscriptions[-1].active


async def test_stop_twice_is_idempotent(controller, source):
    await controller.start()

    controller.stop()
    controller.stop()

    assert controller.get_phase() == TrackingPhase.STOPPED
    assert source.released == 1


async def test_stop_without_session_keeps_phase(controller):
    controller.stop()
    assert controller.get_phase() == TrackingPhase.IDLE


async def test_fix_after_stop_is_discarded(controller, source):
    await controller.start()
    stale = source.subscriptions[-1]
    controller.stop()

    assert stale.deliver_fix(step(5)) is False
    controller._on_fix(step(6))  # late callback reaching the controller directly

    assert controller.get_state().fix_count == 1


async def test_invalid_fix_is_dropped(controller, source):
    await controller.start()
    source.emit(Fix(float("nan"), 72.0, 1), Fix(91.0, 0.0, 2), Fix(0.0, -181.0, 3))

    assert controller.get_phase() == TrackingPhase.TRACKING
    assert controller.get_state().fix_count == 1
    assert controller.get_state().distance_km == 0.0


async def test_reset_while_tracking_rejected(controller):
    await controller.start()

    with pytest.raises(InvalidTransitionError):
        controller.reset()

    assert controller.get_phase() == TrackingPhase.TRACKING


async def test_reset_after_stop_clears_everything(controller, source, memory_store):
    await controller.start()
    source.emit(step(1))
    controller.stop()

    controller.reset()

    assert controller.get_phase() == TrackingPhase.IDLE
    state = controller.get_state()
    assert state.fixes == ()
    assert state.distance_km == 0.0
    assert state.cost_amount == 0.0
    assert memory_store.load() is None


@pytest.mark.parametrize("kind", [ErrorKind.PERMISSION_DENIED, ErrorKind.UNAVAILABLE, ErrorKind.TIMEOUT])
async def test_initial_fix_failure_then_retry(controller, source, kind):
    source.once_error = PositionError(kind)

    await controller.start()

    assert controller.get_phase() == TrackingPhase.ERRORED
    assert controller.last_error.kind == kind
    assert source.watch_calls == 0

    source.once_error = None
    await controller.start()

    assert controller.get_phase() == TrackingPhase.TRACKING
    assert controller.last_error is None


async def test_invalid_anchor_fails_start(source, memory_store):
    source.anchor = Fix(123.0, 0.0, 0)
    controller = TrackingSessionController(source, memory_store)

    await controller.start()

    assert controller.get_phase() == TrackingPhase.ERRORED
    assert controller.last_error.kind == ErrorKind.INVALID_FIX
    assert controller.get_state().is_empty


async def test_stop_while_acquiring_discards_anchor(controller, source):
    source.gate = asyncio.Event()
    task = asyncio.create_task(controller.start())
    await asyncio.sleep(0)
    assert controller.get_phase() == TrackingPhase.ACQUIRING

    controller.stop()
    source.gate.set()
    await task

    assert controller.get_phase() == TrackingPhase.STOPPED
    assert controller.get_state().is_empty
    assert source.watch_calls == 0


async def test_cancelled_start_restores_phase(controller, source):
    source.gate = asyncio.Event()

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(controller.start(), 0.05)

    assert controller.get_phase() == TrackingPhase.IDLE
    assert controller.get_state().is_empty

    source.gate = None
    await controller.start()

    assert controller.get_phase() == TrackingPhase.TRACKING
    assert source.watch_calls == 1


async def test_cancelled_start_keeps_previous_error(controller, source):
    source.once_error = PositionError(ErrorKind.TIMEOUT)
    await controller.start()
    source.once_error = None
    source.gate = asyncio.Event()

    task = asyncio.create_task(controller.start())
    await asyncio.sleep(0)
    assert controller.get_phase() == TrackingPhase.ACQUIRING
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert controller.get_phase() == TrackingPhase.ERRORED
    assert controller.last_error.kind == ErrorKind.TIMEOUT


async def test_initial_request_uses_fresh_fix_and_timeout(source):
    options = WatchOptions(high_accuracy=True, max_fix_age_ms=10_000, timeout_ms=30_000)
    controller = TrackingSessionController(source, options=options, initial_timeout_ms=5_000)

    await controller.start()

    assert source.once_options.max_fix_age_ms == 0
    assert source.once_options.timeout_ms == 5_000
    assert source.watch_options == options


async def test_restores_unfinished_trip_and_continues(source, memory_store):
    first = TrackingSessionController(source, memory_store, rate_per_km=8.0)
    await first.start()
    source.emit(step(1), step(2))
    saved_distance = first.get_state().distance_km
    first.stop()

    resumed_source = FakePositionSource(anchor=step(3))
    resumed = TrackingSessionController(resumed_source, memory_store, rate_per_km=8.0)

    assert resumed.get_phase() == TrackingPhase.IDLE
    assert resumed.get_state().fix_count == 3
    assert resumed.get_state().distance_km == pytest.approx(saved_distance)

    await resumed.start()

    state = resumed.get_state()
    assert state.fix_count == 4
    assert state.distance_km == pytest.approx(saved_distance + geo_distance_km(step(2), step(3)))
    assert state.cost_amount == pytest.approx(state.distance_km * 8.0)


async def test_restore_reprices_with_session_rate(source, memory_store):
    priced_at_8 = TrackingSessionController(source, memory_store, rate_per_km=8.0)
    await priced_at_8.start()
    source.emit(PUNE)
    priced_at_8.stop()

    priced_at_10 = TrackingSessionController(FakePositionSource(), memory_store, rate_per_km=10.0)

    state = priced_at_10.get_state()
    assert state.cost_amount == state.distance_km * 10.0


async def test_corrupt_saved_trip_starts_empty(source):
    store = MemoryTripPersistence()
    store._records[store.key] = "{corrupted"

    controller = TrackingSessionController(source, store)

    assert controller.get_state().is_empty
    assert controller.get_phase() == TrackingPhase.IDLE


async def test_persistence_failures_do_not_stop_tracking(source):
    broken = BrokenPersistence()
    controller = TrackingSessionController(source, broken)

    await controller.start()
    source.emit(step(1), step(2))

    assert controller.get_phase() == TrackingPhase.TRACKING
    assert controller.get_state().fix_count == 3
    assert broken.saves == 3

    controller.stop()
    controller.reset()
    assert controller.get_state().is_empty


async def test_listeners_see_every_change(controller, source):
    seen = []

    def broken_listener(state, phase):
        raise RuntimeError("boom")

    controller.on_change(broken_listener)
    unsubscribe = controller.on_change(lambda state, phase: seen.append((phase, state.fix_count)))

    await controller.start()
    source.emit(step(1))
    controller.stop()
    unsubscribe()
    controller.reset()

    assert seen == [
        (TrackingPhase.ACQUIRING, 0),
        (TrackingPhase.TRACKING, 1),
        (TrackingPhase.TRACKING, 2),
        (TrackingPhase.STOPPED, 2),
    ]


async def test_start_after_stop_resumes_same_trip(controller, source):
    await controller.start()
    source.emit(step(1))
    controller.stop()

    source.anchor = step(2)
    await controller.start()

    assert controller.get_phase() == TrackingPhase.TRACKING
    assert controller.get_state().fix_count == 3
    assert source.watch_calls == 2
