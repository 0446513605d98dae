import pytest

from triptrack.core.store import TripStateStore
from triptrack.domain.models import Fix, TripState


def test_new_store_is_empty():
    store = TripStateStore(10.0)
    assert store.state.is_empty
    assert store.state.distance_km == 0.0
    assert store.state.rate_per_km == 10.0


def test_append_grows_state():
    store = TripStateStore(8.0)
    store.append(Fix(0.0, 0.0, 0))
    state = store.append(Fix(0.0, 1.0, 1))
    assert state is store.state
    assert state.fix_count == 2
    assert state.cost_amount == state.distance_km * 8.0


def test_replace_reprices_with_store_rate():
    store = TripStateStore(10.0)
    saved = TripState(fixes=(Fix(0, 0, 0), Fix(0, 1, 1)), distance_km=111.0, cost_amount=888.0, rate_per_km=8.0)
    state = store.replace(saved)
    assert state.fixes == saved.fixes
    assert state.distance_km == 111.0
    assert state.cost_amount == pytest.approx(1110.0)
    assert state.rate_per_km == 10.0


def test_clear_keeps_rate():
    store = TripStateStore(8.0)
    store.append(Fix(1.0, 1.0, 0))
    state = store.clear()
    assert state.is_empty
    assert state.rate_per_km == 8.0


@pytest.mark.parametrize("rate", [0, -1.5])
def test_rate_must_be_positive(rate):
    with pytest.raises(ValueError):
        TripStateStore(rate)


def test_trip_times_follow_fixes():
    store = TripStateStore(10.0)
    assert store.state.started_at is None
    store.append(Fix(1.0, 1.0, 1_700_000_000_000))
    store.append(Fix(1.0, 1.1, 1_700_000_060_000))
    assert (store.state.ended_at - store.state.started_at).total_seconds() == 60


@pytest.mark.parametrize(
    "lat,lon,valid",
    [
        (0.0, 0.0, True),
        (90.0, -180.0, True),
        (90.1, 0.0, False),
        (0.0, 180.5, False),
        (float("nan"), 0.0, False),
        (0.0, float("inf"), False),
    ],
)
def test_fix_validity(lat, lon, valid):
    assert Fix(lat, lon, 0).is_valid is valid
