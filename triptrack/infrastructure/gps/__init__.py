"""GPS infrastructure - position sources and subscriptions."""

from .gpsd_client import GpsdPositionSource, MockPositionSource
from .source import PositionSource, Subscription, WatchOptions

__all__ = [
    "GpsdPositionSource",
    "MockPositionSource",
    "PositionSource",
    "Subscription",
    "WatchOptions",
]
