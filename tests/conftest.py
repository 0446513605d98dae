"""Shared fixtures: scriptable position source and in-memory storage."""

from __future__ import annotations

import asyncio

import pytest

from triptrack.domain.models import ErrorKind, Fix, PositionError
from triptrack.infrastructure.gps.source import PositionSource, Subscription, WatchOptions
from triptrack.infrastructure.storage import MemoryTripPersistence

MUMBAI = Fix(19.0760, 72.8777, 1_700_000_000_000)
PUNE = Fix(18.5204, 73.8567, 1_700_000_600_000)


class FakePositionSource(PositionSource):
    """Position source driven by the test."""

    def __init__(self, anchor: Fix = MUMBAI) -> None:
        self.anchor = anchor
        self.once_error: PositionError | None = None
        self.once_options: WatchOptions | None = None
        self.watch_options: WatchOptions | None = None
        self.gate: asyncio.Event | None = None
        self.subscriptions: list[Subscription] = []
        self.released = 0

    async def get_once(self, options: WatchOptions) -> Fix:
        self.once_options = options
        if self.gate is not None:
            await self.gate.wait()
        if self.once_error is not None:
            raise self.once_error
        return self.anchor

    def watch(self, on_fix, on_error, options: WatchOptions) -> Subscription:
        self.watch_options = options
        sub = Subscription(on_fix, on_error, release=self._release)
        self.subscriptions.append(sub)
        return sub

    def _release(self) -> None:
        self.released += 1

    @property
    def watch_calls(self) -> int:
        return len(self.subscriptions)

    def emit(self, *fixes: Fix) -> None:
        for fix in fixes:
            self.subscriptions[-1].deliver_fix(fix)

    def fail(self, kind: ErrorKind = ErrorKind.UNAVAILABLE) -> None:
        self.subscriptions[-1].deliver_error(PositionError(kind))


@pytest.fixture
def source() -> FakePositionSource:
    return FakePositionSource()


@pytest.fixture
def memory_store() -> MemoryTripPersistence:
    return MemoryTripPersistence()
