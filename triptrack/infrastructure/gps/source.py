"""Position source contract and subscription handle."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from ...domain.models import Fix, PositionError

logger = logging.getLogger(__name__)

FixCallback = Callable[[Fix], None]
ErrorCallback = Callable[[PositionError], None]


@dataclass(frozen=True)
class WatchOptions:
    """Acquisition options understood by every position source."""

    high_accuracy: bool = True
    max_fix_age_ms: int = 10_000  # 0 = no age limit
    timeout_ms: int = 5_000


class Subscription:
    """
    Live handle for a position stream.

    Holds the platform resource until cancelled. ``cancel`` is idempotent
    and releases the resource exactly once; any fix or error delivered
    after cancellation is discarded.
    """

    def __init__(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        release: Optional[Callable[[], None]] = None,
    ) -> None:
        self._on_fix = on_fix
        self._on_error = on_error
        self._release = release
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def bind_release(self, release: Callable[[], None]) -> None:
        """Attach the resource release hook once the resource exists."""
        if not self._active:
            release()
            return
        self._release = release

    def deliver_fix(self, fix: Fix) -> bool:
        """Forward a fix to the consumer. Returns False if discarded."""
        if not self._active:
            logger.debug("Discarding fix after cancellation")
            return False
        self._on_fix(fix)
        return True

    def deliver_error(self, error: PositionError) -> bool:
        """Forward an error to the consumer. Returns False if discarded."""
        if not self._active:
            logger.debug("Discarding error after cancellation: %s", error)
            return False
        self._on_error(error)
        return True

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        release, self._release = self._release, None
        if release is not None:
            release()


class PositionSource(ABC):
    """Platform positioning capability."""

    @abstractmethod
    async def get_once(self, options: WatchOptions) -> Fix:
        """
        Acquire a single fix.

        Raises:
            PositionError: permission denied, no capability, or timeout.
        """

    @abstractmethod
    def watch(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: WatchOptions,
    ) -> Subscription:
        """Start streaming fixes until the returned handle is cancelled."""

    def cancel(self, handle: Subscription) -> None:
        handle.cancel()
