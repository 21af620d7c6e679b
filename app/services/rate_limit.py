"""
In-process cooldown gate for manually triggered syncs.
"""

import math
import time
from collections.abc import Callable

import structlog

from app.config import settings

logger = structlog.get_logger()


class RateLimitedError(Exception):
    """Raised when an operation is triggered again inside its cooldown window."""

    def __init__(self, operation: str, remaining_seconds: int):
        self.operation = operation
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"{operation} is rate limited, retry in {remaining_seconds} seconds"
        )


class SyncRateLimiter:
    """
    Allows each operation key at most once per cooldown window.

    State is per process; a restart clears it.
    """

    def __init__(
        self,
        cooldown_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else settings.sync_cooldown_seconds
        )
        self._clock = clock
        self._last_run: dict[str, float] = {}

    def allow(self, key: str) -> bool:
        """
        Record an invocation of key if it is outside the cooldown window.

        Raises:
            RateLimitedError: With the whole seconds left until key is allowed again
        """
        now = self._clock()
        last = self._last_run.get(key)
        if last is not None:
            elapsed = now - last
            if elapsed < self.cooldown_seconds:
                remaining = max(math.ceil(self.cooldown_seconds - elapsed), 1)
                logger.warning("Sync request rate limited", operation=key, remaining_seconds=remaining)
                raise RateLimitedError(key, remaining)
        self._last_run[key] = now
        return True

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._last_run.clear()
        else:
            self._last_run.pop(key, None)
