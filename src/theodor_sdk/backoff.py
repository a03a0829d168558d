"""Reconnect backoff for the real-time connection.

Brief outages reconnect at the base delay. Once the consecutive failure
count passes ``threshold`` the delay grows with the square of the count,
capped at ``max_delay``:

    failures <= threshold:  base_delay
    failures >  threshold:  min(max_delay, base_delay * failures**2)
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_BASE_DELAY = 3.0
DEFAULT_MAX_DELAY = 300.0
DEFAULT_FAILURE_THRESHOLD = 7


@dataclass
class ReconnectBackoff:
    """Consecutive-failure counter and the delay derived from it."""

    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    threshold: int = DEFAULT_FAILURE_THRESHOLD
    failures: int = 0

    def delay_for(self, failures: int) -> float:
        """Delay before the next attempt after ``failures`` consecutive closes."""
        if failures <= self.threshold:
            return self.base_delay
        return min(self.max_delay, self.base_delay * failures * failures)

    @property
    def next_delay(self) -> float:
        return self.delay_for(self.failures)

    def record_failure(self) -> int:
        """Count one more failed or dropped connection. Returns the new count."""
        self.failures += 1
        return self.failures

    def reset(self) -> None:
        """Forget past failures after a successful open."""
        self.failures = 0
