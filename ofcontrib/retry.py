"""Retry bookkeeping with exponential back-off."""

from __future__ import annotations

DEFAULT_DELAY = 1.0
FACTOR = 2


class RetryCounter:
    """Counts retry attempts and hands out growing delays in seconds."""

    def __init__(self, max_retries: int, base_delay: float = DEFAULT_DELAY) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.current_delay = base_delay
        self.current_retries = 0

    def reset(self) -> None:
        """Forget past attempts and restore the base delay."""
        self.current_delay = self.base_delay
        self.current_retries = 0

    def retry(self) -> bool:
        """Count one attempt and say whether it is still allowed."""
        self.current_retries += 1
        return self.current_retries <= self.max_retries

    def sleep(self) -> float:
        """Return the current delay and grow the next one."""
        value = self.current_delay
        self.current_delay = FACTOR * self.current_delay
        return value