"""
Exponential backoff with a cap.

Delay starts at ``base`` and doubles after every failure up to ``max_delay``;
a success resets it.
"""


class ExponentialBackoff:
    """Doubling reconnect/retry delay."""

    def __init__(self, base: float, max_delay: float):
        if base <= 0:
            raise ValueError("base delay must be positive")
        self.base = base
        self.max_delay = max(max_delay, base)
        self.current = base

    def next_delay(self) -> float:
        """Delay to wait now; advances the backoff for the next failure."""
        delay = self.current
        self.current = min(self.current * 2, self.max_delay)
        return delay

    def reset(self) -> None:
        self.current = self.base
