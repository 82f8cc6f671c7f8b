"""Reconnect delay policy for change-feed channels."""

from __future__ import annotations

from typing import Optional


class BackoffExhausted(RuntimeError):
    """Raised when the backoff policy has no further retries available."""


class ExponentialBackoff:
    """Exponential backoff with an attempt bound.

    The policy is stateless: connections keep their own retry counter and
    look up the delay for it with :meth:`delay_for`.
    """

    def __init__(
        self,
        base_interval: float = 1.0,
        multiplier: float = 2.0,
        max_interval: float = 30.0,
        max_attempts: Optional[int] = 5,
    ) -> None:
        if base_interval <= 0:
            raise ValueError("base_interval must be positive")
        if multiplier < 1:
            raise ValueError("multiplier must be at least 1.0")
        if max_interval < base_interval:
            raise ValueError("max_interval must be >= base_interval")
        if max_attempts is not None and max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        self.base_interval = base_interval
        self.multiplier = multiplier
        self.max_interval = max_interval
        self.max_attempts = max_attempts

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt >= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        if self.exhausted(attempt):
            raise BackoffExhausted("retry attempts exhausted")
        return min(self.base_interval * (self.multiplier**attempt), self.max_interval)


__all__ = ["BackoffExhausted", "ExponentialBackoff"]
