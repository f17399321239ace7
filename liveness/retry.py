# liveness/retry.py
"""Retry-with-confirmation policy.

A unit of work is retried on transient failures (``TransientError``) and on
"not present" results alike; both draw from the same attempt budget. Only
running out of attempts produces a ``DefinitiveFailure``, which is the one
signal the liveness tracker accepts for deactivating an entity outside the
end-of-session sweep. Any other exception is a bug or a persistence problem
and is raised to the caller untouched.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar, Union
from .errors import TransientError
from .utils import logger as default_logger

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DELAY_S = 1.0


@dataclass(frozen=True)
class NotPresent:
    """The operation completed but the expected content was absent."""
    reason: str = "not present"


@dataclass(frozen=True)
class Confirmed(Generic[T]):
    key: Any
    value: T
    attempts: int


@dataclass(frozen=True)
class DefinitiveFailure:
    key: Any
    attempts: int
    last_error: str
    reasons: List[str] = field(default_factory=list)

    @property
    def not_present_attempts(self) -> int:
        return sum(1 for r in self.reasons if r.startswith("not present"))


class RetryPolicy:
    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS, delay: float = DEFAULT_DELAY_S,
                 logger: Optional[logging.Logger] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.max_attempts = max_attempts
        self.delay = delay
        self.logger = logger or default_logger
        self._sleep = sleep

    async def attempt(self, op: Callable[[], Awaitable[Union[T, NotPresent]]],
                      key: Any = None) -> Union[Confirmed[T], DefinitiveFailure]:
        reasons: List[str] = []
        for n in range(1, self.max_attempts + 1):
            try:
                result = await op()
            except TransientError as e:
                reasons.append(f"transient: {e}")
                self.logger.warning("Attempt %d/%d failed for %s: %s", n, self.max_attempts, key, e)
            else:
                if not isinstance(result, NotPresent):
                    if n > 1:
                        self.logger.info("Confirmed %s on attempt %d", key, n)
                    return Confirmed(key=key, value=result, attempts=n)
                reasons.append(f"not present: {result.reason}")
                self.logger.warning("Attempt %d/%d for %s: %s", n, self.max_attempts, key, result.reason)
            if n < self.max_attempts:
                await self._sleep(self.delay)
        self.logger.error("All %d attempts failed for %s: %s", self.max_attempts, key, reasons[-1])
        return DefinitiveFailure(key=key, attempts=self.max_attempts, last_error=reasons[-1], reasons=reasons)
