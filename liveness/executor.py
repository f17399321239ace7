# liveness/executor.py
"""Bounded-concurrency batch executor.

Items run in fixed-size batches. Every item in a batch is awaited until it
settles, a raised exception becomes that item's outcome instead of
cancelling its siblings, and the executor pauses between batches so the
crawled source sees bursts of at most ``batch_cap`` requests.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar
from .schemas import Outcome
from .utils import logger as default_logger

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_BATCH_CAP = 10
DEFAULT_INTER_BATCH_DELAY_S = 2.0


def rejected_outcome(item, error: BaseException) -> Outcome:
    key = item if isinstance(item, str) else getattr(item, "external_id", None) or getattr(item, "id", None)
    return Outcome(external_id=str(key) if key is not None else None, status="rejected",
                   detail=str(error) or type(error).__name__)


class BatchExecutor:
    def __init__(self, batch_cap: int = DEFAULT_BATCH_CAP,
                 inter_batch_delay: float = DEFAULT_INTER_BATCH_DELAY_S,
                 logger: Optional[logging.Logger] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 on_error: Callable[[object, BaseException], object] = rejected_outcome,
                 label: str = "items"):
        if batch_cap < 1:
            raise ValueError("batch_cap must be at least 1")
        self.batch_cap = batch_cap
        self.inter_batch_delay = inter_batch_delay
        self.logger = logger or default_logger
        self.on_error = on_error
        self.label = label
        self._sleep = sleep

    def batch_size(self, limit: int) -> int:
        return min(max(1, int(limit)), self.batch_cap)

    def batches(self, items: Sequence[T], limit: int) -> List[List[T]]:
        size = self.batch_size(limit)
        return [list(items[i:i + size]) for i in range(0, len(items), size)]

    async def run(self, items: Sequence[T], limit: int, work: Callable[[T], Awaitable[R]]) -> List[R]:
        items = list(items)
        groups = self.batches(items, limit)
        results: List[R] = []
        for index, batch in enumerate(groups, start=1):
            self.logger.info("Processing %s batch %d/%d (%d %s)",
                             self.label, index, len(groups), len(batch), self.label)
            settled = await asyncio.gather(*(work(item) for item in batch), return_exceptions=True)
            for item, result in zip(batch, settled):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        # KeyboardInterrupt / CancelledError belong to the process, not the item
                        raise result
                    self.logger.error("Work on %r raised: %s", item, result)
                    result = self.on_error(item, result)
                results.append(result)
            if index < len(groups) and self.inter_batch_delay > 0:
                self.logger.info("Waiting %.1f seconds before next batch...", self.inter_batch_delay)
                await self._sleep(self.inter_batch_delay)
        return results
