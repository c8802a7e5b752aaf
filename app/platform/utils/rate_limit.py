import asyncio
import time
from typing import Awaitable, Callable, Optional

from app.platform.exceptions import BrowserstackError, ErrorKind

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class TokenBucketRateLimiter:
    """
    Token bucket shared by every outbound call to the screenshot API.

    Refill rule: on each acquire attempt, every full refill interval that
    elapsed since the last refill adds ``capacity`` tokens (capped at
    capacity). ``last_refill`` only moves when tokens were actually added.

    When the bucket is empty the caller backs off exponentially
    (``initial_delay * backoff_factor ** attempt``) and retries up to
    ``max_retries`` times before failing with RATE_LIMIT_EXCEEDED.

    Refill and consume happen under one asyncio.Lock; the back-off sleep
    happens outside it, so a cancelled waiter never holds the bucket.
    """

    def __init__(
        self,
        capacity: int = 5,
        refill_interval_ms: int = 1000,
        max_retries: int = 3,
        initial_delay_ms: int = 1000,
        backoff_factor: float = 2.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        logger=None,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_interval_ms <= 0:
            raise ValueError("refill_interval_ms must be positive")
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")

        self.capacity = capacity
        self.refill_interval_ms = refill_interval_ms
        self.max_retries = max_retries
        self.initial_delay_ms = initial_delay_ms
        self.backoff_factor = backoff_factor

        self._clock = clock
        self._sleep = sleep
        self._logger = logger
        self._lock = asyncio.Lock()

        self._tokens = capacity
        self._last_refill = clock()

    @classmethod
    def from_settings(cls, settings, logger=None) -> "TokenBucketRateLimiter":
        return cls(
            capacity=settings.RATE_LIMIT_CAPACITY,
            refill_interval_ms=settings.RATE_LIMIT_REFILL_INTERVAL_MS,
            max_retries=settings.RATE_LIMIT_MAX_RETRIES,
            initial_delay_ms=settings.RATE_LIMIT_INITIAL_DELAY_MS,
            backoff_factor=settings.RATE_LIMIT_BACKOFF_FACTOR,
            logger=logger,
        )

    @property
    def tokens(self) -> int:
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed_ms = (now - self._last_refill) * 1000
        intervals = int(elapsed_ms // self.refill_interval_ms)
        if intervals > 0:
            self._tokens = min(self.capacity, self._tokens + intervals * self.capacity)
            self._last_refill = now

    async def _try_take(self) -> bool:
        async with self._lock:
            self._refill()
            if self._tokens > 0:
                self._tokens -= 1
                return True
            return False

    async def available_tokens(self) -> int:
        async with self._lock:
            self._refill()
            return self._tokens

    def backoff_delay_ms(self, attempt: int) -> float:
        return self.initial_delay_ms * (self.backoff_factor ** attempt)

    async def acquire(self, correlation_id: Optional[str] = None) -> None:
        for attempt in range(self.max_retries + 1):
            if await self._try_take():
                return

            if attempt == self.max_retries:
                break

            delay_ms = self.backoff_delay_ms(attempt)
            if self._logger:
                self._logger.debug(
                    "Rate limiter empty, backing off",
                    correlation_id=correlation_id,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay_ms=delay_ms,
                )
            await self._sleep(delay_ms / 1000)

        error = BrowserstackError(
            ErrorKind.RATE_LIMIT_EXCEEDED,
            f"Rate limit exceeded after {self.max_retries} retries",
            correlation_id=correlation_id,
            context={"capacity": self.capacity, "refill_interval_ms": self.refill_interval_ms},
        )
        if self._logger:
            self._logger.warn(
                "Rate limiter exhausted",
                correlation_id=error.correlation_id,
                kind=error.kind.value,
                max_retries=self.max_retries,
            )
        raise error
