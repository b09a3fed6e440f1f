from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from dailies.errors import TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Beyond this exponent the raw delay is past any sensible cap.
_MAX_EXPONENT = 32


@dataclass(frozen=True)
class RetryPolicy:
    """Jittered exponential backoff for retrying one failed operation."""

    base_ms: float = 1000.0
    min_ms: float = 500.0
    max_ms: float = 60_000.0
    jitter_low: float = 0.8
    jitter_high: float = 1.2
    max_attempts: int = 3

    def delay_ms(self, attempt: int, sample: Optional[float] = None) -> float:
        """Backoff for 0-indexed ``attempt``.

        ``sample`` is a uniform draw in [0, 1] mapped onto the jitter band;
        pass it explicitly for deterministic results.
        """
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        raw = self.base_ms * (2 ** min(attempt, _MAX_EXPONENT))
        if raw > self.max_ms:
            return self.max_ms
        if sample is None:
            sample = random.random()
        sample = min(1.0, max(0.0, sample))
        factor = self.jitter_low + (self.jitter_high - self.jitter_low) * sample
        return min(self.max_ms, max(self.min_ms, raw * factor))

    def delay_seconds(self, attempt: int, sample: Optional[float] = None) -> float:
        return self.delay_ms(attempt, sample) / 1000.0

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str,
        retry_on: Tuple[Type[BaseException], ...] = (TransientProviderError,),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        last_error: BaseException | None = None
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except retry_on as exc:
                last_error = exc
                if attempt + 1 >= self.max_attempts:
                    break
                delay = self.delay_seconds(attempt)
                logger.warning(
                    "%s failed (%s); retrying in %.2fs (attempt %d/%d)",
                    label,
                    exc,
                    delay,
                    attempt + 1,
                    self.max_attempts,
                )
                await sleep(delay)
        if last_error is None:
            raise RuntimeError(f"{label} was not attempted (max_attempts={self.max_attempts})")
        raise last_error


def retry_delay(attempt: int, sample: Optional[float] = None) -> float:
    """Backoff in milliseconds using the default policy."""
    return RetryPolicy().delay_ms(attempt, sample)
