from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, Field

from dailies.errors import ValidationError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class QuotaCategory(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
    TEXT = "text"


class QuotaRule(BaseModel):
    min_interval_ms: int = Field(ge=0, description="Minimum spacing between two calls of the category")

    @property
    def min_interval(self) -> float:
        return self.min_interval_ms / 1000.0


DEFAULT_RULES: Dict[QuotaCategory, QuotaRule] = {
    QuotaCategory.VIDEO: QuotaRule(min_interval_ms=30_000),
    QuotaCategory.IMAGE: QuotaRule(min_interval_ms=20_000),
    QuotaCategory.TEXT: QuotaRule(min_interval_ms=12_000),
}


class QuotaGovernor:
    """Spaces remote calls so no category is hit more often than its rule allows.

    Each category keeps the timestamp of its last granted call. Acquisitions
    for one category are serialized behind a per-category lock, so a waiter
    always measures against the previous acquirer's recorded timestamp.
    Categories never wait on each other.
    """

    def __init__(
        self,
        rules: Mapping[QuotaCategory, QuotaRule] | None = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._rules: Dict[QuotaCategory, QuotaRule] = dict(rules if rules is not None else DEFAULT_RULES)
        self._clock = clock
        self._sleep = sleep
        self._last_call: Dict[QuotaCategory, float] = {}
        self._locks: Dict[QuotaCategory, asyncio.Lock] = {}

    @classmethod
    def from_intervals(cls, intervals_ms: Mapping[str, int], **kwargs) -> "QuotaGovernor":
        rules = {QuotaCategory(name): QuotaRule(min_interval_ms=value) for name, value in intervals_ms.items()}
        return cls(rules, **kwargs)

    def rule(self, category: QuotaCategory) -> QuotaRule:
        try:
            return self._rules[QuotaCategory(category)]
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"No quota rule configured for category '{category}'") from exc

    def last_call(self, category: QuotaCategory) -> Optional[float]:
        return self._last_call.get(QuotaCategory(category))

    async def acquire(self, category: QuotaCategory) -> float:
        """Wait until a call of ``category`` may be issued; returns seconds waited."""
        category = QuotaCategory(category)
        rule = self.rule(category)
        lock = self._locks.setdefault(category, asyncio.Lock())
        async with lock:
            waited = 0.0
            last = self._last_call.get(category)
            if last is not None:
                elapsed = self._clock() - last
                if elapsed < rule.min_interval:
                    waited = rule.min_interval - elapsed
                    logger.info(
                        "Throttling %s call for %.1fs to respect quota (%dms interval)",
                        category.value,
                        waited,
                        rule.min_interval_ms,
                    )
                    await self._sleep(waited)
            self._last_call[category] = self._clock()
            return waited
