from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from dailies.errors import EmptyResult, TransientProviderError
from dailies.media_pipeline.service import GenerativeService
from dailies.media_pipeline.structured import validate_payload
from dailies.quota.governor import QuotaCategory, QuotaGovernor
from dailies.quota.retry import RetryPolicy

from .model import DirectorPlan
from .prompts import PLAN_SCHEMA, render_planning_prompt

logger = logging.getLogger(__name__)


class DirectorPlanner:
    """Turns a one-line brief into a scene-by-scene production plan."""

    def __init__(
        self,
        service: GenerativeService,
        governor: QuotaGovernor,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.governor = governor
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def plan(
        self,
        brief: str,
        *,
        has_character_reference: bool = False,
        has_environment_reference: bool = False,
    ) -> DirectorPlan:
        if not brief.strip():
            raise ValueError("A production brief is required")
        prompt = render_planning_prompt(brief, has_character_reference, has_environment_reference)

        async def attempt() -> dict:
            await self.governor.acquire(QuotaCategory.TEXT)
            return await self.service.generate_text(prompt, PLAN_SCHEMA)

        payload = await self.retry_policy.run(
            attempt,
            label="Director planning",
            retry_on=(TransientProviderError, EmptyResult),
            sleep=self._sleep,
        )
        logger.debug("Director raw plan: %s", payload)
        plan = validate_payload(DirectorPlan, payload, label="director plan")
        logger.info(
            "Director planned %d scene%s (%.1fs total)",
            len(plan.scenes),
            "" if len(plan.scenes) == 1 else "s",
            plan.total_duration,
        )
        return plan

