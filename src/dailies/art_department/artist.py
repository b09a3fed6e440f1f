from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from pathlib import Path
from textwrap import dedent
from typing import Awaitable, Callable, List, Optional

from dailies.director.model import DirectorPlan
from dailies.errors import EmptyResult, TransientProviderError
from dailies.media_pipeline.service import GenerativeService, MediaPart
from dailies.pipeline.model import AssetItem
from dailies.quota.governor import QuotaCategory, QuotaGovernor
from dailies.quota.retry import RetryPolicy

logger = logging.getLogger(__name__)


def character_sheet_prompt(plan: DirectorPlan) -> str:
    return dedent(
        f"""
        Professional character turnaround reference sheet for film production.
        Create a SINGLE IMAGE containing exactly 3 side-by-side panels on a plain neutral grey background:
        - LEFT panel: FRONT view of the character
        - CENTER panel: 3/4 SIDE view of the character (turned slightly right)
        - RIGHT panel: BACK view of the character

        Character description: {plan.subject_prompt}

        Rules: the character is IDENTICAL across all panels (proportions, colours, markings, outfit),
        neutral pose, clean even studio lighting, panels clearly separated.
        Style reference: {plan.visual_style}
        """
    ).strip()


def environment_sheet_prompt(plan: DirectorPlan) -> str:
    return dedent(
        f"""
        Professional location reference sheet for film production.
        Create a SINGLE IMAGE containing exactly 3 side-by-side panels:
        - LEFT panel: WIDE establishing shot of the location
        - CENTER panel: MEDIUM ground-level view of key features
        - RIGHT panel: DETAIL close-up of textures and atmosphere

        Location description: {plan.environment_prompt}

        Rules: the SAME place in every panel with the same time of day, weather and lighting;
        consistent colour palette.
        Style reference: {plan.visual_style}
        """
    ).strip()


class ArtDepartment:
    """Produces the production bible: one character sheet and one location sheet."""

    def __init__(
        self,
        service: GenerativeService,
        governor: QuotaGovernor,
        asset_dir: Path,
        cooldown_seconds: float = 10.0,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.governor = governor
        self.asset_dir = Path(asset_dir)
        self.cooldown_seconds = max(0.0, cooldown_seconds)
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def build_bible(
        self,
        plan: DirectorPlan,
        character_reference: Optional[Path] = None,
        environment_reference: Optional[Path] = None,
    ) -> List[AssetItem]:
        self.asset_dir.mkdir(parents=True, exist_ok=True)
        character = await self._sheet("character", character_sheet_prompt(plan), character_reference)
        logger.info("Character turnaround sheet ready (%s)", character.source)

        if self.cooldown_seconds:
            logger.info("Cooling down for %.0fs before the next asset", self.cooldown_seconds)
            await self._sleep(self.cooldown_seconds)

        background = await self._sheet("background", environment_sheet_prompt(plan), environment_reference)
        logger.info("Environment reference sheet ready (%s)", background.source)
        return [character, background]

    async def render_still(self, prompt: str, references: List[MediaPart], target: Path) -> Path:
        """Generate one image under the image quota and write it to ``target``."""

        async def attempt() -> bytes:
            await self.governor.acquire(QuotaCategory.IMAGE)
            data = await self.service.generate_image(prompt, references)
            if not data:
                raise EmptyResult("Image model returned no data")
            return data

        data = await self.retry_policy.run(
            attempt,
            label=f"Image {target.name}",
            retry_on=(TransientProviderError, EmptyResult),
            sleep=self._sleep,
        )
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target

    async def _sheet(self, kind: str, prompt: str, reference: Optional[Path]) -> AssetItem:
        references: List[MediaPart] = []
        if reference is not None:
            mime_type = mimetypes.guess_type(reference.name)[0] or "image/jpeg"
            references.append(MediaPart(data=Path(reference).read_bytes(), mime_type=mime_type))
            prompt = f"Using this reference photo, {prompt[0].lower()}{prompt[1:]}"
            logger.info("User supplied a %s reference; extrapolating sheet from %s", kind, reference)
        asset_id = str(uuid.uuid4())
        path = await self.render_still(prompt, references, self.asset_dir / f"{kind}-{asset_id[:8]}.png")
        return AssetItem(
            id=asset_id,
            type=kind,
            path=path,
            source="user" if reference is not None else "ai",
        )
