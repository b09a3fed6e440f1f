from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from dailies.director.model import DirectorPlan, Scene
from dailies.errors import (
    DraftingFailed,
    EmptyResult,
    GenerationTimeout,
    TransientProviderError,
)
from dailies.media_pipeline.service import (
    GenerationHandle,
    GenerativeService,
    PollResult,
    ReferenceImage,
    ReferenceType,
    VideoRequestConfig,
)
from dailies.pipeline.model import AssetItem, VideoArtifact
from dailies.quota.governor import QuotaCategory, QuotaGovernor

logger = logging.getLogger(__name__)

# Veo renders clips of 4, 6 or 8 seconds.
_VIDEO_DURATIONS = (4, 6, 8)


def progress_snapshot(completed: int, total: int, width: int = 20) -> str:
    total = max(1, total)
    width = max(4, width)
    completed = max(0, min(completed, total))
    filled = min(int(round((completed / total) * width)), width)
    bar = "=" * filled + "." * (width - filled)
    return f"[{bar}] {completed}/{total}"


def safe_duration(seconds: float) -> int:
    approx = max(4.0, min(8.0, float(seconds or 8)))
    for candidate in _VIDEO_DURATIONS:
        if approx <= candidate:
            return candidate
    return _VIDEO_DURATIONS[-1]


def clip_stem(scene_id: str, version: int) -> str:
    """File stem for one take of a scene, safe to join onto an output directory."""
    safe_id = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in scene_id.strip())
    return f"{safe_id or 'scene'}-v{version}"


def build_draft_prompt(plan: DirectorPlan, scene: Scene, feedback: Optional[str] = None) -> str:
    """Combine the plan's subject, environment and style with one scene's action."""
    parts = [
        f"Subject: {plan.subject_prompt}.",
        f"Environment: {plan.environment_prompt}.",
        f"Action: {scene.master_prompt}.",
    ]
    if scene.camera_direction:
        parts.append(f"Camera: {scene.camera_direction}.")
    parts.append(f"Style: {plan.visual_style}.")
    if feedback and feedback.strip():
        parts.append(f"Director's note for this take: {feedback.strip()}.")
    return " ".join(parts)


def reference_images(assets: Sequence[AssetItem]) -> list[ReferenceImage]:
    references = []
    for asset in assets:
        kind = ReferenceType.ASSET if asset.type == "character" else ReferenceType.STYLE
        references.append(ReferenceImage(data=asset.read_bytes(), mime_type=asset.mime_type, reference_type=kind))
    return references


class DraftingExecutor:
    """Renders one scene into a clip, retrying transient failures under the video quota."""

    def __init__(
        self,
        service: GenerativeService,
        governor: QuotaGovernor,
        asset_dir: Path,
        video_model: str,
        aspect_ratio: str = "16:9",
        resolution: str = "720p",
        max_attempts: int = 3,
        retry_cooldown_seconds: float = 20.0,
        poll_interval_seconds: float = 5.0,
        max_wait_seconds: float = 600.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self.governor = governor
        self.asset_dir = Path(asset_dir)
        self.video_model = video_model
        self.aspect_ratio = aspect_ratio
        self.resolution = resolution
        self.max_attempts = max(1, max_attempts)
        self.retry_cooldown_seconds = retry_cooldown_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.max_wait_seconds = max_wait_seconds
        self._sleep = sleep
        self._clock = clock

    async def draft(
        self,
        index: int,
        scene: Scene,
        plan: DirectorPlan,
        assets: Sequence[AssetItem],
        *,
        feedback: Optional[str] = None,
        version: int = 1,
        total: Optional[int] = None,
        model: Optional[str] = None,
        references: Optional[Sequence[ReferenceImage]] = None,
    ) -> VideoArtifact:
        total = total or len(plan.scenes)
        prompt = build_draft_prompt(plan, scene, feedback)
        if references is None:
            references = reference_images(assets)
        config = VideoRequestConfig(
            model=model or self.video_model,
            aspect_ratio=self.aspect_ratio,
            resolution=self.resolution,
            duration_seconds=safe_duration(scene.duration_seconds),
        )
        target = self.asset_dir / f"{clip_stem(scene.id, version)}.mp4"

        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                cooldown = attempt * self.retry_cooldown_seconds
                logger.warning(
                    "♻️  Retrying scene %d (attempt %d/%d) after %.0fs cooldown; last error: %s",
                    index + 1,
                    attempt,
                    self.max_attempts,
                    cooldown,
                    last_error,
                )
                await self._sleep(cooldown)
            await self.governor.acquire(QuotaCategory.VIDEO)
            try:
                logger.info(
                    "🚀  %s  Submitting scene %d (%s) to %s",
                    progress_snapshot(index, total),
                    index + 1,
                    scene.id,
                    config.model,
                )
                handle = await self.service.generate_video(prompt, references, config)
                result = await self._wait_for(handle, index, total)
                if not result.media:
                    raise EmptyResult(result.error or f"Scene {index + 1} finished without a video")
            except (TransientProviderError, EmptyResult) as exc:
                last_error = exc
                continue

            self.asset_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(result.media)
            logger.info(
                "✅  %s  Scene %d ready → saved to %s",
                progress_snapshot(index + 1, total),
                index + 1,
                target,
            )
            return VideoArtifact(
                path=target,
                uri=result.uri,
                shot_id=scene.id,
                version=version,
                user_feedback=feedback,
                duration_seconds=scene.duration_seconds,
            )

        raise DraftingFailed(index, last_error)

    async def _wait_for(self, handle: GenerationHandle, index: int, total: int) -> PollResult:
        start = self._clock()
        logger.info("⏳  %s  Waiting for render of scene %d…", progress_snapshot(index, total), index + 1)
        while True:
            result = await self.service.poll_operation(handle)
            if result.done:
                return result
            if self._clock() - start > self.max_wait_seconds:
                raise GenerationTimeout(
                    f"Operation {handle.name} timed out after {self.max_wait_seconds:.0f} seconds"
                )
            await self._sleep(self.poll_interval_seconds)
