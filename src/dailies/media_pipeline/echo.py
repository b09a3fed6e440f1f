from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Sequence

from .service import (
    GenerationHandle,
    GenerativeService,
    MediaPart,
    PollResult,
    ReferenceImage,
    VideoRequestConfig,
)

logger = logging.getLogger(__name__)

# 1x1 transparent PNG
_PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)
_PLACEHOLDER_CLIP = b"dry-run placeholder clip"


class EchoStudioService(GenerativeService):
    """Offline stand-in for dry runs: canned plan, placeholder media, passing reviews."""

    def __init__(self, scene_count: int = 2) -> None:
        self.scene_count = max(1, scene_count)
        self._jobs = 0

    async def generate_text(
        self,
        prompt: str,
        schema: Dict[str, Any] | None = None,
        attachments: Sequence[MediaPart] = (),
    ) -> Dict[str, Any]:
        properties = (schema or {}).get("properties", {})
        if "scenes" in properties:
            return self._plan(prompt)
        if "consistencyScore" in properties:
            return {"consistencyScore": 9.0, "issues": []}
        return {
            "temporalConsistencyScore": 9.0,
            "semanticAlignmentScore": 9.0,
            "technicalQualityScore": 9.0,
            "overallScore": 9.0,
            "flaws": [],
            "recommendations": [],
        }

    async def generate_image(self, prompt: str, reference_images: Sequence[MediaPart] = ()) -> bytes:
        return _PLACEHOLDER_PNG

    async def generate_video(
        self,
        prompt: str,
        reference_images: Sequence[ReferenceImage],
        config: VideoRequestConfig,
    ) -> GenerationHandle:
        self._jobs += 1
        logger.info("Dry run: pretending to render clip %d with %s", self._jobs, config.model)
        return GenerationHandle(name=f"dry-run/{self._jobs}")

    async def poll_operation(self, handle: GenerationHandle) -> PollResult:
        return PollResult(done=True, media=_PLACEHOLDER_CLIP, uri=f"echo://{handle.name}")

    def _plan(self, prompt: str) -> Dict[str, Any]:
        scenes = []
        for order in range(1, self.scene_count + 1):
            scenes.append(
                {
                    "id": f"scene-{order}",
                    "order": order,
                    "duration_seconds": 4,
                    "segments": [
                        {
                            "start_time": "00:00",
                            "end_time": "00:04",
                            "prompt": f"Beat {order} of the story",
                            "camera_movement": "Static",
                        }
                    ],
                    "master_prompt": "",
                    "transition": {"type": "fade", "duration": 0.5} if order < self.scene_count else None,
                }
            )
        return {
            "subject_prompt": "Stub subject",
            "environment_prompt": "Stub environment",
            "visual_style": "Stub style",
            "reasoning": f"Dry-run plan for: {prompt[:80]}",
            "scenes": scenes,
        }
