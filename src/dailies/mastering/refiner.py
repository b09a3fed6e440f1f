from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Sequence

from dailies.art_department.artist import ArtDepartment
from dailies.director.model import DirectorPlan, Scene
from dailies.drafting.executor import DraftingExecutor, reference_images
from dailies.media_pipeline import frames
from dailies.media_pipeline.service import MediaPart, ReferenceImage, ReferenceType
from dailies.pipeline.model import AnchorFrame, AnchorFrames, AssetItem, VideoArtifact

logger = logging.getLogger(__name__)

UPSCALE_PROMPT = (
    "Upscale this film still to a crisp, high-resolution frame. Keep the composition, characters, "
    "colours and lighting exactly as they are; only remove blur, noise and compression artifacts."
)


class ShotRefiner:
    """Masters a drafted shot: anchor frames, upscaled references, then a final render."""

    def __init__(
        self,
        art_department: ArtDepartment,
        executor: DraftingExecutor,
        frame_dir: Path,
        master_model: str,
    ) -> None:
        self.art_department = art_department
        self.executor = executor
        self.frame_dir = Path(frame_dir)
        self.master_model = master_model

    async def extract_anchors(self, shot: VideoArtifact, stem: str) -> AnchorFrames:
        start, end = await asyncio.to_thread(frames.anchor_frames, Path(shot.path), self.frame_dir, stem)
        anchors = []
        for frame in (start, end):
            upscaled = await self.art_department.render_still(
                UPSCALE_PROMPT,
                [MediaPart(data=frame.read_bytes(), mime_type="image/png")],
                frame.with_name(f"{frame.stem}-upscaled.png"),
            )
            anchors.append(AnchorFrame(original=frame, upscaled=upscaled))
        logger.info("Anchor frames ready for %s", stem)
        return AnchorFrames(start=anchors[0], end=anchors[1])

    async def render_master(
        self,
        index: int,
        scene: Scene,
        plan: DirectorPlan,
        assets: Sequence[AssetItem],
        shot: VideoArtifact,
        anchors: AnchorFrames,
    ) -> VideoArtifact:
        references = [
            ReferenceImage(
                data=anchors.start.upscaled.read_bytes(),
                mime_type="image/png",
                reference_type=ReferenceType.ASSET,
            )
        ]
        # Veo accepts at most three reference images.
        references.extend(reference_images(assets)[:2])
        mastered = await self.executor.draft(
            index,
            scene,
            plan,
            assets,
            feedback=shot.user_feedback,
            version=shot.version + 1,
            model=self.master_model,
            references=references,
        )
        return mastered.model_copy(update={"anchor_frames": anchors, "mastered": True})
