from __future__ import annotations

import logging
from pathlib import Path
from typing import Tuple

from moviepy import VideoFileClip

logger = logging.getLogger(__name__)

# Stay clear of the very last frame; decoders often return a blank one there.
_TAIL_MARGIN = 0.05


def save_frame(video: Path, target: Path, at: float) -> Path:
    """Write the frame at ``at`` seconds (negative counts from the end) as an image."""
    target.parent.mkdir(parents=True, exist_ok=True)
    with VideoFileClip(str(video)) as clip:
        duration = float(clip.duration or 0.0)
        t = duration + at if at < 0 else at
        t = max(0.0, min(t, max(0.0, duration - _TAIL_MARGIN)))
        clip.save_frame(str(target), t=t)
    logger.debug("Extracted frame at %.2fs from %s → %s", t, video, target)
    return target


def anchor_frames(video: Path, out_dir: Path, stem: str) -> Tuple[Path, Path]:
    start = save_frame(video, out_dir / f"{stem}-start.png", 0.0)
    end = save_frame(video, out_dir / f"{stem}-end.png", -_TAIL_MARGIN)
    return start, end


def middle_frame(video: Path, target: Path) -> Path:
    with VideoFileClip(str(video)) as clip:
        middle = float(clip.duration or 0.0) / 2
    return save_frame(video, target, middle)
