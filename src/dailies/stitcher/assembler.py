from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import ffmpeg
from moviepy import VideoFileClip

from dailies.director.model import TransitionSpec
from dailies.errors import NothingToStitch, ValidationError

from .engine import TranscodingEngine, shared_engine

logger = logging.getLogger(__name__)

DEFAULT_TRANSITION = TransitionSpec(type="fade", duration=0.5)


@dataclass(frozen=True)
class ClipInput:
    path: Path
    duration: float
    has_audio: bool = True


@dataclass(frozen=True)
class TransitionStep:
    """One boundary of the timeline: where the next clip starts overlapping."""

    type: str
    duration: float
    offset: float


def probe_clip(path: Path) -> ClipInput:
    with VideoFileClip(str(path)) as clip:
        return ClipInput(path=Path(path), duration=float(clip.duration or 0.0), has_audio=clip.audio is not None)


def plan_transitions(
    durations: Sequence[float],
    transitions: Sequence[Optional[TransitionSpec]] = (),
    default: TransitionSpec = DEFAULT_TRANSITION,
) -> List[TransitionStep]:
    """Compute the cross-fade offset at each of the N-1 clip boundaries.

    Raises ``ValidationError`` when a transition is not strictly shorter than
    both clips it joins.
    """
    if not durations:
        raise NothingToStitch("No clips supplied for stitching")
    for index, duration in enumerate(durations):
        if duration <= 0:
            raise ValidationError(f"Clip {index + 1} has a non-positive duration ({duration}s)")

    steps: List[TransitionStep] = []
    current_end = float(durations[0])
    for index in range(len(durations) - 1):
        spec = transitions[index] if index < len(transitions) and transitions[index] is not None else default
        before, after = float(durations[index]), float(durations[index + 1])
        if spec.duration <= 0:
            raise ValidationError(f"Transition {index + 1} must last longer than 0s")
        if spec.duration >= before or spec.duration >= after:
            raise ValidationError(
                f"Transition {index + 1} ({spec.duration}s) must be shorter than both adjacent clips "
                f"({before}s and {after}s)"
            )
        offset = current_end - spec.duration
        current_end = offset + after
        steps.append(TransitionStep(type=spec.type, duration=float(spec.duration), offset=round(offset, 3)))
    return steps


def build_graph(clips: Sequence[ClipInput], steps: Sequence[TransitionStep], output: Path):
    """Chain xfade/acrossfade filters so each boundary consumes the previous boundary's output."""
    streams = [ffmpeg.input(str(clip.path)) for clip in clips]
    with_audio = all(clip.has_audio for clip in clips)
    video = streams[0].video
    audio = streams[0].audio if with_audio else None
    for step, stream in zip(steps, streams[1:]):
        video = ffmpeg.filter(
            [video, stream.video],
            "xfade",
            transition=step.type,
            duration=step.duration,
            offset=step.offset,
        )
        if audio is not None:
            audio = ffmpeg.filter([audio, stream.audio], "acrossfade", d=step.duration)
    outputs = [video] if audio is None else [video, audio]
    output_kwargs = {"vcodec": "libx264", "pix_fmt": "yuv420p", "movflags": "+faststart"}
    if audio is not None:
        output_kwargs["acodec"] = "aac"
    return ffmpeg.output(*outputs, str(output), **output_kwargs)


class Stitcher:
    """Joins the dailies into one deliverable with a cross-fade at every scene boundary."""

    def __init__(
        self,
        export_dir: Path,
        engine: Optional[TranscodingEngine] = None,
        default_transition: TransitionSpec = DEFAULT_TRANSITION,
    ) -> None:
        self._export_dir = Path(export_dir)
        self._engine = engine
        self.default_transition = default_transition

    @property
    def export_dir(self) -> Path:
        return self._export_dir

    @export_dir.setter
    def export_dir(self, value: Path) -> None:
        self._export_dir = Path(value)

    def stitch(
        self,
        clips: Sequence[ClipInput],
        transitions: Sequence[Optional[TransitionSpec]] = (),
        *,
        output_basename: str = "final_video",
    ) -> Path:
        if not clips:
            raise NothingToStitch("No clips supplied for stitching")
        if len(clips) == 1:
            logger.info("Single clip; delivering %s as-is", clips[0].path)
            return clips[0].path

        steps = plan_transitions([clip.duration for clip in clips], transitions, self.default_transition)
        safe_base = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in output_basename.strip())
        output_path = self.export_dir / f"{safe_base or 'final_video'}.mp4"
        if self._engine is not None:
            self._render(self._engine, clips, steps, output_path)
        else:
            with shared_engine() as engine:
                self._render(engine, clips, steps, output_path)
        return output_path

    def _render(
        self,
        engine: TranscodingEngine,
        clips: Sequence[ClipInput],
        steps: Sequence[TransitionStep],
        output_path: Path,
    ) -> None:
        with engine.session() as workdir:
            scratch = workdir / output_path.name
            logger.info(
                "🎬  Stitching %d clips with offsets %s",
                len(clips),
                ", ".join(f"{step.offset:g}s" for step in steps),
            )
            engine.run(build_graph(clips, steps, scratch))
            self.export_dir.mkdir(parents=True, exist_ok=True)
            shutil.move(str(scratch), str(output_path))
        logger.info("Final cut written to %s", output_path)
