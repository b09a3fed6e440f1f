from __future__ import annotations

import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MAX_SCENE_SECONDS = 8.0

_TIMECODE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def parse_timecode(value: str) -> float:
    """Convert an ``MM:SS`` segment timestamp to seconds."""
    match = _TIMECODE.match(value or "")
    if not match:
        raise ValueError(f"Invalid timestamp '{value}'; expected MM:SS")
    minutes, seconds = int(match.group(1)), int(match.group(2))
    if seconds >= 60:
        raise ValueError(f"Invalid timestamp '{value}'; seconds must be < 60")
    return float(minutes * 60 + seconds)


class TransitionSpec(BaseModel):
    """How a scene hands over to the next one (an ffmpeg xfade transition)."""

    type: str = Field(default="fade", description="xfade transition, e.g. fade, fadeblack, dissolve, wipeleft")
    duration: float = Field(default=0.5, gt=0, description="Overlap in seconds")
    easing: Optional[str] = None


class Segment(BaseModel):
    start_time: str
    end_time: str
    prompt: str
    camera_movement: str = ""
    audio_cues: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_timecode(cls, value: str) -> str:
        parse_timecode(value)
        return value.strip()

    @model_validator(mode="after")
    def _check_order(self) -> "Segment":
        if self.end_seconds <= self.start_seconds:
            raise ValueError(f"Segment {self.start_time}-{self.end_time} must end after it starts")
        return self

    @property
    def start_seconds(self) -> float:
        return parse_timecode(self.start_time)

    @property
    def end_seconds(self) -> float:
        return parse_timecode(self.end_time)


class Scene(BaseModel):
    id: str
    order: int = Field(ge=1)
    duration_seconds: float = Field(gt=0, le=MAX_SCENE_SECONDS)
    segments: List[Segment] = Field(default_factory=list)
    master_prompt: str = ""
    transition: Optional[TransitionSpec] = None

    @model_validator(mode="after")
    def _check_segments(self) -> "Scene":
        for current, following in zip(self.segments, self.segments[1:]):
            if current.end_seconds != following.start_seconds:
                raise ValueError(
                    f"Scene {self.id}: segment ending {current.end_time} is not followed "
                    f"by a segment starting at the same time (got {following.start_time})"
                )
        if self.segments and self.segments[-1].end_seconds > self.duration_seconds:
            raise ValueError(
                f"Scene {self.id}: segments run to {self.segments[-1].end_time} "
                f"but the scene lasts {self.duration_seconds}s"
            )
        if not self.master_prompt.strip():
            self.master_prompt = compose_master_prompt(self.segments)
        return self

    @property
    def camera_direction(self) -> str:
        moves = [segment.camera_movement for segment in self.segments if segment.camera_movement]
        return "; ".join(dict.fromkeys(moves))


class DirectorPlan(BaseModel):
    subject_prompt: str
    environment_prompt: str
    visual_style: str
    reasoning: str = ""
    scenes: List[Scene]

    @model_validator(mode="after")
    def _check_scene_order(self) -> "DirectorPlan":
        if not self.scenes:
            raise ValueError("Director plan must contain at least one scene")
        orders = [scene.order for scene in self.scenes]
        if orders != list(range(1, len(self.scenes) + 1)):
            raise ValueError(f"Scene order must be contiguous from 1, got {orders}")
        ids = [scene.id for scene in self.scenes]
        if len(set(ids)) != len(ids):
            raise ValueError("Scene ids must be unique")
        return self

    @property
    def total_duration(self) -> float:
        return sum(scene.duration_seconds for scene in self.scenes)


def compose_master_prompt(segments: List[Segment]) -> str:
    parts = []
    for segment in segments:
        action = segment.prompt.strip()
        if segment.camera_movement:
            action = f"{segment.camera_movement.strip()}: {action}"
        parts.append(f"[{_short(segment.start_time)}-{_short(segment.end_time)}] {action}")
    return " ".join(parts)


def _short(timecode: str) -> str:
    seconds = int(parse_timecode(timecode))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"
