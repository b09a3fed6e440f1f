from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dailies.director.model import DirectorPlan

# Quoted form wins: `Hero says: "Hello"` captions only the quoted words.
_QUOTED = re.compile(r"(?P<speaker>[^:\n]*?\S)\s+says:\s*\"(?P<line>[^\"\n]+)\"", re.IGNORECASE)
_UNQUOTED = re.compile(r"(?P<speaker>[^:\n]*?\S)\s+says:\s*(?P<line>[^\n]+)", re.IGNORECASE)


@dataclass(frozen=True)
class Dialogue:
    speaker: str
    line: str


@dataclass(frozen=True)
class CaptionCue:
    index: int
    start: float
    end: float
    text: str
    speaker: str = ""


def parse_dialogue(prompt: str) -> Optional[Dialogue]:
    """Return the first spoken line in a segment prompt, or None for silent segments."""
    if not prompt:
        return None
    match = _QUOTED.search(prompt) or _UNQUOTED.search(prompt)
    if not match:
        return None
    line = match.group("line").strip()
    if not line:
        return None
    return Dialogue(speaker=match.group("speaker").strip(), line=line)


def format_timestamp(seconds: float) -> str:
    # SRT uses HH:MM:SS,mmm. Clamp at >= 0.
    total_ms = max(0, int(round(seconds * 1000)))
    ms = total_ms % 1000
    total_seconds = total_ms // 1000
    s = total_seconds % 60
    total_minutes = total_seconds // 60
    m = total_minutes % 60
    h = total_minutes // 60
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def build_cues(plan: DirectorPlan) -> List[CaptionCue]:
    cues: List[CaptionCue] = []
    offset = 0.0
    for scene in plan.scenes:
        for segment in scene.segments:
            dialogue = parse_dialogue(segment.prompt)
            if dialogue is None:
                continue
            cues.append(
                CaptionCue(
                    index=len(cues) + 1,
                    start=offset + segment.start_seconds,
                    end=offset + segment.end_seconds,
                    text=dialogue.line,
                    speaker=dialogue.speaker,
                )
            )
        offset += scene.duration_seconds
    return cues


def render_srt(cues: List[CaptionCue]) -> str:
    blocks = [f"{cue.index}\n{format_timestamp(cue.start)} --> {format_timestamp(cue.end)}\n{cue.text}\n" for cue in cues]
    return "\n".join(blocks)


def write_srt(plan: DirectorPlan, target: Path) -> Optional[Path]:
    """Write the caption file for ``plan``; returns None when nobody speaks."""
    cues = build_cues(plan)
    if not cues:
        return None
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(render_srt(cues), encoding="utf-8")
    return target
