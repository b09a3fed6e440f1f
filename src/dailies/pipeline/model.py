from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from dailies.director.model import DirectorPlan


class Phase(str, Enum):
    IDLE = "IDLE"
    PLANNING = "PLANNING"
    ASSET_GEN = "ASSET_GEN"
    DRAFTING = "DRAFTING"
    CRITIQUE = "CRITIQUE"
    REFINING = "REFINING"
    RENDERING = "RENDERING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class AssetItem(_Frozen):
    """Entry of the production bible: one character or background sheet."""

    id: str
    type: Literal["character", "background"]
    path: Path
    source: Literal["ai", "user"]
    mime_type: str = "image/png"

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


class AnchorFrame(_Frozen):
    original: Path
    upscaled: Path


class AnchorFrames(_Frozen):
    start: AnchorFrame
    end: AnchorFrame


class Flaw(_Frozen):
    timestamp: float = 0.0
    type: str = "artifact"
    description: str = ""


class ShotEvaluation(_Frozen):
    variant_id: str = ""
    temporal_consistency_score: float = Field(default=0.0, ge=0, le=10)
    semantic_alignment_score: float = Field(default=0.0, ge=0, le=10)
    technical_quality_score: float = Field(default=0.0, ge=0, le=10)
    overall_score: float = Field(default=0.0, ge=0, le=10)
    flaws: Tuple[Flaw, ...] = ()
    recommendations: Tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return self.overall_score >= 8.5


class EvalReport(_Frozen):
    shot_evaluations: Tuple[ShotEvaluation, ...] = ()
    temporal_consistency_score: float = 0.0
    semantic_alignment: float = 0.0
    character_fidelity: float = 0.0
    overall_score: float = 0.0
    passed: bool = False


class VideoArtifact(_Frozen):
    """One drafted (or mastered) take of a scene."""

    path: Path
    uri: Optional[str] = None
    shot_id: Optional[str] = None
    version: int = Field(default=1, ge=1)
    user_feedback: Optional[str] = None
    duration_seconds: Optional[float] = None
    anchor_frames: Optional[AnchorFrames] = None
    mastered: bool = False


class LogEntry(_Frozen):
    timestamp: float
    phase: Phase
    agent: Literal["Director", "Artist", "Engineer", "Critic", "System"] = "System"
    message: str


class ProductionArtifacts(_Frozen):
    plan: Optional[DirectorPlan] = None
    assets: Tuple[AssetItem, ...] = ()
    shots: Tuple[VideoArtifact, ...] = ()
    eval_report: Optional[EvalReport] = None
    final_video: Optional[Path] = None
    captions: Optional[Path] = None


class ProductionState(_Frozen):
    phase: Phase = Phase.IDLE
    artifacts: ProductionArtifacts = Field(default_factory=ProductionArtifacts)
    logs: Tuple[LogEntry, ...] = ()
    error: Optional[str] = None

    def asset(self, kind: str) -> Optional[AssetItem]:
        for item in self.artifacts.assets:
            if item.type == kind:
                return item
        return None


INITIAL_STATE = ProductionState()
