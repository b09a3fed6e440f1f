from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from textwrap import dedent
from typing import Any, Awaitable, Callable, Dict, List, Sequence

from pydantic import BaseModel, ConfigDict, Field

from dailies.director.model import DirectorPlan, Scene
from dailies.errors import EmptyResult, TransientProviderError
from dailies.media_pipeline import frames
from dailies.media_pipeline.service import GenerativeService, MediaPart
from dailies.media_pipeline.structured import validate_payload
from dailies.pipeline.model import AssetItem, EvalReport, Flaw, ShotEvaluation, VideoArtifact
from dailies.quota.governor import QuotaCategory, QuotaGovernor
from dailies.quota.retry import RetryPolicy

logger = logging.getLogger(__name__)

SHOT_PASS_SCORE = 8.5
FIDELITY_PASS_SCORE = 8.0
DEFAULT_FIDELITY = 8.0

SHOT_REVIEW_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "temporalConsistencyScore": {"type": "NUMBER"},
        "semanticAlignmentScore": {"type": "NUMBER"},
        "technicalQualityScore": {"type": "NUMBER"},
        "overallScore": {"type": "NUMBER"},
        "flaws": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "timestamp": {"type": "NUMBER"},
                    "type": {"type": "STRING", "enum": ["morphing", "artifact", "physics", "consistency"]},
                    "description": {"type": "STRING"},
                },
            },
        },
        "recommendations": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["temporalConsistencyScore", "semanticAlignmentScore", "technicalQualityScore", "overallScore"],
}

FIDELITY_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "consistencyScore": {"type": "NUMBER", "description": "0-10"},
        "issues": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["consistencyScore"],
}


class ShotReview(BaseModel):
    """Raw critic verdict for one shot, as returned by the model."""

    model_config = ConfigDict(populate_by_name=True)

    temporal_consistency_score: float = Field(default=0.0, alias="temporalConsistencyScore")
    semantic_alignment_score: float = Field(default=0.0, alias="semanticAlignmentScore")
    technical_quality_score: float = Field(default=0.0, alias="technicalQualityScore")
    overall_score: float = Field(default=0.0, alias="overallScore")
    flaws: List[Flaw] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class FidelityReview(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    consistency_score: float = Field(default=DEFAULT_FIDELITY, alias="consistencyScore")
    issues: List[str] = Field(default_factory=list)


def _score(value: float) -> float:
    return max(0.0, min(10.0, float(value)))


def shot_review_prompt(plan: DirectorPlan, scene: Scene) -> str:
    return dedent(
        f"""
        Role: Continuity Supervisor for a film production.
        Review the attached clip against its direction and score it from 0 to 10.

        Intended action: {scene.master_prompt}
        Subject: {plan.subject_prompt}
        Environment: {plan.environment_prompt}
        Style: {plan.visual_style}

        Score temporal consistency (no morphing, flicker or identity drift), semantic alignment with the
        intended action, technical quality (artifacts, physics) and an overall score.
        List every flaw with the second it appears and its kind, then concrete recommendations.
        """
    ).strip()


def fidelity_prompt(shot_count: int) -> str:
    return dedent(
        f"""
        Compare the main character across these {shot_count} frames, one from the middle of each shot,
        and against the character reference sheet attached first.
        Score from 0 to 10 how consistently the character keeps the same face, proportions, colours and outfit.
        """
    ).strip()


def summarize(evaluations: Sequence[ShotEvaluation], character_fidelity: float) -> EvalReport:
    """Average per-shot scores; the report passes only when every shot and the fidelity clear their bars."""
    count = len(evaluations)

    def mean(attr: str) -> float:
        return sum(getattr(item, attr) for item in evaluations) / count if count else 0.0

    passed = all(item.overall_score >= SHOT_PASS_SCORE for item in evaluations) and (
        character_fidelity >= FIDELITY_PASS_SCORE
    )
    return EvalReport(
        shot_evaluations=tuple(evaluations),
        temporal_consistency_score=mean("temporal_consistency_score"),
        semantic_alignment=mean("semantic_alignment_score"),
        character_fidelity=character_fidelity,
        overall_score=mean("overall_score"),
        passed=passed,
    )


class ContinuitySupervisor:
    """Scores drafted shots and checks the character stays on-model across them."""

    def __init__(
        self,
        service: GenerativeService,
        governor: QuotaGovernor,
        frame_dir: Path,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.governor = governor
        self.frame_dir = Path(frame_dir)
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def evaluate(
        self,
        plan: DirectorPlan,
        shots: Sequence[VideoArtifact],
        character: AssetItem | None = None,
    ) -> EvalReport:
        evaluations = []
        for index, (scene, shot) in enumerate(zip(plan.scenes, shots)):
            evaluation = await self.review_shot(plan, scene, shot)
            logger.info(
                "🎞️  Shot %d/%d scored %.1f overall (%d flaw%s)",
                index + 1,
                len(shots),
                evaluation.overall_score,
                len(evaluation.flaws),
                "" if len(evaluation.flaws) == 1 else "s",
            )
            evaluations.append(evaluation)
        fidelity = await self.character_fidelity(shots, character)
        report = summarize(evaluations, fidelity)
        if report.passed:
            logger.info("Critique passed: overall %.1f, fidelity %.1f", report.overall_score, fidelity)
        else:
            logger.warning("Critique flagged the dailies: overall %.1f, fidelity %.1f", report.overall_score, fidelity)
        return report

    async def review_shot(self, plan: DirectorPlan, scene: Scene, shot: VideoArtifact) -> ShotEvaluation:
        attachment = MediaPart(data=Path(shot.path).read_bytes(), mime_type="video/mp4")
        payload = await self._ask(shot_review_prompt(plan, scene), SHOT_REVIEW_SCHEMA, [attachment], f"Review {scene.id}")
        review = validate_payload(ShotReview, payload, label="shot review")
        return ShotEvaluation(
            variant_id=f"{shot.shot_id or scene.id}-v{shot.version}",
            temporal_consistency_score=_score(review.temporal_consistency_score),
            semantic_alignment_score=_score(review.semantic_alignment_score),
            technical_quality_score=_score(review.technical_quality_score),
            overall_score=_score(review.overall_score),
            flaws=tuple(review.flaws),
            recommendations=tuple(review.recommendations),
        )

    async def character_fidelity(self, shots: Sequence[VideoArtifact], character: AssetItem | None) -> float:
        if not shots:
            return DEFAULT_FIDELITY
        attachments: List[MediaPart] = []
        if character is not None:
            attachments.append(MediaPart(data=character.read_bytes(), mime_type=character.mime_type))
        for index, shot in enumerate(shots):
            frame = await asyncio.to_thread(
                frames.middle_frame, Path(shot.path), self.frame_dir / f"fidelity-{index + 1}.png"
            )
            attachments.append(MediaPart(data=frame.read_bytes(), mime_type="image/png"))

        try:
            payload = await self._ask(fidelity_prompt(len(shots)), FIDELITY_SCHEMA, attachments, "Character fidelity")
        except EmptyResult as exc:
            logger.warning("No fidelity verdict (%s); assuming %.1f", exc, DEFAULT_FIDELITY)
            return DEFAULT_FIDELITY
        if not payload:
            return DEFAULT_FIDELITY
        review = validate_payload(FidelityReview, payload, label="character fidelity")
        for issue in review.issues:
            logger.info("Fidelity note: %s", issue)
        return _score(review.consistency_score)

    async def _ask(
        self,
        prompt: str,
        schema: Dict[str, Any],
        attachments: Sequence[MediaPart],
        label: str,
    ) -> Dict[str, Any]:
        async def attempt() -> Dict[str, Any]:
            await self.governor.acquire(QuotaCategory.TEXT)
            return await self.service.generate_text(prompt, schema, attachments)

        return await self.retry_policy.run(
            attempt,
            label=label,
            retry_on=(TransientProviderError, EmptyResult),
            sleep=self._sleep,
        )
