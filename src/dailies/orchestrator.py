from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from pydantic import BaseModel, Field

from dailies.art_department.artist import ArtDepartment
from dailies.captions.srt_builder import write_srt
from dailies.critic.supervisor import ContinuitySupervisor
from dailies.director.model import TransitionSpec
from dailies.director.planner import DirectorPlanner
from dailies.drafting.executor import DraftingExecutor, clip_stem
from dailies.errors import NothingToStitch, ValidationError
from dailies.mastering.refiner import ShotRefiner
from dailies.media_pipeline.echo import EchoStudioService
from dailies.media_pipeline.gemini_client import GeminiStudioService
from dailies.media_pipeline.service import GenerativeService
from dailies.pipeline.model import EvalReport, Phase, ProductionState, VideoArtifact
from dailies.pipeline.state import Fail, MergeArtifacts, ProductionStore, ReplaceShot, SetPhase, Start
from dailies.quota.governor import QuotaGovernor
from dailies.stitcher.assembler import Stitcher, probe_clip

logger = logging.getLogger(__name__)


class StudioConfig(BaseModel):
    data_root: Path = Path("data")
    director_model: str = "gemini-3-pro-preview"
    artist_model: str = "gemini-3-pro-image-preview"
    draft_model: str = "veo-3.1-fast-generate-preview"
    master_model: str = "veo-3.1-generate-preview"
    critic_model: str = "gemini-3-pro-preview"
    api_key_env: str = "GEMINI_API_KEY"
    api_key_parameter: Optional[str] = None
    use_vertex: bool = False
    project: Optional[str] = None
    location: str = "us-central1"
    credentials_path: Optional[Path] = None
    credentials_parameter: Optional[str] = None
    aspect_ratio: str = "16:9"
    resolution: str = "720p"
    quota_intervals_ms: Dict[str, int] = Field(
        default_factory=lambda: {"video": 30_000, "image": 20_000, "text": 12_000}
    )
    max_draft_attempts: int = 3
    retry_cooldown_seconds: float = 20.0
    poll_interval_seconds: float = 5.0
    max_wait_seconds: float = 600.0
    asset_cooldown_seconds: float = 10.0
    preproduction_cooldown_seconds: float = 15.0
    scene_cooldown_seconds: float = 20.0
    refine_cooldown_seconds: float = 10.0
    enable_critique: bool = False
    default_transition: TransitionSpec = Field(default_factory=TransitionSpec)

    @classmethod
    def from_file(cls, path: Path) -> "StudioConfig":
        text = path.read_text(encoding="utf-8")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            import yaml

            payload = yaml.safe_load(text)
        return cls.model_validate(payload or {})

    def without_waits(self) -> "StudioConfig":
        """Copy with every quota interval and cooldown zeroed, for offline runs."""
        return self.model_copy(
            update={
                "quota_intervals_ms": {name: 0 for name in self.quota_intervals_ms},
                "retry_cooldown_seconds": 0.0,
                "poll_interval_seconds": 0.0,
                "asset_cooldown_seconds": 0.0,
                "preproduction_cooldown_seconds": 0.0,
                "scene_cooldown_seconds": 0.0,
                "refine_cooldown_seconds": 0.0,
            }
        )

    def build_service(self, text_model: Optional[str] = None) -> GenerativeService:
        api_key = os.getenv(self.api_key_env)
        if not self.use_vertex and not api_key:
            raise RuntimeError(f"Missing Gemini API key. Set {self.api_key_env} in your environment.")
        return GeminiStudioService(
            api_key=api_key,
            text_model=text_model or self.director_model,
            image_model=self.artist_model,
            use_vertex=self.use_vertex,
            project=self.project,
            location=self.location,
            credentials_path=self.credentials_path,
            credentials_parameter=self.credentials_parameter,
        )


@dataclass
class ProductionOrchestrator:
    config: StudioConfig
    store: ProductionStore
    planner: DirectorPlanner
    art_department: ArtDepartment
    executor: DraftingExecutor
    supervisor: ContinuitySupervisor
    refiner: ShotRefiner
    stitcher: Stitcher
    sleep: Callable = asyncio.sleep

    @classmethod
    def from_file(cls, path: Path, *, dry_run: bool = False) -> "ProductionOrchestrator":
        return cls.default(StudioConfig.from_file(path), dry_run=dry_run)

    @classmethod
    def default(
        cls,
        config: StudioConfig | None = None,
        *,
        dry_run: bool = False,
        service: GenerativeService | None = None,
        critic_service: GenerativeService | None = None,
        sleep: Callable = asyncio.sleep,
        clock: Callable[[], float] | None = None,
    ) -> "ProductionOrchestrator":
        config = config or StudioConfig()
        if dry_run:
            config = config.without_waits()
            service = service or EchoStudioService()
        if service is None:
            service = config.build_service()
            if critic_service is None and config.critic_model != config.director_model:
                critic_service = config.build_service(text_model=config.critic_model)
        critic_service = critic_service or service

        governor_kwargs = {"sleep": sleep}
        executor_kwargs = {"sleep": sleep}
        if clock is not None:
            governor_kwargs["clock"] = clock
            executor_kwargs["clock"] = clock
        governor = QuotaGovernor.from_intervals(config.quota_intervals_ms, **governor_kwargs)

        data_root = config.data_root
        art_department = ArtDepartment(
            service,
            governor,
            asset_dir=data_root / "assets",
            cooldown_seconds=config.asset_cooldown_seconds,
            sleep=sleep,
        )
        executor = DraftingExecutor(
            service,
            governor,
            asset_dir=data_root / "media/dailies",
            video_model=config.draft_model,
            aspect_ratio=config.aspect_ratio,
            resolution=config.resolution,
            max_attempts=config.max_draft_attempts,
            retry_cooldown_seconds=config.retry_cooldown_seconds,
            poll_interval_seconds=config.poll_interval_seconds,
            max_wait_seconds=config.max_wait_seconds,
            **executor_kwargs,
        )
        return cls(
            config=config,
            store=ProductionStore(),
            planner=DirectorPlanner(service, governor, sleep=sleep),
            art_department=art_department,
            executor=executor,
            supervisor=ContinuitySupervisor(critic_service, governor, frame_dir=data_root / "frames/critique", sleep=sleep),
            refiner=ShotRefiner(art_department, executor, frame_dir=data_root / "frames/anchors", master_model=config.master_model),
            stitcher=Stitcher(data_root / "exports", default_transition=config.default_transition),
            sleep=sleep,
        )

    @property
    def state(self) -> ProductionState:
        return self.store.state

    async def run(
        self,
        brief: str,
        character_reference: Optional[Path] = None,
        environment_reference: Optional[Path] = None,
    ) -> ProductionState:
        """Plan, design, draft every scene in order and optionally critique; never raises."""
        store = self.store
        store.dispatch(Start())
        store.log("System", f"Production started: {brief}")
        try:
            plan = await self.planner.plan(
                brief,
                has_character_reference=character_reference is not None,
                has_environment_reference=environment_reference is not None,
            )
            store.dispatch(MergeArtifacts({"plan": plan}))
            store.log("Director", f"Plan ready: {len(plan.scenes)} scenes, {plan.total_duration:g}s total")

            store.dispatch(SetPhase(Phase.ASSET_GEN))
            store.log("Artist", "Designing character and location sheets")
            assets = await self.art_department.build_bible(plan, character_reference, environment_reference)
            store.dispatch(MergeArtifacts({"assets": assets}))
            store.log("Artist", "Production bible ready")

            store.dispatch(SetPhase(Phase.DRAFTING))
            await self._cooldown(self.config.preproduction_cooldown_seconds, "pre-production")
            total = len(plan.scenes)
            for index, scene in enumerate(plan.scenes):
                if index:
                    await self._cooldown(self.config.scene_cooldown_seconds, "the next scene")
                store.log("Engineer", f"Drafting scene {index + 1}/{total}")
                shot = await self.executor.draft(index, scene, plan, assets, total=total)
                store.dispatch(ReplaceShot(index, shot))
                store.log("Engineer", f"Scene {index + 1}/{total} drafted → {shot.path.name}")

            if self.config.enable_critique:
                await self.critique()

            store.dispatch(SetPhase(Phase.COMPLETE))
            store.log("System", "Dailies complete")
        except Exception as exc:
            self._fail(exc)
        return store.state

    async def critique(self) -> EvalReport:
        state = self.store.state
        plan, shots = state.artifacts.plan, state.artifacts.shots
        if plan is None or not shots:
            raise ValidationError("Nothing to critique yet; draft the scenes first")
        self.store.dispatch(SetPhase(Phase.CRITIQUE))
        self.store.log("Critic", f"Reviewing {len(shots)} shots")
        report = await self.supervisor.evaluate(plan, shots, state.asset("character"))
        self.store.dispatch(MergeArtifacts({"eval_report": report}))
        verdict = "PASSED" if report.passed else "NEEDS WORK"
        self.store.log(
            "Critic",
            f"{verdict}: overall {report.overall_score:.1f}, character fidelity {report.character_fidelity:.1f}",
        )
        return report

    async def regenerate_shot(self, index: int, feedback: str) -> VideoArtifact:
        """Re-shoot one scene with director feedback, leaving every other shot alone."""
        state = self.store.state
        plan = state.artifacts.plan
        if plan is None or not 0 <= index < len(plan.scenes):
            raise ValidationError(f"Scene {index + 1} does not exist in the current plan")
        shots = state.artifacts.shots
        version = shots[index].version + 1 if index < len(shots) else 1
        self.store.log("Engineer", f"Re-shooting scene {index + 1} as v{version}: {feedback}")
        try:
            shot = await self.executor.draft(
                index,
                plan.scenes[index],
                plan,
                state.artifacts.assets,
                feedback=feedback,
                version=version,
            )
        except Exception as exc:
            self.store.log("System", f"Regeneration of scene {index + 1} failed: {exc}")
            raise
        self.store.dispatch(ReplaceShot(index, shot))
        self.store.log("Engineer", f"Scene {index + 1} replaced with v{version}")
        return shot

    async def refine_shot(self, index: int) -> ProductionState:
        try:
            await self._refine(index)
            self.store.dispatch(SetPhase(Phase.COMPLETE))
        except Exception as exc:
            self._fail(exc)
        return self.store.state

    async def refine_all(self) -> ProductionState:
        """Master every shot that is not mastered yet; one failing shot does not stop the rest."""
        shots = self.store.state.artifacts.shots
        pending = [index for index, shot in enumerate(shots) if not shot.mastered]
        if not pending:
            self.store.log("System", "All shots are already mastered")
        for position, index in enumerate(pending):
            if position:
                await self._cooldown(self.config.refine_cooldown_seconds, "the next master")
            try:
                await self._refine(index)
            except Exception as exc:
                logger.exception("Mastering scene %d failed", index + 1)
                self.store.log("System", f"Mastering scene {index + 1} failed: {exc}")
        self.store.dispatch(SetPhase(Phase.COMPLETE))
        return self.store.state

    async def export(self, output_dir: Optional[Path] = None) -> Path:
        """Stitch the current shots into one file and write captions when anyone speaks."""
        state = self.store.state
        plan, shots = state.artifacts.plan, state.artifacts.shots
        if plan is None or not shots:
            raise NothingToStitch("No drafted shots to export")
        output_dir = Path(output_dir) if output_dir else self.config.data_root / "exports"
        self.stitcher.export_dir = output_dir
        self.store.log("Engineer", f"Assembling {len(shots)} shots")

        clips = [await asyncio.to_thread(probe_clip, shot.path) for shot in shots]
        transitions = [scene.transition for scene in plan.scenes[: len(shots) - 1]]
        try:
            final_video = await asyncio.to_thread(self.stitcher.stitch, clips, transitions)
        except Exception as exc:
            self.store.log("System", f"Assembly failed: {exc}")
            raise
        captions = write_srt(plan, output_dir / "captions.srt")
        self.store.dispatch(MergeArtifacts({"final_video": final_video, "captions": captions}))
        self.store.log(
            "Engineer",
            f"Delivered {final_video}" + (f" with captions {captions.name}" if captions else ""),
        )
        return final_video

    async def _refine(self, index: int) -> VideoArtifact:
        state = self.store.state
        plan, shots = state.artifacts.plan, state.artifacts.shots
        if plan is None or not 0 <= index < len(shots):
            raise ValidationError(f"Scene {index + 1} has no drafted shot to refine")
        scene, shot = plan.scenes[index], shots[index]

        self.store.dispatch(SetPhase(Phase.REFINING))
        self.store.log("Artist", f"Extracting and upscaling anchor frames for scene {index + 1}")
        anchors = await self.refiner.extract_anchors(shot, clip_stem(scene.id, shot.version))

        self.store.dispatch(SetPhase(Phase.RENDERING))
        self.store.log("Engineer", f"Rendering master of scene {index + 1}")
        mastered = await self.refiner.render_master(index, scene, plan, state.artifacts.assets, shot, anchors)
        self.store.dispatch(ReplaceShot(index, mastered))
        self.store.log("Engineer", f"Scene {index + 1} mastered as v{mastered.version}")
        return mastered

    async def _cooldown(self, seconds: float, reason: str) -> None:
        if seconds <= 0:
            return
        logger.info("💤  Cooling down %.0fs before %s", seconds, reason)
        await self.sleep(seconds)

    def _fail(self, exc: BaseException) -> None:
        message = str(exc) or exc.__class__.__name__
        logger.error("Production failed: %s", message, exc_info=exc)
        self.store.dispatch(Fail(message))
        self.store.log("System", f"CRITICAL FAILURE: {message}")
