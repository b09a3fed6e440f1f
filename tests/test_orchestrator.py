from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from dailies import orchestrator as orchestrator_module
from dailies.errors import DraftingFailed, TransientProviderError
from dailies.media_pipeline import frames
from dailies.media_pipeline.service import PollResult
from dailies.orchestrator import ProductionOrchestrator, StudioConfig
from dailies.pipeline.model import Phase
from dailies.stitcher.assembler import ClipInput

from fakes import FakeClock, ScriptedService, make_plan, plan_payload


def _build(tmp_path: Path, service: ScriptedService, clock: FakeClock, **config) -> ProductionOrchestrator:
    return ProductionOrchestrator.default(
        StudioConfig(data_root=tmp_path, **config),
        service=service,
        sleep=clock.sleep,
        clock=clock,
    )


def _run(orchestrator: ProductionOrchestrator, brief: str = "A fox looks for its scarf"):
    return asyncio.run(orchestrator.run(brief))


@pytest.fixture
def stub_frames(monkeypatch: pytest.MonkeyPatch):
    def fake_save(video: Path, target: Path) -> Path:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"frame")
        return target

    def fake_anchor_frames(video: Path, out_dir: Path, stem: str):
        return fake_save(video, out_dir / f"{stem}-start.png"), fake_save(video, out_dir / f"{stem}-end.png")

    monkeypatch.setattr(frames, "middle_frame", fake_save)
    monkeypatch.setattr(frames, "anchor_frames", fake_anchor_frames)


def test_run_sequences_phases_and_respects_quota(tmp_path: Path) -> None:
    clock = FakeClock()
    service = ScriptedService()
    orchestrator = _build(tmp_path, service, clock)
    phases: list[Phase] = []
    orchestrator.store.subscribe(lambda state, event: phases.append(state.phase))

    state = _run(orchestrator)

    assert state.phase is Phase.COMPLETE
    assert state.error is None
    assert [asset.type for asset in state.artifacts.assets] == ["character", "background"]
    assert [shot.shot_id for shot in state.artifacts.shots] == ["scene-1", "scene-2"]
    assert service.calls == ["text", "image", "image", "video", "poll", "video", "poll"]
    # asset cooldown, image quota, pre-production, scene cooldown, video quota
    assert clock.sleeps == [10.0, pytest.approx(10.0), 15.0, 20.0, pytest.approx(10.0)]
    assert list(dict.fromkeys(phases)) == [Phase.PLANNING, Phase.ASSET_GEN, Phase.DRAFTING, Phase.COMPLETE]
    assert state.logs[0].message == "Production started: A fox looks for its scarf"


def test_drafting_failure_stops_run_and_keeps_artifacts(tmp_path: Path) -> None:
    clock = FakeClock()
    service = ScriptedService(
        plan=plan_payload(3),
        video_outcomes=[PollResult(done=True, media=b"one")] + [TransientProviderError("quota") for _ in range(3)],
    )
    orchestrator = _build(tmp_path, service, clock)

    state = _run(orchestrator)

    assert state.phase is Phase.ERROR
    assert "Failed to draft scene 2" in state.error
    assert state.artifacts.plan is not None
    assert len(state.artifacts.assets) == 2
    assert len(state.artifacts.shots) == 1
    assert service.calls.count("video") == 4
    assert state.logs[-1].message.startswith("CRITICAL FAILURE")


def test_planning_failure_moves_to_error(tmp_path: Path) -> None:
    broken = plan_payload(2)
    broken["scenes"][0]["duration_seconds"] = 12
    service = ScriptedService(text_responses=[broken])

    state = _run(_build(tmp_path, service, FakeClock()))

    assert state.phase is Phase.ERROR
    assert state.artifacts.plan is None
    assert service.calls == ["text"]


def test_regenerate_replaces_one_shot_with_next_version(tmp_path: Path) -> None:
    clock = FakeClock()
    service = ScriptedService()
    orchestrator = _build(tmp_path, service, clock)
    _run(orchestrator)
    before = orchestrator.state.artifacts.shots

    shot = asyncio.run(orchestrator.regenerate_shot(1, "make it snow harder"))

    after = orchestrator.state.artifacts.shots
    assert shot.version == 2
    assert shot.user_feedback == "make it snow harder"
    assert shot.path.name == "scene-2-v2.mp4"
    assert after[1] is shot
    assert after[0] is before[0]
    assert "make it snow harder" in service.video_prompts[-1]
    assert service.calls.count("text") == 1
    assert service.calls.count("image") == 2


def test_failed_regeneration_is_logged_without_erroring_the_run(tmp_path: Path) -> None:
    service = ScriptedService()
    orchestrator = _build(tmp_path, service, FakeClock())
    _run(orchestrator)
    service.video_outcomes = [TransientProviderError("busy") for _ in range(3)]

    with pytest.raises(DraftingFailed):
        asyncio.run(orchestrator.regenerate_shot(0, "closer"))

    assert orchestrator.state.phase is Phase.COMPLETE
    assert "Regeneration of scene 1 failed" in orchestrator.state.logs[-1].message
    assert orchestrator.state.artifacts.shots[0].version == 1


def test_critique_runs_when_enabled(tmp_path: Path, stub_frames) -> None:
    review = {
        "temporalConsistencyScore": 9,
        "semanticAlignmentScore": 9,
        "technicalQualityScore": 9,
        "overallScore": 9,
    }
    service = ScriptedService(text_responses=[plan_payload(2), review, review, {"consistencyScore": 7.0}])
    orchestrator = _build(tmp_path, service, FakeClock(), enable_critique=True)
    phases: list[Phase] = []
    orchestrator.store.subscribe(lambda state, event: phases.append(state.phase))

    state = _run(orchestrator)

    assert state.phase is Phase.COMPLETE
    assert Phase.CRITIQUE in phases
    assert state.artifacts.eval_report.passed is False
    assert state.artifacts.eval_report.character_fidelity == 7.0


def test_refine_all_masters_each_shot_once(tmp_path: Path, stub_frames) -> None:
    service = ScriptedService()
    clock = FakeClock()
    orchestrator = _build(tmp_path, service, clock)
    _run(orchestrator)
    phases: list[Phase] = []
    orchestrator.store.subscribe(lambda state, event: phases.append(state.phase))

    state = asyncio.run(orchestrator.refine_all())

    assert state.phase is Phase.COMPLETE
    assert [shot.mastered for shot in state.artifacts.shots] == [True, True]
    assert [shot.version for shot in state.artifacts.shots] == [2, 2]
    assert state.artifacts.shots[0].anchor_frames.start.upscaled.exists()
    assert service.video_configs[-1].model == orchestrator.config.master_model
    assert list(dict.fromkeys(phases)) == [Phase.REFINING, Phase.RENDERING, Phase.COMPLETE]

    videos = service.calls.count("video")
    asyncio.run(orchestrator.refine_all())
    assert service.calls.count("video") == videos


def test_refine_all_continues_past_a_failing_shot(tmp_path: Path, stub_frames) -> None:
    service = ScriptedService()
    orchestrator = _build(tmp_path, service, FakeClock())
    _run(orchestrator)
    service.video_outcomes = [TransientProviderError("busy") for _ in range(3)]

    state = asyncio.run(orchestrator.refine_all())

    assert state.phase is Phase.COMPLETE
    assert [shot.mastered for shot in state.artifacts.shots] == [False, True]
    assert any("Mastering scene 1 failed" in entry.message for entry in state.logs)


def test_refine_shot_failure_enters_error(tmp_path: Path, stub_frames) -> None:
    service = ScriptedService()
    orchestrator = _build(tmp_path, service, FakeClock())
    _run(orchestrator)
    service.video_outcomes = [TransientProviderError("busy") for _ in range(3)]

    state = asyncio.run(orchestrator.refine_shot(0))

    assert state.phase is Phase.ERROR
    assert len(state.artifacts.shots) == 2


def test_export_stitches_and_writes_captions(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    plan = make_plan(
        {"segments": [("00:00", "00:04", 'Fox says: "Where is my scarf?"')], "transition": {"type": "dissolve", "duration": 1.0}},
        {},
    )
    service = ScriptedService(plan=plan.model_dump(mode="json"))
    orchestrator = _build(tmp_path, service, FakeClock())
    _run(orchestrator)
    stitched: dict = {}

    monkeypatch.setattr(orchestrator_module, "probe_clip", lambda path: ClipInput(path=path, duration=4.0))

    def fake_stitch(clips, transitions):
        stitched["clips"] = clips
        stitched["transitions"] = transitions
        target = orchestrator.stitcher.export_dir / "final_video.mp4"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"final")
        return target

    monkeypatch.setattr(orchestrator.stitcher, "stitch", fake_stitch)

    final = asyncio.run(orchestrator.export(tmp_path / "delivery"))

    assert final == tmp_path / "delivery" / "final_video.mp4"
    assert [transition.type for transition in stitched["transitions"]] == ["dissolve"]
    assert orchestrator.state.artifacts.final_video == final
    captions = orchestrator.state.artifacts.captions
    assert captions == tmp_path / "delivery" / "captions.srt"
    assert "Where is my scarf?" in captions.read_text(encoding="utf-8")


def test_dry_run_completes_offline(tmp_path: Path) -> None:
    orchestrator = ProductionOrchestrator.default(StudioConfig(data_root=tmp_path), dry_run=True)

    state = _run(orchestrator)

    assert state.phase is Phase.COMPLETE
    assert len(state.artifacts.shots) == 2
    assert all(shot.path.exists() for shot in state.artifacts.shots)


def test_config_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "studio.yaml"
    path.write_text("scene_cooldown_seconds: 5\nquota_intervals_ms:\n  video: 1000\n  image: 1000\n  text: 1000\n")

    config = StudioConfig.from_file(path)

    assert config.scene_cooldown_seconds == 5
    assert config.quota_intervals_ms["video"] == 1000
    assert config.without_waits().quota_intervals_ms == {"video": 0, "image": 0, "text": 0}
