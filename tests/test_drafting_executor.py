from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest

from dailies.drafting.executor import (
    DraftingExecutor,
    build_draft_prompt,
    clip_stem,
    progress_snapshot,
    safe_duration,
)
from dailies.errors import DraftingFailed, GenerationTimeout, TransientProviderError, ValidationError
from dailies.media_pipeline.gemini_client import GeminiStudioService
from dailies.media_pipeline.service import GenerationHandle, PollResult, ReferenceType
from dailies.pipeline.model import AssetItem
from dailies.quota.governor import QuotaCategory, QuotaGovernor, QuotaRule

from fakes import FakeClock, ScriptedService, make_plan


class RecordingGovernor(QuotaGovernor):
    def __init__(self, clock: FakeClock) -> None:
        super().__init__({QuotaCategory.VIDEO: QuotaRule(min_interval_ms=0)}, clock=clock, sleep=clock.sleep)
        self.acquired: list[QuotaCategory] = []

    async def acquire(self, category: QuotaCategory) -> float:
        self.acquired.append(category)
        return await super().acquire(category)


def _assets(tmp_path: Path) -> list[AssetItem]:
    character = tmp_path / "character.png"
    background = tmp_path / "background.png"
    character.write_bytes(b"char")
    background.write_bytes(b"bg")
    return [
        AssetItem(id="c", type="character", path=character, source="ai"),
        AssetItem(id="b", type="background", path=background, source="user"),
    ]


def _executor(service: ScriptedService, tmp_path: Path, clock: FakeClock, **kwargs) -> DraftingExecutor:
    return DraftingExecutor(
        service,
        RecordingGovernor(clock),
        asset_dir=tmp_path / "dailies",
        video_model="veo-draft",
        sleep=clock.sleep,
        clock=clock,
        **kwargs,
    )


def test_successful_draft_writes_clip(tmp_path: Path) -> None:
    clock = FakeClock()
    service = ScriptedService()
    executor = _executor(service, tmp_path, clock)
    plan = make_plan({"id": "opening", "duration": 5})

    shot = asyncio.run(executor.draft(0, plan.scenes[0], plan, _assets(tmp_path)))

    assert shot.path == tmp_path / "dailies" / "opening-v1.mp4"
    assert shot.path.read_bytes() == b"clip"
    assert shot.shot_id == "opening"
    assert shot.uri == "mem://clip"
    assert service.video_configs[0].duration_seconds == 6
    assert [ref.reference_type for ref in service.video_references[0]] == [ReferenceType.ASSET, ReferenceType.STYLE]
    assert executor.governor.acquired == [QuotaCategory.VIDEO]


def test_empty_result_is_retried_with_linear_cooldown(tmp_path: Path) -> None:
    clock = FakeClock()
    service = ScriptedService(
        video_outcomes=[
            PollResult(done=True, media=None),
            TransientProviderError("429"),
            PollResult(done=True, media=b"third time"),
        ]
    )
    executor = _executor(service, tmp_path, clock)
    plan = make_plan({})

    shot = asyncio.run(executor.draft(0, plan.scenes[0], plan, _assets(tmp_path), version=3, feedback="slower"))

    assert shot.path.read_bytes() == b"third time"
    assert shot.version == 3
    assert shot.user_feedback == "slower"
    assert clock.sleeps == [40.0, 60.0]
    assert executor.governor.acquired == [QuotaCategory.VIDEO] * 3
    assert "slower" in service.video_prompts[0]


def test_exhausted_attempts_raise_drafting_failed(tmp_path: Path) -> None:
    clock = FakeClock()
    service = ScriptedService(video_outcomes=[TransientProviderError(f"busy {n}") for n in range(3)])
    executor = _executor(service, tmp_path, clock)
    plan = make_plan({}, {})

    with pytest.raises(DraftingFailed) as excinfo:
        asyncio.run(executor.draft(1, plan.scenes[1], plan, _assets(tmp_path)))

    assert excinfo.value.scene_index == 1
    assert "busy 2" in str(excinfo.value)
    assert "scene 2" in str(excinfo.value)
    assert not (tmp_path / "dailies" / "scene-2-v1.mp4").exists()


def test_validation_errors_are_not_retried(tmp_path: Path) -> None:
    clock = FakeClock()
    service = ScriptedService(video_outcomes=[ValidationError("bad config")])
    executor = _executor(service, tmp_path, clock)
    plan = make_plan({})

    with pytest.raises(ValidationError):
        asyncio.run(executor.draft(0, plan.scenes[0], plan, _assets(tmp_path)))
    assert service.calls == ["video"]


def test_poll_times_out(tmp_path: Path) -> None:
    clock = FakeClock()

    class NeverDone(ScriptedService):
        async def poll_operation(self, handle: GenerationHandle) -> PollResult:
            self.calls.append("poll")
            return PollResult(done=False)

    service = NeverDone()
    executor = _executor(service, tmp_path, clock, max_attempts=1, poll_interval_seconds=5, max_wait_seconds=12)
    plan = make_plan({})

    with pytest.raises(DraftingFailed) as excinfo:
        asyncio.run(executor.draft(0, plan.scenes[0], plan, _assets(tmp_path)))

    assert isinstance(excinfo.value.last_error, GenerationTimeout)
    assert clock.sleeps == [5, 5, 5]


def test_prompt_and_helpers() -> None:
    plan = make_plan({"segments": [("00:00", "00:04", 'Fox says: "Where is it?"')]})
    prompt = build_draft_prompt(plan, plan.scenes[0])

    assert prompt.startswith("Subject: A red fox in a wool scarf.")
    assert "Camera: Dolly in." in prompt
    assert prompt.endswith("Style: 35mm film, soft light.")
    assert safe_duration(3) == 4 and safe_duration(7.5) == 8
    assert progress_snapshot(1, 2, width=4) == "[==..] 1/2"


class DroppedConnectionModels:
    def __init__(self) -> None:
        self.calls = 0

    async def generate_videos(self, **kwargs) -> None:
        self.calls += 1
        raise httpx.ConnectError("connection reset by peer")

    async def generate_content(self, **kwargs) -> None:
        self.calls += 1
        raise httpx.ReadTimeout("read timed out")


def _gemini_with_dropped_connection() -> tuple[GeminiStudioService, DroppedConnectionModels]:
    models = DroppedConnectionModels()
    client = SimpleNamespace(aio=SimpleNamespace(models=models, operations=None))
    return GeminiStudioService(api_key="test", client=client), models


def test_network_errors_from_sdk_are_transient() -> None:
    service, _ = _gemini_with_dropped_connection()

    with pytest.raises(TransientProviderError):
        asyncio.run(service.generate_text("plan a film"))


def test_dropped_connection_is_retried_until_budget_exhausted(tmp_path: Path) -> None:
    clock = FakeClock()
    service, models = _gemini_with_dropped_connection()
    executor = _executor(service, tmp_path, clock)
    plan = make_plan({})

    with pytest.raises(DraftingFailed) as excinfo:
        asyncio.run(executor.draft(0, plan.scenes[0], plan, _assets(tmp_path), references=[]))

    assert models.calls == 3
    assert isinstance(excinfo.value.last_error, TransientProviderError)
    assert isinstance(excinfo.value.last_error.__cause__, httpx.ConnectError)
    assert clock.sleeps == [40, 60]
    assert executor.governor.acquired == [QuotaCategory.VIDEO] * 3


def test_scene_id_cannot_escape_asset_dir(tmp_path: Path) -> None:
    clock = FakeClock()
    service = ScriptedService()
    executor = _executor(service, tmp_path, clock)
    plan = make_plan({"id": "../../etc/passwd"})

    shot = asyncio.run(executor.draft(0, plan.scenes[0], plan, _assets(tmp_path)))

    assert shot.path.parent == tmp_path / "dailies"
    assert shot.path.name == "------etc-passwd-v1.mp4"
    assert shot.shot_id == "../../etc/passwd"
    assert clip_stem("opening shot", 2) == "opening-shot-v2"
