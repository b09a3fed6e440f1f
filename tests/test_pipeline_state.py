from __future__ import annotations

from pathlib import Path

from dailies.pipeline.model import INITIAL_STATE, Phase, ProductionState, VideoArtifact
from dailies.pipeline.state import (
    AppendLog,
    Fail,
    MergeArtifacts,
    ProductionStore,
    ReplaceShot,
    Reset,
    SetPhase,
    Start,
    reduce,
)

from fakes import make_plan


def _shot(name: str, version: int = 1) -> VideoArtifact:
    return VideoArtifact(path=Path(f"/tmp/{name}.mp4"), shot_id=name, version=version)


def _populated() -> ProductionState:
    state = reduce(INITIAL_STATE, Start())
    state = reduce(state, MergeArtifacts({"plan": make_plan({}, {}, {})}))
    for index, name in enumerate(["a", "b", "c"]):
        state = reduce(state, ReplaceShot(index, _shot(name)))
    return reduce(state, AppendLog("hello", agent="Director"), now=lambda: 42.0)


def test_start_resets_and_enters_planning() -> None:
    state = reduce(_populated(), Start())

    assert state.phase is Phase.PLANNING
    assert state.artifacts.plan is None
    assert state.artifacts.shots == ()
    assert state.logs == ()
    assert state.error is None


def test_unknown_event_returns_same_state() -> None:
    state = _populated()

    assert reduce(state, object()) is state
    assert reduce(state, {"type": "NOPE"}) is state


def test_reset_returns_initial_state() -> None:
    assert reduce(_populated(), Reset()) == INITIAL_STATE
    assert reduce(INITIAL_STATE, Reset()) == INITIAL_STATE


def test_fail_preserves_artifacts() -> None:
    state = _populated()
    failed = reduce(state, Fail("boom"))

    assert failed.phase is Phase.ERROR
    assert failed.error == "boom"
    assert failed.artifacts is state.artifacts
    assert failed.logs == state.logs


def test_replace_shot_only_touches_target_index() -> None:
    state = _populated()
    before = state.artifacts.shots
    replacement = _shot("b", version=2)

    after = reduce(state, ReplaceShot(1, replacement)).artifacts.shots

    assert after[1] is replacement
    assert after[0] is before[0]
    assert after[2] is before[2]


def test_replace_shot_beyond_length_appends() -> None:
    state = reduce(INITIAL_STATE, ReplaceShot(5, _shot("late")))

    assert [shot.shot_id for shot in state.artifacts.shots] == ["late"]
    assert reduce(state, ReplaceShot(-1, _shot("x"))) is state


def test_set_phase_and_merge_are_independent() -> None:
    state = reduce(INITIAL_STATE, SetPhase(Phase.DRAFTING))
    merged = reduce(state, MergeArtifacts({"final_video": Path("/tmp/out.mp4"), "bogus": 1}))

    assert merged.phase is Phase.DRAFTING
    assert merged.artifacts.final_video == Path("/tmp/out.mp4")
    assert reduce(state, SetPhase("NOT_A_PHASE")) is state


def test_append_log_stamps_time_and_keeps_history() -> None:
    state = reduce(INITIAL_STATE, AppendLog("one"), now=lambda: 1.0)
    state = reduce(state, AppendLog("two", agent="Critic"), now=lambda: 2.0)

    assert [(entry.timestamp, entry.agent, entry.message) for entry in state.logs] == [
        (1.0, "System", "one"),
        (2.0, "Critic", "two"),
    ]


def test_store_notifies_subscribers_until_unsubscribed() -> None:
    store = ProductionStore(now=lambda: 7.0)
    seen: list[Phase] = []
    unsubscribe = store.subscribe(lambda state, event: seen.append(state.phase))

    store.dispatch(Start())
    store.log("System", "started")
    unsubscribe()
    store.dispatch(SetPhase(Phase.COMPLETE))

    assert seen == [Phase.PLANNING, Phase.PLANNING]
    assert store.state.phase is Phase.COMPLETE
    assert store.state.logs[0].timestamp == 7.0


def test_malformed_payloads_do_not_raise() -> None:
    state = _populated()

    assert reduce(state, MergeArtifacts(["plan"])) is state
    assert reduce(state, MergeArtifacts({"shots": 5})) == state
    assert reduce(state, ReplaceShot("first", _shot("x"))) is state
    assert reduce(state, ReplaceShot(0, "not a shot")) is state

    logged = reduce(state, AppendLog(404, agent=["Director"], phase="NOT_A_PHASE"), now=lambda: 1.0)
    entry = logged.logs[-1]
    assert entry.message == "404"
    assert entry.agent == "System"
    assert entry.phase is state.phase

    failed = reduce(state, Fail(RuntimeError("disk full")))
    assert failed.phase is Phase.ERROR
    assert failed.error == "disk full"
