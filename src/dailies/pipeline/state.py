from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Union

from .model import (
    INITIAL_STATE,
    LogEntry,
    Phase,
    ProductionArtifacts,
    ProductionState,
    VideoArtifact,
)

logger = logging.getLogger(__name__)

_TUPLE_FIELDS = {"assets", "shots"}
_AGENTS = {"Director", "Artist", "Engineer", "Critic", "System"}


@dataclass(frozen=True)
class Start:
    """Begin a fresh run: discard everything and enter PLANNING."""


@dataclass(frozen=True)
class SetPhase:
    phase: Phase


@dataclass(frozen=True)
class MergeArtifacts:
    partial: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReplaceShot:
    index: int
    shot: VideoArtifact


@dataclass(frozen=True)
class AppendLog:
    message: str
    agent: str = "System"
    phase: Optional[Phase] = None


@dataclass(frozen=True)
class Fail:
    message: str


@dataclass(frozen=True)
class Reset:
    pass


Event = Union[Start, SetPhase, MergeArtifacts, ReplaceShot, AppendLog, Fail, Reset]


def reduce(state: ProductionState, event: object, *, now: Callable[[], float] = time.time) -> ProductionState:
    """Apply one event to the production state.

    Pure apart from reading ``now`` for log timestamps. Unknown events leave
    the state untouched; this function never raises on bad input.
    """
    if isinstance(event, Start):
        return INITIAL_STATE.model_copy(update={"phase": Phase.PLANNING})
    if isinstance(event, Reset):
        return INITIAL_STATE
    if isinstance(event, SetPhase):
        try:
            phase = Phase(event.phase)
        except ValueError:
            return state
        return state.model_copy(update={"phase": phase})
    if isinstance(event, MergeArtifacts):
        if not isinstance(event.partial, Mapping):
            logger.debug("Ignoring artifact merge with a %s payload", type(event.partial).__name__)
            return state
        return state.model_copy(update={"artifacts": _merge(state.artifacts, event.partial)})
    if isinstance(event, ReplaceShot):
        if not isinstance(event.index, int) or not isinstance(event.shot, VideoArtifact):
            return state
        return _replace_shot(state, event)
    if isinstance(event, AppendLog):
        entry = LogEntry(
            timestamp=now(),
            phase=_phase_or(event.phase, state.phase),
            agent=event.agent if isinstance(event.agent, str) and event.agent in _AGENTS else "System",
            message=str(event.message),
        )
        return state.model_copy(update={"logs": state.logs + (entry,)})
    if isinstance(event, Fail):
        return state.model_copy(update={"phase": Phase.ERROR, "error": str(event.message)})
    return state


def _phase_or(value: object, fallback: Phase) -> Phase:
    try:
        return Phase(value) if value else fallback
    except ValueError:
        return fallback


def _merge(artifacts: ProductionArtifacts, partial: Mapping[str, Any]) -> ProductionArtifacts:
    update = {}
    for key, value in partial.items():
        if key not in ProductionArtifacts.model_fields:
            logger.debug("Ignoring unknown artifact slot '%s'", key)
            continue
        if key in _TUPLE_FIELDS and value is not None:
            try:
                value = tuple(value)
            except TypeError:
                logger.debug("Ignoring non-sequence value for artifact slot '%s'", key)
                continue
        update[key] = value
    if not update:
        return artifacts
    return artifacts.model_copy(update=update)


def _replace_shot(state: ProductionState, event: ReplaceShot) -> ProductionState:
    if event.index < 0:
        return state
    shots = list(state.artifacts.shots)
    if event.index < len(shots):
        shots[event.index] = event.shot
    else:
        shots.append(event.shot)
    artifacts = state.artifacts.model_copy(update={"shots": tuple(shots)})
    return state.model_copy(update={"artifacts": artifacts})


Listener = Callable[[ProductionState, object], None]


class ProductionStore:
    """Owns the production state; everything else sends events."""

    def __init__(self, *, now: Callable[[], float] = time.time) -> None:
        self._state = INITIAL_STATE
        self._now = now
        self._listeners: List[Listener] = []

    @property
    def state(self) -> ProductionState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, event: object) -> ProductionState:
        self._state = reduce(self._state, event, now=self._now)
        for listener in list(self._listeners):
            listener(self._state, event)
        return self._state

    def log(self, agent: str, message: str, phase: Optional[Phase] = None) -> None:
        logger.info("[%s] %s", agent, message)
        self.dispatch(AppendLog(message=message, agent=agent, phase=phase))
