from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from intakeportal.core.errors import InvalidTransition
from intakeportal.domain.models import LifecycleState


S = LifecycleState

TRANSITIONS: Mapping[LifecycleState, frozenset[LifecycleState]] = MappingProxyType(
    {
        S.INVITED: frozenset({S.IN_PROGRESS}),
        S.IN_PROGRESS: frozenset({S.PARTIAL_SUBMITTED, S.FINAL_SUBMITTED, S.MISSING_ITEMS_REQUESTED}),
        S.PARTIAL_SUBMITTED: frozenset({S.IN_PROGRESS, S.MISSING_ITEMS_REQUESTED, S.FINAL_SUBMITTED}),
        S.MISSING_ITEMS_REQUESTED: frozenset({S.IN_PROGRESS, S.PARTIAL_SUBMITTED, S.FINAL_SUBMITTED}),
        S.FINAL_SUBMITTED: frozenset({S.KLOR_SYNTHESIS}),
        S.KLOR_SYNTHESIS: frozenset({S.COUNCIL_RUNNING}),
        S.COUNCIL_RUNNING: frozenset({S.REPORT_READY}),
        S.REPORT_READY: frozenset({S.APPROVED, S.IN_PROGRESS, S.MISSING_ITEMS_REQUESTED}),
        S.APPROVED: frozenset(),
    }
)

# Once a session reaches one of these, client answers are frozen.
LOCKED_STATES = frozenset(
    {S.FINAL_SUBMITTED, S.KLOR_SYNTHESIS, S.COUNCIL_RUNNING, S.REPORT_READY, S.APPROVED}
)


def can_transition(current: LifecycleState, target: LifecycleState) -> bool:
    return target in TRANSITIONS.get(LifecycleState(current), frozenset())


def assert_transition(current: LifecycleState, target: LifecycleState) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


def allowed_transitions(current: LifecycleState) -> list[LifecycleState]:
    # Sorted by lifecycle order so UIs render actions consistently.
    order = ordered_lifecycle()
    return sorted(TRANSITIONS[LifecycleState(current)], key=order.index)


def is_locked(status: LifecycleState) -> bool:
    return LifecycleState(status) in LOCKED_STATES


def ordered_lifecycle() -> list[LifecycleState]:
    return list(LifecycleState)
