from __future__ import annotations

from typing import Any

import pytest

from intakeportal.core.errors import InvalidTransition, NotFound
from intakeportal.domain.models import Actor, LifecycleState
from intakeportal.services.container import ServiceContainer
from intakeportal.tests.utils.factories import onboard, seed_brokerage


async def _invited_session(container: ServiceContainer) -> str:
    await seed_brokerage(container)
    return (await onboard(container)).session_id


async def _history(container: ServiceContainer, session_id: str) -> list[LifecycleState]:
    rows = await container.store.status_history.find(session_id=session_id, order_by="created_at")
    return [row.status for row in rows]


async def _audit_entries(container: ServiceContainer, session_id: str, action: str) -> list[dict[str, Any]]:
    return [entry.details for entry in await container.audit.timeline(session_id) if entry.action == action]


@pytest.mark.asyncio
async def test_transition_and_force_set_write_distinct_audit_actions(container: ServiceContainer) -> None:
    session_id = await _invited_session(container)

    moved = await container.lifecycle.transition(session_id, LifecycleState.IN_PROGRESS, "client started", Actor.CLIENT)
    forced = await container.lifecycle.force_set_status(
        session_id, LifecycleState.IN_PROGRESS, "operator refresh", Actor.OPERATOR
    )

    assert moved.status == LifecycleState.IN_PROGRESS
    assert forced.status == LifecycleState.IN_PROGRESS
    assert await _audit_entries(container, session_id, "STATE_TRANSITION") == [
        {"from": "INVITED", "to": "IN_PROGRESS", "note": "client started"}
    ]
    assert await _audit_entries(container, session_id, "STATE_FORCE_SET") == [
        {"from": "IN_PROGRESS", "to": "IN_PROGRESS", "note": "operator refresh"}
    ]
    assert await _history(container, session_id) == [
        LifecycleState.INVITED,
        LifecycleState.IN_PROGRESS,
        LifecycleState.IN_PROGRESS,
    ]


@pytest.mark.asyncio
async def test_force_set_bypasses_the_transition_table(container: ServiceContainer) -> None:
    session_id = await _invited_session(container)
    with pytest.raises(InvalidTransition):
        await container.lifecycle.transition(session_id, LifecycleState.APPROVED, "skip ahead", Actor.OPERATOR)

    forced = await container.lifecycle.force_set_status(
        session_id, LifecycleState.FINAL_SUBMITTED, "operator override", Actor.OPERATOR
    )
    assert forced.status == LifecycleState.FINAL_SUBMITTED
    assert forced.final_submitted_at is not None


@pytest.mark.asyncio
async def test_illegal_transition_changes_nothing(container: ServiceContainer) -> None:
    session_id = await _invited_session(container)

    with pytest.raises(InvalidTransition) as exc_info:
        await container.lifecycle.transition(session_id, LifecycleState.REPORT_READY, "too early", Actor.SYSTEM)

    assert exc_info.value.current == LifecycleState.INVITED
    assert exc_info.value.target == LifecycleState.REPORT_READY
    assert (await container.store.sessions.get(session_id)).status == LifecycleState.INVITED
    assert await _history(container, session_id) == [LifecycleState.INVITED]
    assert await _audit_entries(container, session_id, "STATE_TRANSITION") == []


@pytest.mark.asyncio
async def test_transition_loses_a_race_to_a_concurrent_writer(
    container: ServiceContainer, monkeypatch: pytest.MonkeyPatch
) -> None:
    session_id = await _invited_session(container)
    sessions = container.store.sessions
    original_update = sessions.update

    async def update_after_concurrent_write(record_id: str, changes: Any, expect: Any = None) -> Any:
        if expect is not None:
            # Another request moves the session between our read and our guarded write.
            await original_update(record_id, {"status": LifecycleState.PARTIAL_SUBMITTED})
        return await original_update(record_id, changes, expect=expect)

    monkeypatch.setattr(sessions, "update", update_after_concurrent_write)

    with pytest.raises(InvalidTransition) as exc_info:
        await container.lifecycle.transition(session_id, LifecycleState.IN_PROGRESS, "client started", Actor.CLIENT)

    assert exc_info.value.current == LifecycleState.PARTIAL_SUBMITTED
    assert (await container.store.sessions.get(session_id)).status == LifecycleState.PARTIAL_SUBMITTED
    assert await _history(container, session_id) == [LifecycleState.INVITED]
    assert await _audit_entries(container, session_id, "STATE_TRANSITION") == []


@pytest.mark.asyncio
async def test_unknown_session_is_not_found(container: ServiceContainer) -> None:
    with pytest.raises(NotFound):
        await container.lifecycle.transition("missing", LifecycleState.IN_PROGRESS, "n/a", Actor.CLIENT)
    with pytest.raises(NotFound):
        await container.lifecycle.force_set_status("missing", LifecycleState.IN_PROGRESS, "n/a", Actor.OPERATOR)
