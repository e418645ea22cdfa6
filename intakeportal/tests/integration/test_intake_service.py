from __future__ import annotations

import pytest

from intakeportal.core.errors import (
    CrossTenantDenied,
    IntakeLocked,
    NotFound,
    SubmissionNotReady,
    ValidationFailed,
)
from intakeportal.domain.intake_catalog import default_schema
from intakeportal.domain.models import AssetCategory, LifecycleState
from intakeportal.services.container import ServiceContainer
from intakeportal.tests.utils.factories import (
    make_container,
    make_settings,
    onboard,
    portal_cookie,
    seed_brokerage,
)


async def _signed_in(container: ServiceContainer) -> tuple[str, str]:
    await seed_brokerage(container)
    result = await onboard(container)
    return result.session_id, await portal_cookie(container, result.session_id)


async def _save(container: ServiceContainer, cookie: str, step_key: str, data: dict, **kwargs):
    return await container.intake.save_intake_step(
        brokerage_slug="harbor",
        signed_cookie_value=cookie,
        step_key=step_key,
        data=data,
        current_step=kwargs.get("current_step", 1),
        mark_complete=kwargs.get("mark_complete", False),
    )


async def _final(container: ServiceContainer, cookie: str):
    return await container.intake.submit_final(brokerage_slug="harbor", signed_cookie_value=cookie)


@pytest.mark.asyncio
async def test_onboarding_creates_one_step_row_per_definition(container: ServiceContainer) -> None:
    session_id, _cookie = await _signed_in(container)
    steps = await container.store.steps.find(session_id=session_id, order_by="step_order")
    assert [(step.step_key, step.step_order) for step in steps] == [("business", 1), ("declaration", 2)]
    session = await container.store.sessions.get(session_id)
    assert session.status == LifecycleState.INVITED
    assert session.total_steps == 2
    history = await container.store.status_history.find(session_id=session_id)
    assert [row.status for row in history] == [LifecycleState.INVITED]


@pytest.mark.asyncio
async def test_draft_save_merges_answers_and_starts_the_intake(container: ServiceContainer) -> None:
    session_id, cookie = await _signed_in(container)
    first = await _save(container, cookie, "business", {"trading_name": "Bluefin"})
    second = await _save(container, cookie, "business", {"structure": "Trust"}, current_step=2)

    assert first.ok and second.ok
    assert second.step.data == {"trading_name": "Bluefin", "structure": "Trust"}
    assert second.step.is_complete is False
    assert second.session.status == LifecycleState.IN_PROGRESS
    assert second.session.current_step == 2
    assert second.session.completion_pct == 0
    actions = [entry.action for entry in await container.audit.timeline(session_id)]
    assert actions.count("INTAKE_STEP_SAVED") == 2
    assert "STATE_TRANSITION" in actions


@pytest.mark.asyncio
async def test_failed_completion_persists_nothing(container: ServiceContainer) -> None:
    session_id, cookie = await _signed_in(container)
    result = await _save(container, cookie, "business", {"trading_name": "Bluefin", "structure": "Other"}, mark_complete=True)

    assert result.ok is False
    assert [error.field for error in result.errors] == ["structure_other"]
    step = await container.store.steps.find_one(session_id=session_id, step_key="business")
    assert step.data == {}
    assert (await container.store.sessions.get(session_id)).status == LifecycleState.INVITED


@pytest.mark.asyncio
async def test_completion_validates_the_merged_answers(container: ServiceContainer) -> None:
    session_id, cookie = await _signed_in(container)
    await _save(container, cookie, "business", {"trading_name": "Bluefin"})
    result = await _save(container, cookie, "business", {"structure": "Company"}, mark_complete=True, current_step=99)

    assert result.ok is True
    assert result.step.is_complete is True
    assert result.session.completion_pct == 50
    assert result.session.current_step == 2

    # Completion is sticky across later draft saves.
    again = await _save(container, cookie, "business", {"store_pct": "100"})
    assert again.step.is_complete is True
    assert again.session.completion_pct == 50


@pytest.mark.asyncio
async def test_bad_inputs_are_rejected(container: ServiceContainer) -> None:
    _session_id, cookie = await _signed_in(container)
    with pytest.raises(NotFound):
        await _save(container, cookie, "no_such_step", {})
    with pytest.raises(ValidationFailed):
        await _save(container, cookie, "business", {"trading_name": {"nested": "object"}})
    with pytest.raises(CrossTenantDenied):
        await container.intake.save_intake_step(
            brokerage_slug="other",
            signed_cookie_value=cookie,
            step_key="business",
            data={},
            current_step=1,
            mark_complete=False,
        )


@pytest.mark.asyncio
async def test_save_and_exit_records_position(container: ServiceContainer) -> None:
    session_id, cookie = await _signed_in(container)
    session = await container.intake.save_and_exit(brokerage_slug="harbor", signed_cookie_value=cookie, current_step=0)
    assert session.current_step == 1
    actions = [entry.action for entry in await container.audit.timeline(session_id)]
    assert actions[-1] == "SAVE_AND_EXIT"


@pytest.mark.asyncio
async def test_assets_get_revisions_and_drive_urls(container: ServiceContainer) -> None:
    session_id, cookie = await _signed_in(container)
    upload = dict(brokerage_slug="harbor", signed_cookie_value=cookie, mime_type="application/pdf", size_bytes=1024)
    first = await container.intake.add_asset(category="FINANCIALS", file_name="pnl.pdf", **upload)
    second = await container.intake.add_asset(category=AssetCategory.FINANCIALS, file_name="pnl.pdf", **upload)
    other = await container.intake.add_asset(category="LEGAL", file_name="pnl.pdf", **upload)

    assert (first.revision, second.revision, other.revision) == (1, 2, 1)
    assert first.drive_file_url is not None
    assert first.drive_file_url != second.drive_file_url
    session = await container.store.sessions.get(session_id)
    assert session.drive_folder_url is not None

    with pytest.raises(ValidationFailed) as exc_info:
        await container.intake.add_asset(category="SELFIES", file_name=" ", **upload)
    assert set(exc_info.value.field_errors) == {"category", "file_name"}


@pytest.mark.asyncio
async def test_partial_submission_and_refresh(container: ServiceContainer) -> None:
    session_id, cookie = await _signed_in(container)
    first = await container.intake.submit_partial(brokerage_slug="harbor", signed_cookie_value=cookie, note="more soon")
    assert first.status == LifecycleState.PARTIAL_SUBMITTED
    assert first.partial_submitted_at is not None

    again = await container.intake.submit_partial(brokerage_slug="harbor", signed_cookie_value=cookie)
    assert again.status == LifecycleState.PARTIAL_SUBMITTED
    assert again.partial_submitted_at == first.partial_submitted_at
    history = [row.status for row in await container.store.status_history.find(session_id=session_id, order_by="created_at")]
    assert history == [
        LifecycleState.INVITED,
        LifecycleState.IN_PROGRESS,
        LifecycleState.PARTIAL_SUBMITTED,
        LifecycleState.PARTIAL_SUBMITTED,
    ]


@pytest.mark.asyncio
async def test_final_submission_locks_answers(container: ServiceContainer) -> None:
    session_id, cookie = await _signed_in(container)
    await _save(container, cookie, "business", {"trading_name": "Bluefin"})
    final = await _final(container, cookie)
    assert final.status == LifecycleState.FINAL_SUBMITTED
    assert final.final_submitted_at is not None

    with pytest.raises(IntakeLocked):
        await _save(container, cookie, "business", {"trading_name": "Changed"})
    with pytest.raises(IntakeLocked):
        await container.intake.add_asset(
            brokerage_slug="harbor",
            signed_cookie_value=cookie,
            category="OTHER",
            file_name="late.pdf",
            mime_type="application/pdf",
            size_bytes=1,
        )
    with pytest.raises(IntakeLocked):
        await container.intake.submit_partial(brokerage_slug="harbor", signed_cookie_value=cookie)

    refreshed = await _final(container, cookie)
    assert refreshed.status == LifecycleState.FINAL_SUBMITTED
    assert refreshed.final_submitted_at == final.final_submitted_at
    step = await container.store.steps.find_one(session_id=session_id, step_key="business")
    assert step.data == {"trading_name": "Bluefin"}


@pytest.mark.asyncio
async def test_missing_items_round_trip(container: ServiceContainer) -> None:
    session_id, cookie = await _signed_in(container)
    await container.intake.submit_partial(brokerage_slug="harbor", signed_cookie_value=cookie)

    with pytest.raises(ValidationFailed):
        await container.intake.request_missing_items(session_id=session_id, missing_items=[" "], requested_by="ops")

    requested = await container.intake.request_missing_items(
        session_id=session_id, missing_items=["Lease agreement", " Bank statements "], requested_by="ops"
    )
    assert requested.status == LifecycleState.MISSING_ITEMS_REQUESTED
    assert requested.missing_items == ["Lease agreement", "Bank statements"]

    # A second request while still outstanding refreshes the list.
    updated = await container.intake.request_missing_items(
        session_id=session_id, missing_items=["Lease agreement"], requested_by="ops"
    )
    assert updated.missing_items == ["Lease agreement"]

    resumed = await _save(container, cookie, "business", {"trading_name": "Bluefin"})
    assert resumed.session.status == LifecycleState.IN_PROGRESS

    final = await _final(container, cookie)
    assert final.missing_items == []


@pytest.mark.asyncio
async def test_final_submission_enforces_readiness() -> None:
    container = make_container(make_settings(final_submit_enforce_readiness=True, readiness_min_property_photos=1))
    session_id, cookie = await _signed_in(container)

    with pytest.raises(SubmissionNotReady) as exc_info:
        await _final(container, cookie)
    assert [reason.code for reason in exc_info.value.reasons] == [
        "property_photos",
        "financial_documents",
        "declaration",
    ]
    assert (await container.store.sessions.get(session_id)).status == LifecycleState.INVITED

    upload = dict(brokerage_slug="harbor", signed_cookie_value=cookie, size_bytes=2048)
    await container.intake.add_asset(category="PROPERTY", file_name="front.jpg", mime_type="image/jpeg", **upload)
    await container.intake.add_asset(category="FINANCIALS", file_name="pnl.pdf", mime_type="application/pdf", **upload)
    await _save(
        container,
        cookie,
        "declaration",
        {"signature": "Dana Reyes", "declaration_confirmed": True},
        mark_complete=True,
    )

    final = await _final(container, cookie)
    assert final.status == LifecycleState.FINAL_SUBMITTED


@pytest.mark.asyncio
async def test_financial_overview_completion_keeps_earlier_autosave() -> None:
    container = make_container(schema=default_schema())
    session_id, cookie = await _signed_in(container)
    draft = {"annual_turnover": "$1,200,000", "net_profit": "240000"}
    saved = await _save(container, cookie, "financial_overview", draft, current_step=2)
    assert saved.ok is True

    result = await _save(
        container,
        cookie,
        "financial_overview",
        {"asking_price": " ", "owner_salary": "95000"},
        mark_complete=True,
        current_step=2,
    )

    assert result.ok is False
    assert [error.field for error in result.errors] == ["asking_price"]
    assert result.errors[0].message == "Asking price is required"
    step = await container.store.steps.find_one(session_id=session_id, step_key="financial_overview")
    assert step.is_complete is False
    assert step.data == draft
    session = await container.store.sessions.get(session_id)
    assert session.completion_pct == 0


@pytest.mark.asyncio
async def test_repeat_submissions_are_audited_as_forced_refreshes(container: ServiceContainer) -> None:
    session_id, cookie = await _signed_in(container)
    await container.intake.submit_partial(brokerage_slug="harbor", signed_cookie_value=cookie)
    await container.intake.submit_partial(brokerage_slug="harbor", signed_cookie_value=cookie)

    entries = await container.audit.timeline(session_id)
    transitions = [entry.details["to"] for entry in entries if entry.action == "STATE_TRANSITION"]
    forced = [entry.details for entry in entries if entry.action == "STATE_FORCE_SET"]
    assert transitions == ["IN_PROGRESS", "PARTIAL_SUBMITTED"]
    assert [(item["from"], item["to"]) for item in forced] == [("PARTIAL_SUBMITTED", "PARTIAL_SUBMITTED")]
