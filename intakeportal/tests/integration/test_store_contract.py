from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta

import pytest

from intakeportal.core.errors import ConflictError, NotFound
from intakeportal.domain.models import (
    Brokerage,
    ClientIdentity,
    IntakeSession,
    IntakeStep,
    LifecycleState,
    MagicLinkToken,
    new_id,
    utc_now,
)
from intakeportal.persistence.base import IntakeStore
from intakeportal.persistence.db import build_engine
from intakeportal.persistence.memory import MemoryStore
from intakeportal.persistence.rest import RestStore
from intakeportal.persistence.sql import SqlStore
from intakeportal.tests.utils.factories import make_settings
from intakeportal.tests.utils.fake_postgrest import FakePostgrest


@pytest.fixture(params=["memory", "sql", "rest"])
async def store(request: pytest.FixtureRequest, tmp_path) -> AsyncIterator[IntakeStore]:
    # Every backend must honour the same repository contract.
    if request.param == "memory":
        backend: IntakeStore = MemoryStore()
    elif request.param == "sql":
        engine = build_engine(make_settings(), database_url=f"sqlite+aiosqlite:///{tmp_path / 'contract.db'}")
        backend = SqlStore(engine, create_schema=True)
    else:
        backend = RestStore.from_settings(
            base_url="http://postgrest.test",
            api_key="service-key",
            timeout_ms=1000,
            transport=FakePostgrest().transport(),
        )
    await backend.initialize()
    yield backend
    await backend.close()


def _brokerage(slug: str = "harbor") -> Brokerage:
    return Brokerage(
        id=new_id("brokerage"),
        slug=slug,
        name=slug.title(),
        sender_name="Desk",
        sender_email=f"desk@{slug}.example",
        portal_base_url=f"https://{slug}.example",
    )


def _client(brokerage_id: str, email: str = "dana@bluefin.example") -> ClientIdentity:
    return ClientIdentity(
        id=new_id("client"),
        brokerage_id=brokerage_id,
        business_name="Bluefin",
        contact_name="Dana",
        email=email,
    )


async def _session(store: IntakeStore) -> IntakeSession:
    brokerage = await store.brokerages.create(_brokerage())
    client = await store.clients.create(_client(brokerage.id))
    return await store.sessions.create(
        IntakeSession(id=new_id("session"), client_id=client.id, brokerage_id=brokerage.id, total_steps=2)
    )


@pytest.mark.asyncio
async def test_create_and_get_round_trip(store: IntakeStore) -> None:
    created = await store.brokerages.create(_brokerage())
    fetched = await store.brokerages.get(created.id)
    assert fetched is not None
    assert fetched.slug == "harbor"
    assert fetched.branding.primary_color == created.branding.primary_color
    assert fetched.created_at.tzinfo is not None
    assert await store.brokerages.get("missing") is None


@pytest.mark.asyncio
async def test_unique_columns_raise_conflict(store: IntakeStore) -> None:
    brokerage = await store.brokerages.create(_brokerage())
    with pytest.raises(ConflictError):
        await store.brokerages.create(_brokerage())
    await store.clients.create(_client(brokerage.id))
    with pytest.raises(ConflictError):
        await store.clients.create(_client(brokerage.id))
    other = await store.brokerages.create(_brokerage("other"))
    # Email uniqueness is per tenant.
    await store.clients.create(_client(other.id))


@pytest.mark.asyncio
async def test_update_applies_changes_and_stamps_updated_at(store: IntakeStore) -> None:
    session = await _session(store)
    updated = await store.sessions.update(
        session.id, {"status": LifecycleState.IN_PROGRESS, "missing_items": ["lease"]}
    )
    assert updated is not None
    assert updated.status == LifecycleState.IN_PROGRESS
    assert updated.missing_items == ["lease"]
    assert updated.updated_at >= session.updated_at
    assert await store.sessions.update("missing", {"current_step": 2}) is None


@pytest.mark.asyncio
async def test_update_with_expectation_is_compare_and_set(store: IntakeStore) -> None:
    session = await _session(store)
    link = await store.magic_links.create(
        MagicLinkToken(
            id=new_id("mlt"),
            token_hash="hash-1",
            session_id=session.id,
            client_id=session.client_id,
            brokerage_id=session.brokerage_id,
            expires_at=utc_now() + timedelta(minutes=30),
        )
    )
    first = await store.magic_links.update(link.id, {"used_at": utc_now()}, expect={"used_at": None})
    second = await store.magic_links.update(link.id, {"used_at": utc_now()}, expect={"used_at": None})
    assert first is not None and first.used_at is not None
    assert second is None

    moved = await store.sessions.update(
        session.id, {"status": LifecycleState.IN_PROGRESS}, expect={"status": LifecycleState.INVITED}
    )
    stale = await store.sessions.update(
        session.id, {"status": LifecycleState.PARTIAL_SUBMITTED}, expect={"status": LifecycleState.INVITED}
    )
    assert moved is not None
    assert stale is None
    assert (await store.sessions.get(session.id)).status == LifecycleState.IN_PROGRESS


@pytest.mark.asyncio
async def test_find_filters_orders_and_limits(store: IntakeStore) -> None:
    brokerage = await store.brokerages.create(_brokerage())
    for index, email in enumerate(["c@x.example", "a@x.example", "b@x.example"]):
        client = _client(brokerage.id, email=email)
        client.is_archived = index == 0
        await store.clients.create(client)

    active = await store.clients.find(brokerage_id=brokerage.id, is_archived=False, order_by="email")
    assert [client.email for client in active] == ["a@x.example", "b@x.example"]
    newest = await store.clients.find(brokerage_id=brokerage.id, order_by="email", descending=True, limit=1)
    assert [client.email for client in newest] == ["c@x.example"]
    assert await store.clients.count(brokerage_id=brokerage.id) == 3
    assert await store.clients.count(brokerage_id="nobody") == 0
    assert (await store.clients.find_one(email="b@x.example")).brokerage_id == brokerage.id
    assert await store.clients.find_one(email="nobody@x.example") is None


@pytest.mark.asyncio
async def test_find_matches_null_filters(store: IntakeStore) -> None:
    session = await _session(store)
    assert [row.id for row in await store.sessions.find(drive_folder_id=None)] == [session.id]
    await store.sessions.update(session.id, {"drive_folder_id": "folder_1"})
    assert await store.sessions.find(drive_folder_id=None) == []


@pytest.mark.asyncio
async def test_returned_records_are_independent_copies(store: IntakeStore) -> None:
    session = await _session(store)
    fetched = await store.sessions.get(session.id)
    fetched.missing_items.append("mutated")
    assert (await store.sessions.get(session.id)).missing_items == []


@pytest.mark.asyncio
async def test_merge_step_data_is_shallow_and_completion_sticky(store: IntakeStore) -> None:
    session = await _session(store)
    step = await store.steps.create(
        IntakeStep(id=new_id("step"), session_id=session.id, step_key="business", title="Business", step_order=1)
    )
    first = await store.merge_step_data(step.id, {"a": "1", "tags": ["x"]}, True)
    assert first.data == {"a": "1", "tags": ["x"]}
    assert first.is_complete is True

    second = await store.merge_step_data(step.id, {"b": 2, "tags": ["y"]}, False)
    assert second.data == {"a": "1", "tags": ["y"], "b": 2}
    assert second.is_complete is True
    assert (await store.steps.get(step.id)).data == second.data


@pytest.mark.asyncio
async def test_merge_step_data_unknown_step(store: IntakeStore) -> None:
    with pytest.raises(NotFound):
        await store.merge_step_data("step_missing", {"a": 1}, False)
