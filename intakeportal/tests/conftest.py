from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
from httpx import ASGITransport, AsyncClient

from intakeportal.apps.api.main import create_app
from intakeportal.core.config import get_settings
from intakeportal.services.container import ServiceContainer
from intakeportal.tests.utils.factories import make_container, make_settings


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Iterator[None]:
    # Each test builds its own Settings; keep the process-wide cache from leaking between them.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def container() -> ServiceContainer:
    return make_container(make_settings())


@pytest.fixture
async def api_client(container: ServiceContainer) -> AsyncIterator[AsyncClient]:
    app = create_app(settings=container.settings, container=container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
