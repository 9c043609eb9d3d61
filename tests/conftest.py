from typing import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from nahcloud.plugins.memory_storage_provider.memory_storage_provider import MemoryStorageProvider
from nahcloud.server.app import app, get_controller
from nahcloud.server.state_store import StateStore
from nahcloud.server.tf_state_lock_controller import TFStateLockController


@pytest.fixture(scope="module")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def storage_provider() -> MemoryStorageProvider:
    return MemoryStorageProvider()


@pytest.fixture
def store(storage_provider) -> StateStore:
    return StateStore(storage_provider)


@pytest.fixture
def controller(store) -> TFStateLockController:
    return TFStateLockController(store=store)


@pytest.fixture
async def client(controller) -> AsyncIterator[AsyncClient]:
    app.dependency_overrides[get_controller] = lambda: controller
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
