import asyncio

import pytest

from nahcloud.plugins.memory_storage_provider.memory_storage_provider import MemoryStorageProvider
from nahcloud.server.app import app, get_controller
from nahcloud.server.state_store import StateStore
from nahcloud.server.tf_state_lock_controller import TFStateLockController

pytestmark = pytest.mark.anyio

STATE_URL = "/tfstate/main"

LOCK_INFO = {
    "ID": "4a8c2c1e-7d36-4b6e-9a52-0c4a3c7f0d11",
    "Operation": "OperationTypeApply",
    "Info": "",
    "Who": "alice@laptop",
    "Version": "1.9.0",
    "Created": "2024-05-01T10:00:00.123456789Z",
    "Path": "",
}


class BrokenStorageProvider(MemoryStorageProvider):
    async def get_file(self, key: str) -> bytes:
        raise OSError("disk on fire")


async def test_get_unknown_state_returns_404(client):
    response = await client.get(STATE_URL)

    assert response.status_code == 404
    assert "error" in response.json()


async def test_post_then_get_returns_exact_bytes(client):
    state = b'{\n  "version": 4,\n  "serial": 7,\n  "lineage": "abc"\n}\n'

    response = await client.post(STATE_URL, content=state)
    assert response.status_code == 200

    response = await client.get(STATE_URL)
    assert response.status_code == 200
    assert response.content == state
    assert response.headers["content-type"] == "application/json"


async def test_post_with_lock_id_query(client):
    await client.request("LOCK", STATE_URL, json=LOCK_INFO)

    response = await client.post(STATE_URL, params={"ID": LOCK_INFO["ID"]}, content=b"{}")

    assert response.status_code == 200


async def test_post_without_lock_is_accepted(client):
    await client.request("LOCK", STATE_URL, json=LOCK_INFO)

    response = await client.post(STATE_URL, content=b'{"serial": 1}')

    assert response.status_code == 200


async def test_post_empty_body_returns_400(client):
    response = await client.post(STATE_URL, content=b"")

    assert response.status_code == 400
    assert response.json() == {"error": "State body must not be empty"}


async def test_delete_is_idempotent(client):
    await client.post(STATE_URL, content=b"{}")

    first = await client.delete(STATE_URL)
    second = await client.delete(STATE_URL)

    assert first.status_code == 200
    assert second.status_code == 200
    assert (await client.get(STATE_URL)).status_code == 404


async def test_lock_echoes_accepted_record(client):
    response = await client.request("LOCK", STATE_URL, json=LOCK_INFO)

    assert response.status_code == 200
    body = response.json()
    assert body["ID"] == LOCK_INFO["ID"]
    assert body["Operation"] == "OperationTypeApply"
    assert body["Who"] == "alice@laptop"
    assert body["Version"] == "1.9.0"
    assert body["Path"] == "main"
    assert body["Created"]
    assert "Info" not in body


async def test_lock_conflict_returns_423_with_holder(client):
    holder = (await client.request("LOCK", STATE_URL, json=LOCK_INFO)).json()

    response = await client.request("LOCK", STATE_URL, json={**LOCK_INFO, "ID": "other", "Who": "bob@ci"})

    assert response.status_code == 423
    assert response.json() == holder


async def test_lock_malformed_body_returns_400(client):
    response = await client.request("LOCK", STATE_URL, content=b"{not json")

    assert response.status_code == 400
    assert "error" in response.json()


async def test_lock_without_id_returns_400(client):
    response = await client.request("LOCK", STATE_URL, json={"Who": "alice@laptop"})

    assert response.status_code == 400


async def test_unlock_mismatch_returns_409_with_holder(client):
    holder = (await client.request("LOCK", STATE_URL, json=LOCK_INFO)).json()

    response = await client.request("UNLOCK", STATE_URL, json={"ID": "wrong-token"})

    assert response.status_code == 409
    assert response.json() == holder


async def test_unlock_then_relock(client):
    await client.request("LOCK", STATE_URL, json=LOCK_INFO)

    unlocked = await client.request("UNLOCK", STATE_URL, json=LOCK_INFO)
    relocked = await client.request("LOCK", STATE_URL, json={**LOCK_INFO, "ID": "second"})

    assert unlocked.status_code == 200
    assert relocked.status_code == 200
    assert relocked.json()["ID"] == "second"


async def test_unlock_when_not_locked_returns_200(client):
    response = await client.request("UNLOCK", STATE_URL, json={"ID": "token-1"})

    assert response.status_code == 200


async def test_unlock_malformed_body_returns_400(client):
    response = await client.request("UNLOCK", STATE_URL, content=b"")

    assert response.status_code == 400


async def test_delete_clears_lock(client):
    await client.request("LOCK", STATE_URL, json=LOCK_INFO)
    await client.delete(STATE_URL)

    response = await client.request("LOCK", STATE_URL, json={**LOCK_INFO, "ID": "second"})

    assert response.status_code == 200


async def test_concurrent_lock_requests_have_single_winner(client):
    responses = await asyncio.gather(
        *(client.request("LOCK", STATE_URL, json={**LOCK_INFO, "ID": f"token-{i}"}) for i in range(10))
    )

    winners = [response for response in responses if response.status_code == 200]
    losers = [response for response in responses if response.status_code == 423]
    assert len(winners) == 1
    assert len(losers) == 9
    assert all(response.json() == winners[0].json() for response in losers)


async def test_states_are_isolated(client):
    await client.request("LOCK", "/tfstate/a", json=LOCK_INFO)

    response = await client.request("LOCK", "/tfstate/b", json=LOCK_INFO)

    assert response.status_code == 200


async def test_routes_served_under_v1_prefix(client):
    await client.post("/v1/tfstate/main", content=b'{"serial": 2}')

    response = await client.get(STATE_URL)

    assert response.content == b'{"serial": 2}'


async def test_storage_failure_returns_500(client):
    broken = TFStateLockController(store=StateStore(BrokenStorageProvider()))
    app.dependency_overrides[get_controller] = lambda: broken

    response = await client.get(STATE_URL)

    assert response.status_code == 500
    assert response.json() == {"error": "internal server error"}


async def test_ready(client):
    response = await client.get("/ready")

    assert response.status_code == 200
    assert response.json() == "Ready"


async def test_buildz(client):
    response = await client.get("/buildz")

    assert response.status_code == 200
    assert set(response.json()) == {"version", "python_version", "os", "arch", "uptime"}
