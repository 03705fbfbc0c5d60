"""
Registry service endpoint tests.

The TestClient is used without its context manager so the lifespan (logging
setup, the configured on-disk database) is skipped; each test installs a
temporary store through set_store().

Run with:
    pytest apps/tests/test_registry_api.py -v
"""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from sse_starlette.sse import EventSourceResponse

from apps.services.registry import dependencies
from apps.services.registry.app import app
from apps.services.registry.routers.events import claim_event_stream, stream_claim_events


@pytest.fixture
def api(small_store):
    dependencies.reset_dependencies(close=False)
    dependencies.set_store(small_store)
    yield TestClient(app)
    dependencies.reset_dependencies(close=False)


def _claim(api, index, claimant="alice"):
    return api.post(f"/cells/{index}/claim", headers={"X-Claimant": claimant})


class TestClaimEndpoint:
    def test_claim_succeeds(self, api):
        response = _claim(api, 2)
        assert response.status_code == 200
        data = response.json()
        assert data["cell_index"] == 2
        assert data["claimant"] == "alice"
        assert data["order"] == 1
        assert data["assisted_by"] is None

    def test_second_claim_conflicts(self, api):
        _claim(api, 2)
        response = _claim(api, 2, "bob")
        assert response.status_code == 409
        assert response.json() == {
            "reason": "already_claimed",
            "message": "Cell 2 is already claimed",
            "cell_index": 2,
        }

    def test_out_of_range(self, api):
        for index in (3, -1):
            response = _claim(api, index)
            assert response.status_code == 400
            assert response.json()["reason"] == "out_of_range"

    def test_non_integer_index_is_validation_error(self, api):
        assert _claim(api, "abc").status_code == 422

    def test_missing_claimant(self, api):
        assert api.post("/cells/1/claim").status_code == 422
        assert _claim(api, 1, "").status_code == 422

    def test_cap_reached(self, api):
        for i in range(3):
            assert _claim(api, i).status_code == 200
        response = _claim(api, 1, "bob")
        assert response.status_code == 410
        body = response.json()
        assert body["reason"] == "cap_reached"
        assert body["cell_index"] == 1


class TestAssistedClaimEndpoint:
    def test_operator_claim(self, api):
        response = api.post(
            "/cells/0/assisted-claim",
            headers={"X-Operator": "ops"},
            json={"beneficiary": "winner"},
        )
        assert response.status_code == 200
        assert response.json()["claimant"] == "winner"
        assert response.json()["assisted_by"] == "ops"

    def test_unknown_operator(self, api):
        response = api.post(
            "/cells/0/assisted-claim",
            headers={"X-Operator": "mallory"},
            json={"beneficiary": "winner"},
        )
        assert response.status_code == 403
        assert response.json()["reason"] == "not_authorized"

    def test_missing_operator_header(self, api):
        response = api.post("/cells/0/assisted-claim", json={"beneficiary": "winner"})
        assert response.status_code == 403

    def test_empty_beneficiary(self, api):
        response = api.post(
            "/cells/0/assisted-claim",
            headers={"X-Operator": "ops"},
            json={"beneficiary": ""},
        )
        assert response.status_code == 422


class TestReads:
    def test_cell_state(self, api):
        assert api.get("/cells/1").json() == {"cell_index": 1, "claimed": False, "claimant": None}
        _claim(api, 1)
        assert api.get("/cells/1").json() == {"cell_index": 1, "claimed": True, "claimant": "alice"}

    def test_cell_out_of_range(self, api):
        response = api.get("/cells/7")
        assert response.status_code == 400
        assert response.json()["reason"] == "out_of_range"

    def test_supply(self, api):
        assert api.get("/supply").json() == {
            "total_claimed": 0,
            "capacity": 3,
            "remaining": 3,
            "sold_out": False,
        }
        for i in range(3):
            _claim(api, i)
        data = api.get("/supply").json()
        assert data["sold_out"] is True
        assert data["remaining"] == 0

    def test_claim_log_pages(self, api):
        for i in (2, 0, 1):
            _claim(api, i)
        page = api.get("/claims", params={"after": 0, "limit": 2}).json()
        assert [c["cell_index"] for c in page["claims"]] == [2, 0]
        assert page["last_order"] == 2

        rest = api.get("/claims", params={"after": page["last_order"]}).json()
        assert [c["order"] for c in rest["claims"]] == [3]

        empty = api.get("/claims", params={"after": 3}).json()
        assert empty == {"claims": [], "last_order": 3}

    def test_claim_log_validation(self, api):
        assert api.get("/claims", params={"after": -1}).status_code == 422
        assert api.get("/claims", params={"limit": 0}).status_code == 422

    def test_health(self, api):
        _claim(api, 0)
        for path in ("/healthz", "/health"):
            data = api.get(path).json()
            assert data["status"] == "healthy"
            assert data["total_claimed"] == 1
            assert data["capacity"] == 3
            assert data["sold_out"] is False


def test_claims_are_published_to_event_bus(api, small_store):
    seen = []
    bus = dependencies.get_event_bus()
    small_store.add_listener(seen.append)
    _claim(api, 0)
    assert bus.published == 1
    assert [r.cell_index for r in seen] == [0]


def test_set_store_moves_bus_listener(small_store, tmp_path):
    from millionbase.registry.store import RegistryStore

    dependencies.reset_dependencies(close=False)
    other = RegistryStore(tmp_path / "other.db", capacity=3)
    try:
        dependencies.set_store(small_store)
        dependencies.set_store(other)
        bus = dependencies.get_event_bus()
        small_store.claim(0, "alice")
        assert bus.published == 0
        other.claim(0, "alice")
        assert bus.published == 1
    finally:
        dependencies.reset_dependencies(close=False)
        other.close()


def test_lifespan_opens_and_closes_store(small_store, monkeypatch):
    from apps.services.registry import lifespan as lifespan_module

    calls = []
    monkeypatch.setattr(lifespan_module, "setup_logging", lambda **kwargs: calls.append(kwargs))
    dependencies.reset_dependencies(close=False)
    dependencies.set_store(small_store)

    with TestClient(app) as client:
        assert client.get("/healthz").json()["capacity"] == 3
    assert calls and calls[0]["service_name"] == "registry"
    # Shutdown drops the singletons
    assert dependencies._store is None


class TestClaimEventStream:
    @pytest.mark.asyncio
    async def test_replays_then_follows_live(self, small_store):
        dependencies.reset_dependencies(close=False)
        dependencies.set_store(small_store)
        bus = dependencies.get_event_bus()
        try:
            small_store.claim(2, "alice")
            small_store.claim(0, "bob")

            stream = claim_event_stream(small_store, bus, after=1)
            replayed = await asyncio.wait_for(stream.__anext__(), 2)
            assert replayed["event"] == "claim"
            assert replayed["id"] == "2"
            assert json.loads(replayed["data"])["cell_index"] == 0
            assert bus.subscriber_count == 1

            await asyncio.to_thread(small_store.claim, 1, "carol")
            live = await asyncio.wait_for(stream.__anext__(), 2)
            assert live["id"] == "3"
            assert json.loads(live["data"])["claimant"] == "carol"

            # Client disconnect closes the generator and drops the subscription
            await stream.aclose()
            assert bus.subscriber_count == 0
        finally:
            dependencies.reset_dependencies(close=False)

    @pytest.mark.asyncio
    async def test_route_returns_event_source(self, small_store):
        bus = dependencies.get_event_bus()
        try:
            response = await stream_claim_events(after=0, store=small_store, bus=bus)
            assert isinstance(response, EventSourceResponse)
            assert response.media_type == "text/event-stream"
            # Nothing subscribes until the body is streamed
            assert bus.subscriber_count == 0
        finally:
            dependencies.reset_dependencies(close=False)

    def test_negative_after_rejected(self, api):
        assert api.get("/events", params={"after": -1}).status_code == 422
