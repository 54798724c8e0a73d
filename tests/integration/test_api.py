"""
Integration tests for the FastAPI ranking API.

Tests the HTTP endpoints against an in-memory catalog (or mocked store
dependencies) to verify request handling, response envelopes and the
mapping of engine errors to status codes.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock
from httpx import AsyncClient, ASGITransport

from ranking_engine.engine import (
    InMemoryCatalog,
    RankingEngine,
    StoreUnavailableError,
)
from ranking_engine.serve.api import app


async def call(method: str, url: str, **kwargs):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, url, **kwargs)


@pytest.fixture(autouse=True)
def engine_state(engine):
    """Serve every test from the sample catalog unless a test overrides it."""
    app.state.engine = engine
    yield


# -----------------------------------------------------------------------------
# Health Check Tests
# -----------------------------------------------------------------------------


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.fixture(autouse=True)
    async def setup_app(self, mock_async_redis, mock_async_qdrant):
        """Set up app state with mocked clients before each test."""
        app.state.redis_client = mock_async_redis
        app.state.qdrant_client = mock_async_qdrant
        yield

    async def test_health_live_returns_ok(self):
        """GET /health/live should always return 200 OK."""
        response = await call("GET", "/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_health_ready_with_healthy_dependencies(self):
        """GET /health/ready should return 200 when all deps are healthy."""
        response = await call("GET", "/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["components"]["redis"]["status"] == "up"
        assert data["components"]["qdrant"]["status"] == "up"

    async def test_health_ready_with_redis_down(self, mock_async_redis):
        """GET /health/ready should return 503 when Redis is down."""
        mock_async_redis.ping = AsyncMock(side_effect=Exception("Connection refused"))

        response = await call("GET", "/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "error"
        assert data["components"]["redis"]["status"] == "down"
        assert "Connection refused" in data["components"]["redis"]["error"]

    async def test_health_ready_with_qdrant_down(self, mock_async_qdrant):
        """GET /health/ready should return 503 when Qdrant is down."""
        mock_async_qdrant.get_collections = AsyncMock(
            side_effect=Exception("Qdrant unavailable")
        )

        response = await call("GET", "/health/ready")

        assert response.status_code == 503
        assert response.json()["components"]["qdrant"]["status"] == "down"


# -----------------------------------------------------------------------------
# Recommendation Tests
# -----------------------------------------------------------------------------


class TestRecommendationsEndpoint:
    """Tests for GET /recommendations/{user_id}."""

    async def test_seeded_recommendations(self):
        """A seed item yields related items the user has not seen yet."""
        response = await call(
            "GET",
            "/recommendations/user-1",
            params={"based_on": "shoe-1", "limit": 5, "diversity_factor": 0},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["user_id"] == "user-1"
        assert data["source"] == "seed"
        assert [i["item_id"] for i in data["items"]] == ["shoe-2", "shoe-3"]
        assert data["total"] == 2
        assert data["limit"] == 5
        assert all("score" in i for i in data["items"])

    async def test_cold_start_falls_back_to_popular(self):
        """Users without history get the popular pool."""
        response = await call("GET", "/recommendations/stranger", params={"limit": 3})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["source"] == "popular"
        assert data["confidence"] == 0.5
        assert len(data["items"]) == 3
        assert set(data["factors"]) == {"affinity", "freshness", "popularity"}
        assert data["factors"]["affinity"] == 0.0

    async def test_category_seed(self):
        response = await call(
            "GET", "/recommendations/stranger", params={"based_on": "category:hats"}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["source"] == "category"
        assert [i["item_id"] for i in data["items"]] == ["hat-1"]

    async def test_unknown_seed_returns_404_envelope(self):
        response = await call(
            "GET", "/recommendations/user-1", params={"based_on": "nope"}
        )

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["kind"] == "not_found"
        assert body["error"]["details"] == {"resource": "Item", "identifier": "nope"}

    async def test_limit_max(self):
        """limit above 100 is rejected before reaching the engine."""
        response = await call(
            "GET", "/recommendations/user-1", params={"limit": 101}
        )
        assert response.status_code == 422

    async def test_diversity_factor_out_of_range(self):
        response = await call(
            "GET", "/recommendations/user-1", params={"diversity_factor": 2}
        )
        assert response.status_code == 422

    async def test_store_outage_returns_503(self):
        store = AsyncMock()
        store.get_profile.side_effect = StoreUnavailableError(
            "redis zrange failed", {"backend": "redis", "operation": "zrange"}
        )
        app.state.engine = RankingEngine(store)

        response = await call("GET", "/recommendations/user-1")

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["kind"] == "store_unavailable"
        assert error["details"]["backend"] == "redis"

    async def test_deadline_returns_504(self, catalog):
        class SlowCatalog(InMemoryCatalog):
            async def get_profile(self, user_id):
                await asyncio.sleep(1.0)
                return await super().get_profile(user_id)

        slow = SlowCatalog(catalog.items.values(), catalog.profiles)
        app.state.engine = RankingEngine(slow, deadline_seconds=0.05)

        response = await call("GET", "/recommendations/user-1")

        assert response.status_code == 504
        assert response.json()["error"]["details"] == {"stage": "retrieving"}


# -----------------------------------------------------------------------------
# Search Tests
# -----------------------------------------------------------------------------


class TestSearchEndpoint:
    """Tests for POST /search."""

    async def test_search_with_filters(self):
        response = await call(
            "POST",
            "/search",
            json={"query": "red", "filters": {"color": ["red"], "size": ["41", "42"]}},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["query"] == "red"
        assert {i["item_id"] for i in data["items"]} == {"shoe-1", "shoe-2"}
        assert data["total"] == 2
        assert data["offset"] == 0
        assert "shoes" in data["suggestions"]
        assert data["processing_time_ms"] >= 0

    async def test_offset_past_end(self):
        response = await call(
            "POST", "/search", json={"query": "shoes", "limit": 2, "offset": 10}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["items"] == []
        assert data["total"] == 3

    async def test_empty_filter_values_return_400(self):
        response = await call(
            "POST", "/search", json={"query": "shoes", "filters": {"color": []}}
        )

        assert response.status_code == 400
        assert response.json()["error"]["kind"] == "invalid_input"

    async def test_invalid_body(self):
        response = await call("POST", "/search", json={"query": "x", "limit": 0})
        assert response.status_code == 422


# -----------------------------------------------------------------------------
# Discover Tests
# -----------------------------------------------------------------------------


class TestDiscoverEndpoint:
    """Tests for GET /discover."""

    async def test_anonymous_discovery(self):
        response = await call("GET", "/discover", params={"limit": 2})

        assert response.status_code == 200
        data = response.json()["data"]
        assert [i["item_id"] for i in data["items"]] == ["shirt-1", "shoe-1"]
        assert data["total"] == 2

    async def test_discovery_skips_seen_items(self):
        response = await call("GET", "/discover", params={"user_id": "user-1"})

        assert response.status_code == 200
        ids = [i["item_id"] for i in response.json()["data"]["items"]]
        assert ids == ["shoe-2", "shoe-3", "hat-1"]


# -----------------------------------------------------------------------------
# Item Lookup Tests
# -----------------------------------------------------------------------------


class TestItemEndpoint:
    """Tests for GET /items/{item_id}."""

    async def test_item_found(self):
        response = await call("GET", "/items/hat-1")

        assert response.status_code == 200
        assert response.json()["title"] == "Wool hat"

    async def test_item_not_found(self):
        response = await call("GET", "/items/nope")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"] == {
            "kind": "not_found",
            "message": "Item with identifier nope not found",
            "details": {"resource": "Item", "identifier": "nope"},
        }
