"""End-to-end HTTP tests: cache headers, rate limits, admin routes."""

import pytest

from conftest import chapter_row, make_settings

CHAPTERS = "/api/v1/chapters"


@pytest.mark.asyncio
class TestChapterReads:
    async def test_list_is_cached(self, client):
        first = await client.get(CHAPTERS, params={"page": "1"})
        second = await client.get(CHAPTERS, params={"page": "1"})

        assert first.status_code == second.status_code == 200
        assert first.headers["X-Cache-Status"] == "MISS"
        assert second.headers["X-Cache-Status"] == "HIT"
        assert first.json() == second.json()
        assert second.json()["data"]["pagination"]["itemsPerPage"] == 10

    async def test_query_order_is_part_of_the_key(self, client):
        await client.get(f"{CHAPTERS}?page=1&limit=5")
        reordered = await client.get(f"{CHAPTERS}?limit=5&page=1")
        assert reordered.headers["X-Cache-Status"] == "MISS"

    async def test_redis_down_still_serves(self, client, fake_server):
        fake_server.connected = False

        first = await client.get(CHAPTERS)
        second = await client.get(CHAPTERS)

        assert first.status_code == second.status_code == 200
        assert first.headers["X-Cache-Status"] in ("ERROR", "DISABLED")
        assert second.headers["X-Cache-Status"] == "DISABLED"

    async def test_chapter_by_id(self, client, admin_headers):
        await client.post(CHAPTERS, json=[chapter_row()], headers=admin_headers)

        found = await client.get(f"{CHAPTERS}/1")
        missing = await client.get(f"{CHAPTERS}/99")
        invalid = await client.get(f"{CHAPTERS}/abc")

        assert found.status_code == 200
        assert found.json()["data"]["chapter"] == "Kinematics"
        assert "X-Cache-Status" not in found.headers
        assert missing.status_code == 404
        assert invalid.status_code == 400


@pytest.mark.asyncio
class TestUpload:
    async def test_requires_admin_key(self, client):
        response = await client.post(CHAPTERS, json=[chapter_row()])
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

        wrong = await client.post(CHAPTERS, json=[chapter_row()], headers={"x-admin-key": "nope-nope"})
        assert wrong.status_code == 401

    async def test_upload_invalidates_list_cache(self, client, admin_headers):
        await client.get(CHAPTERS)
        assert (await client.get(CHAPTERS)).headers["X-Cache-Status"] == "HIT"

        created = await client.post(CHAPTERS, json=[chapter_row()], headers=admin_headers)
        assert created.status_code == 201
        assert "X-RateLimit-Limit" in created.headers

        after = await client.get(CHAPTERS)
        assert after.headers["X-Cache-Status"] == "MISS"
        assert after.json()["data"]["pagination"]["totalItems"] == 1

    async def test_partial_upload(self, client, admin_headers):
        response = await client.post(CHAPTERS, json=[chapter_row(), chapter_row(status="Done")],
                                     headers=admin_headers)
        assert response.status_code == 207

    async def test_upload_budget(self, client, admin_headers, settings):
        for _ in range(settings.rate_limit_upload_max):
            assert (await client.post(CHAPTERS, json=[chapter_row()],
                                      headers=admin_headers)).status_code == 201

        limited = await client.post(CHAPTERS, json=[chapter_row()], headers=admin_headers)

        assert limited.status_code == 429
        body = limited.json()
        assert body["error"] == "Too Many Requests"
        assert body["limit"] == settings.rate_limit_upload_max
        assert body["windowMs"] == settings.rate_limit_upload_window * 1000
        assert int(limited.headers["Retry-After"]) == body["retryAfter"]


@pytest.mark.asyncio
class TestRateLimits:
    async def test_api_budget_rejects_after_max(self, client, settings):
        for _ in range(settings.rate_limit_api_max):
            response = await client.get(CHAPTERS)
            assert response.status_code == 200

        limited = await client.get(CHAPTERS)

        assert limited.status_code == 429
        assert limited.headers["X-RateLimit-Remaining"] == "0"
        assert "Retry-After" in limited.headers

    async def test_headers_on_allowed_requests(self, client, settings):
        response = await client.get(CHAPTERS)
        assert response.headers["X-RateLimit-Limit"] == str(settings.rate_limit_api_max)
        assert response.headers["X-RateLimit-Remaining"] == str(settings.rate_limit_api_max - 1)

    async def test_health_bypasses_limits(self, client, settings):
        for _ in range(settings.rate_limit_api_max + 1):
            await client.get(CHAPTERS)

        for path in ("/health", "/api/health"):
            response = await client.get(path)
            assert response.status_code == 200
            assert "X-RateLimit-Limit" not in response.headers

    async def test_admin_reset_restores_access(self, client, settings, admin_headers):
        for _ in range(settings.rate_limit_api_max + 1):
            await client.get(CHAPTERS)

        reset = await client.delete("/api/v1/admin/rate-limits/203.0.113.7", headers=admin_headers)

        assert reset.status_code == 200
        assert set(reset.json()["budgets"]) == {"api", "upload", "auth", "sensitive"}
        assert (await client.get(CHAPTERS)).status_code == 200


@pytest.mark.asyncio
class TestSkipFailedRequests:
    @pytest.fixture
    def settings(self, tmp_path):
        return make_settings(tmp_path, rate_limit_skip_failed_requests=True)

    async def test_failed_requests_are_refunded(self, client, settings):
        for _ in range(settings.rate_limit_api_max + 5):
            response = await client.get("/api/v1/nothing-here")
            assert response.status_code == 404

        response = await client.get(CHAPTERS)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == str(settings.rate_limit_api_max - 1)


@pytest.mark.asyncio
class TestAdminAndErrors:
    async def test_cache_invalidate(self, client, admin_headers):
        await client.get(CHAPTERS)

        response = await client.post("/api/v1/admin/cache/invalidate", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["invalidated"] == 1
        assert (await client.get(CHAPTERS)).headers["X-Cache-Status"] == "MISS"

    async def test_cache_invalidate_rejects_foreign_pattern(self, client, admin_headers):
        response = await client.post("/api/v1/admin/cache/invalidate",
                                     json={"pattern": "rate_limit:*"}, headers=admin_headers)
        assert response.status_code == 400

    async def test_health_reports_backends(self, client):
        body = (await client.get("/health")).json()
        assert body["status"] == "OK"
        assert body["checks"]["redis_state"] == "connected"

    async def test_unknown_route(self, client):
        response = await client.get("/api/v1/nothing-here")
        assert response.status_code == 404
        assert response.json() == {"error": "Route not found", "path": "/api/v1/nothing-here"}
