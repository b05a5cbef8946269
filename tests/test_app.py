"""
Application-level tests: health probes, security headers, request
guards, JSON error handlers and rate-limit wiring.
"""

from opsdesk.middleware.rate_limiter import PUBLIC_SUBMIT_ENDPOINTS

from conftest import request_payload


class TestHealth:
    def test_health_reports_database(self, client):
        res = client.get("/api/health")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["notifications"] == {"status": "ok", "async": False, "failed_last_24h": 0}

    def test_health_counts_failed_notifications(self, client, notifier):
        notifier.fail_templates = {"request_received_client"}
        client.post("/api/requests", json=request_payload())
        body = client.get("/api/health").get_json()
        assert body["checks"]["notifications"]["failed_last_24h"] == 1

    def test_ready(self, client):
        assert client.get("/api/health/ready").get_json() == {"status": "ok"}

    def test_live_alias(self, client):
        assert client.get("/api/health/live").status_code == 200


class TestMiddleware:
    def test_security_headers(self, client):
        res = client.get("/api/health/ready")
        assert res.headers["X-Content-Type-Options"] == "nosniff"
        assert res.headers["X-Frame-Options"] == "DENY"
        assert "frame-ancestors 'none'" in res.headers["Content-Security-Policy"]
        assert res.headers["Cache-Control"] == "no-store"

    def test_request_id_is_echoed(self, client):
        res = client.get("/api/requests", headers={"X-Request-ID": "abc-123"})
        assert res.headers["X-Request-ID"] == "abc-123"
        assert "X-Request-Duration-Ms" in res.headers

    def test_request_id_is_generated(self, client):
        res = client.get("/api/requests")
        assert res.headers["X-Request-ID"]


class TestErrorHandlers:
    def test_unknown_route_is_json_404(self, client):
        res = client.get("/api/nope")
        assert res.status_code == 404
        body = res.get_json()
        assert body["code"] == "ERR_NOT_FOUND"
        assert body["details"] == {"path": "/api/nope"}

    def test_method_not_allowed(self, client):
        res = client.delete("/api/health")
        assert res.status_code == 405
        assert res.get_json()["error"] == "Method not allowed"

    def test_body_too_large(self, app, client, monkeypatch):
        monkeypatch.setitem(app.config, "MAX_CONTENT_LENGTH", 64)
        res = client.post("/api/requests", json={"requirements": "x" * 200})
        assert res.status_code == 413


class TestRateLimitWiring:
    def test_public_endpoints_exist(self, app):
        assert PUBLIC_SUBMIT_ENDPOINTS <= set(app.view_functions)

    def test_limits_disabled_under_testing(self, client):
        for _ in range(30):
            res = client.post("/api/auth/login", json={"email": "a@b.com", "password": "x"})
        assert res.status_code == 401
