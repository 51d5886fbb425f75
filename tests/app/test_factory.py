"""Tests for the application factory, health probes and request hooks."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from leaddesk import __version__
from leaddesk.app.factory import create_app
from leaddesk.config.leaddesk_config import LeaddeskConfig
from leaddesk.metrics.collector import HTTP_REQUESTS, MetricsCollector


@pytest.fixture()
def app(tmp_config_file):
    return create_app(config=LeaddeskConfig(config_file=tmp_config_file))


def _fake_container(settings, *, db_ok=True, seeded=True):
    db = MagicMock(spec=["fetch_value"])
    if db_ok:
        db.fetch_value.return_value = 1
    else:
        db.fetch_value.side_effect = RuntimeError("connection refused")
    recorder = MagicMock()
    recorder.dropped_by_kind.return_value = {"audit": 0, "activity": 2, "login": 0}
    permission_table = MagicMock()
    permission_table.is_seeded.return_value = seeded
    return SimpleNamespace(
        db=db,
        settings=settings,
        recorder=recorder,
        permission_table=permission_table,
        metrics=MetricsCollector(),
    )


class TestProbesWithoutDatabase:
    def test_ping(self, app):
        resp = app.test_client().get("/ping")
        assert resp.status_code == 200
        assert resp.get_json() == {"message": "pong"}

    def test_livez(self, app):
        body = app.test_client().get("/livez").get_json()
        assert body == {"alive": True, "version": __version__}

    def test_healthz_ok_without_container(self, app):
        body = app.test_client().get("/healthz").get_json()
        assert body["status"] == "ok"
        assert "checks" not in body

    def test_readyz_without_container(self, app):
        resp = app.test_client().get("/readyz")
        assert resp.status_code == 503
        assert resp.get_json()["reason"] == "Container not initialized"

    def test_no_lead_routes(self, app):
        assert app.test_client().get("/api/admin/leads").status_code == 404


class TestProbesWithContainer:
    def test_healthy(self, app):
        app.extensions["container"] = _fake_container(app.config["LEADDESK_SETTINGS"])
        resp = app.test_client().get("/healthz")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["checks"]["database"] == "connected"
        assert body["dropped_log_writes"]["activity"] == 2

    def test_database_down(self, app):
        app.extensions["container"] = _fake_container(
            app.config["LEADDESK_SETTINGS"],
            db_ok=False,
        )
        client = app.test_client()
        health = client.get("/healthz")
        assert health.status_code == 503
        assert health.get_json()["status"] == "degraded"
        ready = client.get("/readyz")
        assert ready.status_code == 503
        assert ready.get_json()["reason"] == "Database not connected"

    def test_not_seeded(self, app):
        app.extensions["container"] = _fake_container(
            app.config["LEADDESK_SETTINGS"],
            seeded=False,
        )
        resp = app.test_client().get("/readyz")
        assert resp.status_code == 503
        assert resp.get_json()["reason"] == "Permission grants not seeded"

    def test_ready(self, app):
        app.extensions["container"] = _fake_container(app.config["LEADDESK_SETTINGS"])
        resp = app.test_client().get("/readyz")
        assert resp.status_code == 200
        assert resp.get_json() == {"ready": True}

    def test_requests_are_counted(self, app):
        container = _fake_container(app.config["LEADDESK_SETTINGS"])
        app.extensions["container"] = container
        client = app.test_client()
        client.get("/ping")
        client.get("/ping")
        client.get("/nowhere")
        assert container.metrics.get(HTTP_REQUESTS, {"method": "GET", "status": "200"}) == 2
        assert container.metrics.get(HTTP_REQUESTS, {"method": "GET", "status": "404"}) == 1


class TestRequestHooks:
    def test_security_headers(self, app):
        resp = app.test_client().get("/ping")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert "default-src 'none'" in resp.headers["Content-Security-Policy"]
        assert resp.headers["Strict-Transport-Security"].startswith("max-age=")

    def test_request_id_generated(self, app):
        resp = app.test_client().get("/ping")
        assert len(resp.headers["X-Request-ID"]) == 32

    def test_request_id_echoed(self, app):
        resp = app.test_client().get("/ping", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"

    def test_no_hsts_over_http(self, tmp_path, minimal_config_data):
        import yaml

        minimal_config_data["server"]["external_url"] = "http://localhost:5001"
        path = tmp_path / "http.yaml"
        path.write_text(yaml.safe_dump(minimal_config_data), encoding="utf-8")
        app = create_app(config=LeaddeskConfig(config_file=path))
        resp = app.test_client().get("/ping")
        assert "Strict-Transport-Security" not in resp.headers


class TestTrustedProxyMiddleware:
    def _app(self, trusted):
        from flask import Flask, jsonify, request

        from leaddesk.app.middleware import TrustedProxyMiddleware

        app = Flask("test")

        @app.route("/ip")
        def ip():
            return jsonify({"ip": request.remote_addr, "scheme": request.scheme})

        app.wsgi_app = TrustedProxyMiddleware(app.wsgi_app, trusted_proxies=trusted)
        return app.test_client()

    def test_trusted_proxy_rewrites(self):
        client = self._app(["10.0.0.0/8"])
        body = client.get(
            "/ip",
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.2", "X-Forwarded-Proto": "https"},
            environ_base={"REMOTE_ADDR": "10.0.0.1"},
        ).get_json()
        assert body == {"ip": "203.0.113.7", "scheme": "https"}

    def test_untrusted_proxy_ignored(self):
        client = self._app(["10.0.0.0/8"])
        body = client.get(
            "/ip",
            headers={"X-Forwarded-For": "203.0.113.7"},
            environ_base={"REMOTE_ADDR": "198.51.100.1"},
        ).get_json()
        assert body["ip"] == "198.51.100.1"
