# S5Gate
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for the gateway control API."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from catalog_fixtures import CLIENT_BLOB, SAMPLE
from s5gate.api.app import create_app
from s5gate.catalog.catalog import EndpointCatalog
from s5gate.errors import FetchError, GatewayError, TunnelTimeout
from s5gate.proxy.controller import ProxyController

SERVER = {"hostName": "public-vpn-1", "ip": "1.1.1.1", "countryLong": "Japan", "countryShort": "JP"}


@pytest.fixture
def controller(runner, gateway_config):
    return ProxyController(gateway_config, runner=runner)


@pytest.fixture
def catalog(gateway_config):
    return EndpointCatalog(gateway_config, fetcher=lambda: SAMPLE, clock=lambda: 1000.0)


@pytest.fixture
def client(controller, catalog):
    return TestClient(create_app(controller, catalog))


class TestSessionRoutes:
    def test_status(self, client):
        resp = client.get("/api/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["status"]["session"]["mode"] == "direct"

    def test_connect_and_disconnect(self, client, runner):
        resp = client.post("/api/connect", json={"server": SERVER, "configBase64": CLIENT_BLOB})
        assert resp.status_code == 200
        session = resp.json()["session"]
        assert session["mode"] == "tunneled"
        assert session["server"]["hostName"] == "public-vpn-1"
        assert session["connectedAt"]

        resp = client.post("/api/disconnect")
        assert resp.json()["session"]["mode"] == "direct"
        assert runner.tunnel_running is False

    def test_connect_missing_config(self, client):
        resp = client.post("/api/connect", json={"server": SERVER})
        assert resp.status_code == 422

    def test_connect_bad_config(self, client):
        resp = client.post("/api/connect", json={"server": SERVER, "configBase64": "abc"})
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert resp.json()["error"]

    def test_connect_timeout(self, client, runner):
        runner.link_comes_up = False
        resp = client.post("/api/connect", json={"server": SERVER, "configBase64": CLIENT_BLOB})
        assert resp.status_code == 504
        assert "timeout" in resp.json()["error"]
        assert client.get("/api/status").json()["status"]["session"]["error"]

    def test_connect_non_numeric_uptime(self, controller, catalog, runner):
        client = TestClient(create_app(controller, catalog), raise_server_exceptions=False)
        server = {**SERVER, "uptimeDays": "abc"}
        resp = client.post("/api/connect", json={"server": server, "configBase64": CLIENT_BLOB})

        assert resp.status_code == 400
        assert resp.headers["content-type"] == "application/json"
        assert resp.json()["success"] is False
        assert "uptime" in resp.json()["error"]
        assert runner.spawned == []
        assert "uptime" in client.get("/api/status").json()["status"]["session"]["error"]

    def test_connect_relay_dir_not_a_directory(self, runner, gateway_config, catalog, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        gateway_config.relay_config_dir = str(blocker / "relay")
        controller = ProxyController(gateway_config, runner=runner)
        client = TestClient(create_app(controller, catalog), raise_server_exceptions=False)

        resp = client.post("/api/connect", json={"server": SERVER, "configBase64": CLIENT_BLOB})
        assert resp.status_code == 500
        assert resp.headers["content-type"] == "application/json"
        body = resp.json()
        assert body["success"] is False
        assert "relay config" in body["error"]
        session = client.get("/api/status").json()["status"]["session"]
        assert session["mode"] == "direct"
        assert "relay config" in session["error"]
        assert runner.tunnel_running is False


class TestCatalogRoutes:
    def test_servers(self, client):
        body = client.get("/api/servers").json()
        assert body["success"] is True
        assert body["totalServers"] == 6
        assert body["groups"][0]["countryShort"] == "JP"
        assert body["groups"][0]["servers"][0]["uptimeDays"] == 1

    def test_forced_refresh_rate_limited(self, client):
        client.get("/api/servers", params={"refresh": "true"})
        body = client.get("/api/servers", params={"refresh": "true"}).json()
        assert body["rateLimited"] is True
        assert body["fromCache"] is True
        assert body["message"]

    def test_fetch_failure(self, controller, gateway_config):
        def failing():
            raise FetchError("Catalog returned HTTP 503")

        catalog = EndpointCatalog(gateway_config, fetcher=failing)
        resp = TestClient(create_app(controller, catalog)).get("/api/servers")
        assert resp.status_code == 502
        assert resp.json() == {"success": False, "error": "Catalog returned HTTP 503"}

    def test_cache_status(self, client):
        client.get("/api/servers")
        body = client.get("/api/cache-status").json()
        assert body["hasCachedData"] is True
        assert body["totalFetches"] == 1


class TestClientRoutes:
    def test_block_unblock(self, client):
        resp = client.post("/api/block", json={"ip": "203.0.113.5"})
        assert resp.json() == {"success": True, "ip": "203.0.113.5"}
        assert client.get("/api/blacklist").json()["blacklist"] == ["203.0.113.5"]

        client.post("/api/unblock", json={"ip": "203.0.113.5"})
        assert client.get("/api/blacklist").json()["blacklist"] == []

    def test_block_invalid_ip(self, client):
        resp = client.post("/api/block", json={"ip": "nope"})
        assert resp.status_code == 400
        assert "Invalid IP" in resp.json()["error"]

    def test_block_persist_failure(self, runner, gateway_config, catalog, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        gateway_config.blacklist_path = str(blocker / "blacklist.json")
        controller = ProxyController(gateway_config, runner=runner)
        client = TestClient(create_app(controller, catalog), raise_server_exceptions=False)

        resp = client.post("/api/block", json={"ip": "203.0.113.5"})
        assert resp.status_code == 500
        assert resp.json()["success"] is False
        assert "persist" in resp.json()["error"]
        assert runner.drop_rules == set()

    def test_connections(self, client, runner):
        runner.on("ss -tn", stdout="header\n0 0 10.0.0.2:1080 192.168.1.9:5000\n")
        body = client.get("/api/connections").json()
        assert body["count"] == 1
        assert body["clients"] == [{"ip": "192.168.1.9", "connections": 1}]

    def test_socks5_config(self, client):
        body = client.get("/api/socks5-config").json()
        assert body["config"] == {"port": 1080, "tunnelPort": 1081, "user": "s5user", "pass": "secret"}


class TestErrorMapping:
    def test_status_code_from_error(self, catalog):
        controller = MagicMock()
        controller.disconnect.side_effect = TunnelTimeout("stuck")
        resp = TestClient(create_app(controller, catalog)).post("/api/disconnect")
        assert resp.status_code == 504

    def test_base_error_is_500(self, catalog):
        controller = MagicMock()
        controller.status.side_effect = GatewayError("broken")
        resp = TestClient(create_app(controller, catalog)).get("/api/status")
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "broken"}

    def test_unexpected_error_keeps_envelope(self, catalog):
        controller = MagicMock()
        controller.status.side_effect = RuntimeError("kaboom")
        client = TestClient(create_app(controller, catalog), raise_server_exceptions=False)
        resp = client.get("/api/status")
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Internal error: kaboom"}
