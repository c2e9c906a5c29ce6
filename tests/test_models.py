# S5Gate
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for the shared data model."""

import dataclasses
from datetime import datetime, timezone

import pytest

from s5gate.errors import GatewayError, InvalidServer
from s5gate.models import CountryGroup, Endpoint, Mode, ServerRef, SessionState


class TestEndpoint:
    def test_to_dict_keys(self):
        data = Endpoint(host_name="a", ip="1.1.1.1", speed_bps=12_345_678,
                        uptime_millis=90_000_000, config_blob="eA==").to_dict()
        assert data["hostName"] == "a"
        assert data["speedMbps"] == "12.35"
        assert data["uptimeDays"] == 1
        assert data["uptimeHours"] == 1
        assert data["configBase64"] == "eA=="

    def test_default_ping_unreachable(self):
        assert Endpoint(host_name="a", ip="1.1.1.1").ping == 9999


class TestServerRef:
    def test_from_camel_mapping(self):
        ref = ServerRef.coerce({"hostName": "a", "ip": "1.1.1.1", "countryShort": "JP", "uptimeDays": "2"})
        assert ref == ServerRef(host_name="a", ip="1.1.1.1", country_short="JP", uptime_days=2)

    def test_from_snake_mapping(self):
        ref = ServerRef.coerce({"host_name": "a", "ip": "1.1.1.1", "country_long": "Japan"})
        assert ref.host_name == "a"
        assert ref.country_long == "Japan"

    def test_identity(self):
        ref = ServerRef(host_name="a", ip="1.1.1.1")
        assert ServerRef.coerce(ref) is ref

    def test_rejects_other_types(self):
        with pytest.raises(InvalidServer):
            ServerRef.coerce("public-vpn-1")

    def test_non_numeric_uptime_is_a_bad_request(self):
        with pytest.raises(InvalidServer, match="uptime") as info:
            ServerRef.coerce({"hostName": "a", "ip": "1.1.1.1", "uptimeDays": "abc"})
        assert isinstance(info.value, GatewayError)
        assert info.value.status_code == 400

    def test_unconvertible_uptime_hours(self):
        with pytest.raises(InvalidServer):
            ServerRef.coerce({"hostName": "a", "ip": "1.1.1.1", "uptimeHours": [1]})

    def test_snapshot_is_independent_of_endpoint(self):
        endpoint = Endpoint(host_name="a", ip="1.1.1.1", country_long="Japan")
        ref = ServerRef.coerce(endpoint)
        assert dataclasses.replace(endpoint, country_long="Elsewhere").country_long == "Elsewhere"
        assert ref.country_long == "Japan"


class TestSessionState:
    def test_default_is_direct(self):
        assert SessionState().to_dict() == {
            "mode": "direct", "server": None, "connectedAt": None, "error": None,
        }

    def test_tunneled(self):
        when = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        state = SessionState(
            mode=Mode.TUNNELED,
            active_server=ServerRef(host_name="a", ip="1.1.1.1"),
            connected_at=when,
        )
        data = state.to_dict()
        assert data["mode"] == "tunneled"
        assert data["server"]["ip"] == "1.1.1.1"
        assert data["connectedAt"] == "2025-01-02T03:04:05+00:00"


def test_country_group_to_dict():
    group = CountryGroup("Japan", "JP", [Endpoint(host_name="a", ip="1.1.1.1")])
    data = group.to_dict()
    assert data["countryShort"] == "JP"
    assert [s["hostName"] for s in data["servers"]] == ["a"]


class TestCountryGroup:
    def test_servers_stored_as_tuple(self):
        members = [Endpoint(host_name="a", ip="1.1.1.1")]
        group = CountryGroup("Japan", "JP", members)
        members.append(Endpoint(host_name="b", ip="1.1.1.2"))
        assert group.servers == (Endpoint(host_name="a", ip="1.1.1.1"),)

    def test_group_and_endpoints_are_immutable(self):
        group = CountryGroup("Japan", "JP", [Endpoint(host_name="a", ip="1.1.1.1")])
        with pytest.raises(dataclasses.FrozenInstanceError):
            group.servers = ()
        with pytest.raises(dataclasses.FrozenInstanceError):
            group.servers[0].ping = 1
