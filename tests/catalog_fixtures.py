# S5Gate
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Builders for catalog payloads used across tests."""

import base64

CLIENT_CONFIG = "client\ndev tun\nproto udp\nremote 1.2.3.4 1194\n"
CLIENT_BLOB = base64.b64encode(CLIENT_CONFIG.encode()).decode()

HEADER = (
    "#HostName,IP,Score,Ping,Speed,CountryLong,CountryShort,NumVpnSessions,"
    "Uptime,TotalUsers,TotalTraffic,LogType,Operator,Message,OpenVPN_ConfigData_Base64"
)


def row(host, ip, country_long, country_short, uptime=3_600_000, blob=CLIENT_BLOB, ping="20"):
    return ",".join([
        host, ip, "100", ping, "45000000", country_long, country_short,
        "5", str(uptime), "1000", "99999", "2weeks", "op", "msg", blob,
    ])


def payload(*rows):
    return "\n".join(["*vpn_servers", HEADER, *rows, "*", ""])


SAMPLE = payload(
    row("public-vpn-1", "1.1.1.1", "Japan", "JP", uptime=90_000_000),
    row("public-vpn-2", "1.1.1.2", "Japan", "JP", uptime=1_000),
    row("kr-1", "2.2.2.1", "Korea Republic of", "KR"),
    row("kr-2", "2.2.2.2", "Korea Republic of", "KR"),
    row("kr-3", "2.2.2.3", "Korea Republic of", "KR"),
    row("us-1", "3.3.3.1", "United States", "US"),
)
