# S5Gate
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of S5Gate.
#
# S5Gate is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Gateway startup configuration.

Read once at process start from a fixed path on the host. Values missing
from the file fall back to environment variables, then to defaults, so a
container can be configured with env alone.

Config location: /run/s5gate/config.yaml  (override with S5GATE_CONFIG)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("s5gate.config")

# ---------------------------------------------------------------------------
# Default paths
# ---------------------------------------------------------------------------
_S5GATE_HOME = Path(os.environ.get("S5GATE_HOME", "/run/s5gate"))
DEFAULT_CONFIG_PATH = Path(os.environ.get("S5GATE_CONFIG", _S5GATE_HOME / "config.yaml"))

# Upstream node list and the fixed addresses it is served from
DEFAULT_CATALOG_URL = "https://www.vpngate.net/api/iphone/"
DEFAULT_CATALOG_HOSTNAME = "www.vpngate.net"
DEFAULT_CATALOG_BYPASS_HOSTS: tuple[str, ...] = ("130.158.75.44", "130.158.75.45")

PRIVATE_NETWORKS: tuple[str, ...] = ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name) or default


@dataclass
class GatewayConfig:
    """Full gateway configuration.

    Ports, credentials and interfaces are what operators normally touch;
    the timing knobs exist mostly so tests can run without real sleeps.
    """

    # SOCKS5 relay, direct mode (always up) and tunnel mode (only while Tunneled)
    socks5_port: int = field(default_factory=lambda: _env_int("SOCKS5_PORT", 1080))
    tunnel_socks5_port: int = field(default_factory=lambda: _env_int("SOCKS5_TUNNEL_PORT", 1081))
    socks5_user: str = field(default_factory=lambda: _env_str("SOCKS5_USER", "s5user"))
    socks5_pass: str = field(default_factory=lambda: _env_str("SOCKS5_PASS", "changeme"))

    # Interfaces
    default_interface: str = field(default_factory=lambda: _env_str("DEFAULT_INTERFACE", "eth0"))
    tunnel_interface: str = "tun0"

    # Web front-end
    web_host: str = "0.0.0.0"
    web_port: int = field(default_factory=lambda: _env_int("PORT", 8080))

    # Catalog
    home_country: str = field(default_factory=lambda: _env_str("HOME_COUNTRY", "JP"))
    catalog_url: str = DEFAULT_CATALOG_URL
    catalog_hostname: str = DEFAULT_CATALOG_HOSTNAME
    catalog_timeout: float = 30.0
    catalog_ttl: float = 600.0  # 10 minutes
    catalog_min_refresh: float = 120.0  # 2 minutes
    catalog_bypass_hosts: list[str] = field(
        default_factory=lambda: list(DEFAULT_CATALOG_BYPASS_HOSTS)
    )

    # Routing
    private_networks: list[str] = field(default_factory=lambda: list(PRIVATE_NETWORKS))
    policy_table: int = 100

    # Tunnel timing
    tunnel_connect_attempts: int = 30
    tunnel_poll_interval: float = 1.0
    tunnel_stop_grace: float = 2.0

    # Relay timing
    relay_settle_delay: float = 0.5
    relay_startup_delay: float = 0.5

    # Every external command is bounded by this
    command_timeout: float = 10.0

    # Files
    tunnel_config_path: str = "/etc/openvpn/openvpn.ovpn"
    relay_template_path: str = "/etc/danted.template.conf"
    relay_config_dir: str = "/etc"
    blacklist_path: str = str(_S5GATE_HOME / "blacklist.json")
    log_dir: str = str(_S5GATE_HOME / "logs")

    @property
    def direct_relay_config_path(self) -> Path:
        return Path(self.relay_config_dir) / "danted-direct.conf"

    @property
    def tunnel_relay_config_path(self) -> Path:
        return Path(self.relay_config_dir) / "danted-tunnel.conf"

    @property
    def relay_ports(self) -> tuple[int, int]:
        """Both relay ports, direct first."""
        return (self.socks5_port, self.tunnel_socks5_port)

    def relay_credentials(self) -> dict[str, Any]:
        """Connection details handed to SOCKS5 clients."""
        return {
            "port": self.socks5_port,
            "tunnelPort": self.tunnel_socks5_port,
            "user": self.socks5_user,
            "pass": self.socks5_pass,
        }


def load_config(path: Path | str | None = None) -> GatewayConfig:
    """Load gateway configuration from a YAML file.

    If the file does not exist or cannot be parsed, returns the default
    config (environment fallbacks applied).
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.info("No gateway config at %s -- using env/defaults", config_path)
        return GatewayConfig()

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            logger.warning("Invalid gateway config (not a dict) -- using defaults")
            return GatewayConfig()
        return _parse_config(raw)
    except Exception as exc:
        logger.error("Failed to load gateway config: %s -- using defaults", exc)
        return GatewayConfig()


def save_config(config: GatewayConfig, path: Path | str | None = None) -> None:
    """Save gateway configuration to a YAML file."""
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "socks5": {
            "port": config.socks5_port,
            "tunnel_port": config.tunnel_socks5_port,
            "user": config.socks5_user,
            "pass": config.socks5_pass,
        },
        "interfaces": {
            "default": config.default_interface,
            "tunnel": config.tunnel_interface,
        },
        "web": {
            "host": config.web_host,
            "port": config.web_port,
        },
        "catalog": {
            "url": config.catalog_url,
            "hostname": config.catalog_hostname,
            "home_country": config.home_country,
            "timeout": config.catalog_timeout,
            "ttl": config.catalog_ttl,
            "min_refresh": config.catalog_min_refresh,
            "bypass_hosts": config.catalog_bypass_hosts,
        },
        "routing": {
            "private_networks": config.private_networks,
            "policy_table": config.policy_table,
        },
        "tunnel": {
            "config_path": config.tunnel_config_path,
            "connect_attempts": config.tunnel_connect_attempts,
            "poll_interval": config.tunnel_poll_interval,
            "stop_grace": config.tunnel_stop_grace,
        },
        "relay": {
            "template_path": config.relay_template_path,
            "config_dir": config.relay_config_dir,
            "settle_delay": config.relay_settle_delay,
            "startup_delay": config.relay_startup_delay,
        },
        "command_timeout": config.command_timeout,
        "blacklist_path": config.blacklist_path,
        "log_dir": config.log_dir,
    }
    config_path.write_text(
        yaml.dump(data, default_flow_style=False, sort_keys=False), encoding="utf-8"
    )
    logger.info("Saved gateway config to %s", config_path)


def _parse_config(raw: dict) -> GatewayConfig:
    """Parse raw YAML dict into GatewayConfig, keeping defaults for gaps."""
    config = GatewayConfig()

    socks5 = raw.get("socks5", {}) or {}
    config.socks5_port = int(socks5.get("port", config.socks5_port))
    config.tunnel_socks5_port = int(socks5.get("tunnel_port", config.tunnel_socks5_port))
    config.socks5_user = str(socks5.get("user", config.socks5_user))
    config.socks5_pass = str(socks5.get("pass", config.socks5_pass))

    interfaces = raw.get("interfaces", {}) or {}
    config.default_interface = interfaces.get("default", config.default_interface)
    config.tunnel_interface = interfaces.get("tunnel", config.tunnel_interface)

    web = raw.get("web", {}) or {}
    config.web_host = web.get("host", config.web_host)
    config.web_port = int(web.get("port", config.web_port))

    catalog = raw.get("catalog", {}) or {}
    config.catalog_url = catalog.get("url", config.catalog_url)
    config.catalog_hostname = catalog.get("hostname", config.catalog_hostname)
    config.home_country = catalog.get("home_country", config.home_country)
    config.catalog_timeout = float(catalog.get("timeout", config.catalog_timeout))
    config.catalog_ttl = float(catalog.get("ttl", config.catalog_ttl))
    config.catalog_min_refresh = float(catalog.get("min_refresh", config.catalog_min_refresh))
    bypass = catalog.get("bypass_hosts", config.catalog_bypass_hosts)
    if isinstance(bypass, list):
        config.catalog_bypass_hosts = [str(h) for h in bypass if str(h).strip()]

    routing = raw.get("routing", {}) or {}
    networks = routing.get("private_networks", config.private_networks)
    if isinstance(networks, list):
        config.private_networks = [str(n) for n in networks if str(n).strip()]
    config.policy_table = int(routing.get("policy_table", config.policy_table))

    tunnel = raw.get("tunnel", {}) or {}
    config.tunnel_config_path = tunnel.get("config_path", config.tunnel_config_path)
    config.tunnel_connect_attempts = int(
        tunnel.get("connect_attempts", config.tunnel_connect_attempts)
    )
    config.tunnel_poll_interval = float(tunnel.get("poll_interval", config.tunnel_poll_interval))
    config.tunnel_stop_grace = float(tunnel.get("stop_grace", config.tunnel_stop_grace))

    relay = raw.get("relay", {}) or {}
    config.relay_template_path = relay.get("template_path", config.relay_template_path)
    config.relay_config_dir = relay.get("config_dir", config.relay_config_dir)
    config.relay_settle_delay = float(relay.get("settle_delay", config.relay_settle_delay))
    config.relay_startup_delay = float(relay.get("startup_delay", config.relay_startup_delay))

    config.command_timeout = float(raw.get("command_timeout", config.command_timeout))
    config.blacklist_path = raw.get("blacklist_path", config.blacklist_path)
    config.log_dir = raw.get("log_dir", config.log_dir)

    return config
