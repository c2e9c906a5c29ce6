"""Pytest configuration for s5gate tests."""

import sys
import threading
from pathlib import Path

import pytest

# Ensure src/s5gate is importable
src_path = str(Path(__file__).parent.parent / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from s5gate.config import GatewayConfig  # noqa: E402
from s5gate.errors import ProcessSpawnError  # noqa: E402
from s5gate.system.executor import CommandResult  # noqa: E402

ROUTE_DEFAULT = "default via 172.17.0.1 dev eth0 \n"
ADDR_ETH0 = (
    "2: eth0    inet 172.17.0.2/16 brd 172.17.255.255 scope global eth0\\"
    "       valid_lft forever preferred_lft forever\n"
)
RULES_BASE = "0:\tfrom all lookup local\n32766:\tfrom all lookup main\n32767:\tfrom all lookup default\n"
GETENT_CATALOG = "130.158.6.51    www.vpngate.net\n"


class FakeRunner:
    """Stands in for CommandRunner and simulates a small Linux host.

    Tracks whether the tunnel client is running, which iptables DROP
    rules exist and which policy rules were added. ``on()`` scripts a
    fixed result for any command line starting with a prefix and takes
    precedence over the simulation.
    """

    def __init__(self):
        self.calls = []
        self.spawned = []
        self.tunnel_running = False
        self.link_comes_up = True
        self.spawn_error = None
        self.drop_rules = set()
        self.policy_rules = []
        self._rules = []
        self._lock = threading.Lock()

    # -- scripting --------------------------------------------------------
    def on(self, prefix, stdout="", exit_code=0, stderr="", handler=None):
        self._rules.insert(0, (prefix, handler, stdout, exit_code, stderr))
        return self

    def ran(self, prefix):
        return [c for c in self.calls if c.startswith(prefix)]

    # -- CommandRunner interface -----------------------------------------
    def run(self, command, args=(), timeout=None):
        line = " ".join([command, *args])
        with self._lock:
            self.calls.append(line)
        for prefix, handler, stdout, exit_code, stderr in self._rules:
            if line.startswith(prefix):
                if handler is not None:
                    return handler(line)
                return CommandResult(command=line, stdout=stdout, stderr=stderr, exit_code=exit_code)
        return self._simulate(command, list(args), line)

    def spawn_detached(self, command, args=()):
        line = " ".join([command, *args])
        with self._lock:
            self.spawned.append(line)
        if self.spawn_error is not None:
            raise ProcessSpawnError(self.spawn_error)
        if command == "openvpn":
            self.tunnel_running = True
        return 4242

    # -- host simulation --------------------------------------------------
    def _ok(self, line, stdout=""):
        return CommandResult(command=line, stdout=stdout, exit_code=0)

    def _fail(self, line, exit_code=1):
        return CommandResult(command=line, exit_code=exit_code)

    def _simulate(self, command, args, line):
        if line == "ip route show default":
            return self._ok(line, ROUTE_DEFAULT)
        if line.startswith("ip -4 -o addr show dev"):
            return self._ok(line, ADDR_ETH0)
        if line == "ip rule show":
            extra = "".join(f"100:\tfrom {src} lookup {table}\n" for src, table in self.policy_rules)
            return self._ok(line, RULES_BASE + extra)
        if line.startswith("ip rule add"):
            self.policy_rules.append((args[3], args[5]))
            return self._ok(line)
        if line.startswith("ip link show"):
            up = self.tunnel_running and self.link_comes_up
            return self._ok(line) if up else self._fail(line)
        if line.startswith("getent hosts"):
            return self._ok(line, GETENT_CATALOG)
        if line == "pgrep -x openvpn":
            return self._ok(line, "4242\n") if self.tunnel_running else self._fail(line)
        if line == "pkill -SIGTERM -x openvpn":
            was_running = self.tunnel_running
            self.tunnel_running = False
            return self._ok(line) if was_running else self._fail(line)
        if command == "iptables":
            action, rule = args[0], (args[3], args[7])
            if action == "-C":
                return self._ok(line) if rule in self.drop_rules else self._fail(line)
            if action == "-A":
                self.drop_rules.add(rule)
            elif action == "-D":
                self.drop_rules.discard(rule)
            return self._ok(line)
        return self._ok(line)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def gateway_config(tmp_path):
    """Config with tmp paths and no real waiting."""
    return GatewayConfig(
        socks5_port=1080,
        tunnel_socks5_port=1081,
        socks5_user="s5user",
        socks5_pass="secret",
        default_interface="eth0",
        web_port=8080,
        home_country="JP",
        tunnel_connect_attempts=3,
        tunnel_poll_interval=0.0,
        tunnel_stop_grace=0.0,
        relay_settle_delay=0.0,
        relay_startup_delay=0.0,
        tunnel_config_path=str(tmp_path / "openvpn" / "client.ovpn"),
        relay_template_path=str(tmp_path / "danted.template.conf"),
        relay_config_dir=str(tmp_path / "relay"),
        blacklist_path=str(tmp_path / "state" / "blacklist.json"),
        log_dir=str(tmp_path / "logs"),
    )
