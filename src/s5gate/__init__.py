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
"""
S5Gate -- SOCKS5 gateway with switchable VPN egress.

Keeps a SOCKS5 relay reachable on a fixed port while the outbound path
flips between the host's own interface and a tunnel to a public VPN node.
"""

__version__ = "1.2.0"
__author__ = "Phoenix Link (Pty) Ltd"
