"""nexthop.gateways — default gateway discovery from the kernel routing table.

Exports:
    GatewayResolver    — netlink route dump → default gateway string
    GatewayQueryError  — the route query itself failed
    FAMILIES           — address families polled (AF_INET, AF_INET6)
"""

from __future__ import annotations

from nexthop.gateways.resolver import (
    FAMILIES,
    GatewayQueryError,
    GatewayResolver,
    family_name,
)

__all__ = [
    "FAMILIES",
    "GatewayQueryError",
    "GatewayResolver",
    "family_name",
]
