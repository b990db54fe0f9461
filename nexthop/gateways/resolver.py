"""Default gateway resolver — reads the kernel routing table over netlink.

For each address family the main routing table is dumped and the first
default route (``dst_len == 0``) carrying an ``RTA_GATEWAY`` attribute
wins.  IPv6 gateways are annotated with the outgoing interface index
(``fe80::1%4``) because link-local next hops are only meaningful relative
to an interface.

The netlink socket is opened per query and always closed, so nothing is
carried over between polls.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Any, Callable, Iterable

from pyroute2 import IPRoute, NetlinkError

logger = logging.getLogger(__name__)

MAIN_TABLE = 254
SCOPE_UNIVERSE = 0

FAMILIES: tuple[int, ...] = (socket.AF_INET, socket.AF_INET6)

_FAMILY_NAMES = {
    socket.AF_INET: "ipv4",
    socket.AF_INET6: "ipv6",
}

_FAMILY_VERSIONS = {
    socket.AF_INET: 4,
    socket.AF_INET6: 6,
}


def family_name(family: int) -> str:
    """Return ``"ipv4"`` / ``"ipv6"`` for log lines and metric labels."""
    try:
        return _FAMILY_NAMES[family]
    except KeyError:
        raise ValueError(f"Unsupported address family: {family!r}") from None


class GatewayQueryError(Exception):
    """The route query itself failed (socket error, truncated message, ...).

    Distinct from a successful query that found no default route, which
    :meth:`GatewayResolver.resolve` reports as ``None``.
    """

    def __init__(self, family: int | None, message: str) -> None:
        super().__init__(message)
        self.family = family


def find_attr(route: Any, name: str) -> Any:
    """Linear scan of a route message's attribute list.

    Attributes are ``(name, value)`` pairs as carried by pyroute2 messages.
    Returns ``None`` when *name* is not present.
    """
    for attr in route.get("attrs") or ():
        if attr[0] == name:
            return attr[1]
    return None


def format_gateway(raw: Any, family: int) -> str | None:
    """Canonical text form of a raw gateway value, or ``None`` if unusable.

    Anything that is not an INET/INET6 address of *family* (a nested
    ``RTA_VIA`` structure, an address of the other family, garbage) is
    treated as unresolved.
    """
    if isinstance(raw, (bytes, bytearray)):
        if len(raw) not in (4, 16):
            return None
        raw = bytes(raw)
    elif not isinstance(raw, str):
        return None
    try:
        addr = ipaddress.ip_address(raw)
    except ValueError:
        return None
    if addr.version != _FAMILY_VERSIONS[family]:
        return None
    return str(addr)


class GatewayResolver:
    """Resolve the default gateway for an address family.

    Args:
        iproute_factory: Zero-argument callable returning a pyroute2
            ``IPRoute``-like object (context manager with ``get_routes``).
            Tests inject a fake here.
        table: Routing table to consult (main table by default).
    """

    def __init__(
        self,
        iproute_factory: Callable[[], Any] = IPRoute,
        table: int = MAIN_TABLE,
    ) -> None:
        self._factory = iproute_factory
        self.table = table

    # ------------------------------------------------------------------ #
    # Public API                                                           #
    # ------------------------------------------------------------------ #

    def resolve(self, family: int) -> str | None:
        """Return the default gateway for *family*, or ``None`` if there is none.

        Raises:
            GatewayQueryError: the netlink query could not be opened or read.
        """
        name = family_name(family)
        try:
            with self._factory() as ipr:
                routes = ipr.get_routes(family=family, table=self.table)
                gateway = self._first_gateway(routes, family)
        except (OSError, NetlinkError, ValueError, KeyError, TypeError) as exc:
            raise GatewayQueryError(
                family, f"{name} route query failed: {exc}"
            ) from exc

        if gateway is None:
            logger.debug("No %s default gateway in table %d", name, self.table)
        else:
            logger.debug("Resolved %s default gateway %s", name, gateway)
        return gateway

    def resolve_all(
        self, families: Iterable[int] = FAMILIES
    ) -> dict[int, str | None]:
        """Resolve every family in *families*; failures map to ``None`` and are logged."""
        results: dict[int, str | None] = {}
        for family in families:
            try:
                results[family] = self.resolve(family)
            except GatewayQueryError as exc:
                logger.warning("%s", exc)
                results[family] = None
        return results

    def check_connection(self) -> None:
        """Open and close one netlink socket.

        Raises:
            GatewayQueryError: the kernel routing subsystem is unreachable.
        """
        try:
            with self._factory():
                pass
        except (OSError, NetlinkError) as exc:
            raise GatewayQueryError(
                None, f"cannot open netlink route socket: {exc}"
            ) from exc

    # ------------------------------------------------------------------ #
    # Internal helpers                                                     #
    # ------------------------------------------------------------------ #

    def _first_gateway(self, routes: Iterable[Any], family: int) -> str | None:
        # Consumed lazily; stop reading as soon as a usable record shows up.
        for route in routes:
            if route.get("dst_len") != 0:
                continue
            if route.get("scope", SCOPE_UNIVERSE) != SCOPE_UNIVERSE:
                continue

            raw = find_attr(route, "RTA_GATEWAY")
            if raw is None:
                continue

            gateway = self._format(raw, route, family)
            if gateway is not None:
                return gateway
        return None

    def _format(self, raw: Any, route: Any, family: int) -> str | None:
        gateway = format_gateway(raw, family)
        if gateway is None:
            logger.debug(
                "Skipping default route with unrecognised gateway %r (%s)",
                raw,
                family_name(family),
            )
            return None

        if family == socket.AF_INET6:
            oif = find_attr(route, "RTA_OIF")
            if oif is not None:
                gateway = f"{gateway}%{oif}"
        return gateway
