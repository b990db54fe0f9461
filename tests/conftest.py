"""pytest configuration for nexthop tests."""

from __future__ import annotations

import socket

import pytest


def route(family=socket.AF_INET, dst_len=0, gateway=None, oif=None, scope=0, table=254):
    """Build a pyroute2-shaped route message (dict with an ``attrs`` list)."""
    attrs = [("RTA_TABLE", table)]
    if gateway is not None:
        attrs.append(("RTA_GATEWAY", gateway))
    if oif is not None:
        attrs.append(("RTA_OIF", oif))
    return {
        "family": family,
        "dst_len": dst_len,
        "table": table,
        "scope": scope,
        "attrs": attrs,
    }


class FakeIPRoute:
    """Stands in for ``pyroute2.IPRoute``: yields canned routes lazily.

    *fail_after* makes the route stream raise ``OSError`` after that many
    messages, mimicking a socket error mid-dump.
    """

    def __init__(self, routes=None, fail_after=None, open_error=None):
        self.routes = routes or []
        self.fail_after = fail_after
        self.open_error = open_error
        self.queries = []
        self.opened = 0
        self.closed = 0
        self.consumed = 0

    def __call__(self):
        if self.open_error is not None:
            raise self.open_error
        return self

    def __enter__(self):
        self.opened += 1
        return self

    def __exit__(self, *exc):
        self.closed += 1
        return False

    def get_routes(self, family, table):
        self.queries.append((family, table))
        return self._stream(family, table)

    def _stream(self, family, table):
        for i, msg in enumerate(self.routes):
            if self.fail_after is not None and i >= self.fail_after:
                raise OSError("netlink socket closed")
            if msg["family"] != family or msg["table"] != table:
                continue
            self.consumed += 1
            yield msg
        if self.fail_after is not None and self.fail_after >= len(self.routes):
            raise OSError("netlink socket closed")


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
