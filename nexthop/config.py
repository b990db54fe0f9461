"""Configuration for the nexthop service discovery server."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9198


def _env_number(name: str, cast):
    raw = os.environ[name]
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class NexthopConfig:
    """Server configuration — defaults, overridable from env or the command line."""

    host: str = "::"
    port: int = DEFAULT_PORT

    # Scheduling (minutes)
    poll_interval_minutes: int = 1
    purge_interval_minutes: int = 240

    # Per-family bound on a single route lookup (seconds)
    resolve_timeout: float = 10.0

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.poll_interval_minutes < 1:
            raise ValueError("poll interval must be at least 1 minute")
        if self.purge_interval_minutes < 1:
            raise ValueError("purge interval must be at least 1 minute")
        if not 1 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        if self.resolve_timeout <= 0:
            raise ValueError("resolve timeout must be positive")
        self.log_level = self.log_level.upper()

    @classmethod
    def from_env(cls) -> NexthopConfig:
        """Build a config from ``NEXTHOP_*`` environment variables."""
        kwargs: dict = {}
        if "NEXTHOP_HOST" in os.environ:
            kwargs["host"] = os.environ["NEXTHOP_HOST"]
        if "NEXTHOP_PORT" in os.environ:
            kwargs["port"] = _env_number("NEXTHOP_PORT", int)
        if "NEXTHOP_POLL_INTERVAL" in os.environ:
            kwargs["poll_interval_minutes"] = _env_number("NEXTHOP_POLL_INTERVAL", int)
        if "NEXTHOP_PURGE_INTERVAL" in os.environ:
            kwargs["purge_interval_minutes"] = _env_number("NEXTHOP_PURGE_INTERVAL", int)
        if "NEXTHOP_RESOLVE_TIMEOUT" in os.environ:
            kwargs["resolve_timeout"] = _env_number("NEXTHOP_RESOLVE_TIMEOUT", float)
        if "NEXTHOP_LOG_LEVEL" in os.environ:
            kwargs["log_level"] = os.environ["NEXTHOP_LOG_LEVEL"]
        return cls(**kwargs)

    @property
    def bind_address(self) -> str:
        """``host:port`` with IPv6 hosts bracketed, for log lines."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"
