"""nexthop — Prometheus HTTP service discovery for default gateways.

Exposes:
  GET  /         — ``[{"targets": [...]}]`` for ``http_sd_configs``
  GET  /metrics  — Prometheus metrics
  GET  /health   — liveness check

Start with::

    python -m nexthop --port 9198
    # or
    uvicorn --factory nexthop.server:create_app_from_env --host :: --port 9198
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware
from pydantic import BaseModel

from nexthop import __version__
from nexthop.config import NexthopConfig
from nexthop.gateways import FAMILIES, GatewayResolver
from nexthop.metrics import NexthopMetrics, RequestMetricsMiddleware
from nexthop.scheduler import TargetScheduler
from nexthop.targets import TargetStore

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────
# Response models
# ──────────────────────────────────────────────────────────────────

class TargetGroup(BaseModel):
    targets: list[str]


class HealthStatus(BaseModel):
    status: str
    targets: int
    scheduler_running: bool
    last_poll: str | None = None


# ──────────────────────────────────────────────────────────────────
# FastAPI app
# ──────────────────────────────────────────────────────────────────

def create_app(
    config: NexthopConfig | None = None,
    store: TargetStore | None = None,
    resolver: GatewayResolver | None = None,
    metrics: NexthopMetrics | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Wire a store, resolver and scheduler into a FastAPI app.

    With *start_scheduler* the lifespan first checks that a netlink route
    socket can be opened (failure aborts startup), then runs the poll and
    purge loops until shutdown.
    """
    if config is None:
        config = NexthopConfig()
    if store is None:
        store = TargetStore()
    if resolver is None:
        resolver = GatewayResolver()
    if metrics is None:
        metrics = NexthopMetrics()

    scheduler = TargetScheduler(
        store,
        resolver,
        poll_interval_minutes=config.poll_interval_minutes,
        purge_interval_minutes=config.purge_interval_minutes,
        resolve_timeout=config.resolve_timeout,
        metrics=metrics,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            await asyncio.to_thread(resolver.check_connection)
            await scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()

    app = FastAPI(title="nexthop", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.store = store
    app.state.scheduler = scheduler
    app.state.metrics = metrics

    app.add_middleware(RequestMetricsMiddleware, metrics=metrics)
    app.add_middleware(GZipMiddleware)

    @app.get("/", response_model=list[TargetGroup])
    async def serve_targets():
        # Prometheus http_sd expects a JSON array of target groups
        return [TargetGroup(targets=store.snapshot())]

    @app.get("/metrics", include_in_schema=False)
    async def serve_metrics():
        metrics.targets.set(len(store))
        return metrics.render()

    @app.get("/health", response_model=HealthStatus)
    async def health():
        return HealthStatus(
            status="ok",
            targets=len(store),
            scheduler_running=scheduler.running,
            last_poll=scheduler.last_poll,
        )

    return app


def create_app_from_env() -> FastAPI:
    """App factory for ``uvicorn --factory``; reads ``NEXTHOP_*`` at startup, not import."""
    return create_app(NexthopConfig.from_env())


# ──────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────

def build_parser(defaults: NexthopConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nexthop",
        description="Prometheus HTTP service discovery for the host's default gateways",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--target-poll-interval",
        type=int,
        metavar="MINUTES",
        default=defaults.poll_interval_minutes,
        help="Target poll interval in minutes (default: %(default)s)",
    )
    parser.add_argument(
        "--target-purge-interval",
        type=int,
        metavar="MINUTES",
        default=defaults.purge_interval_minutes,
        help="Target purge interval in minutes (default: %(default)s)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=defaults.port,
        help="Port to listen on (default: %(default)s)",
    )
    parser.add_argument(
        "--host",
        default=defaults.host,
        help="Address to bind (default: %(default)s)",
    )
    parser.add_argument(
        "--resolve-timeout",
        type=float,
        metavar="SECONDS",
        default=defaults.resolve_timeout,
        help="Timeout for a single gateway lookup (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        default=defaults.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Resolve the gateways once, print the target list and exit",
    )
    return parser


def parse_config(argv: list[str] | None = None) -> tuple[NexthopConfig, argparse.Namespace]:
    try:
        defaults = NexthopConfig.from_env()
    except ValueError as exc:
        build_parser(NexthopConfig()).error(str(exc))
    parser = build_parser(defaults)
    args = parser.parse_args(argv)
    try:
        config = NexthopConfig(
            host=args.host,
            port=args.port,
            poll_interval_minutes=args.target_poll_interval,
            purge_interval_minutes=args.target_purge_interval,
            resolve_timeout=args.resolve_timeout,
            log_level=args.log_level,
        )
    except ValueError as exc:
        parser.error(str(exc))
    return config, args


def main(argv: list[str] | None = None) -> None:
    config, args = parse_config(argv)
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.once:
        resolved = GatewayResolver().resolve_all(FAMILIES)
        targets = [gw for gw in resolved.values() if gw is not None]
        json.dump([{"targets": targets}], sys.stdout)
        sys.stdout.write("\n")
        return

    import uvicorn

    logger.info("Starting nexthop server at %s", config.bind_address)
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
