"""Tests for the HTTP surface — target list, metrics and health."""

from __future__ import annotations

import socket
import time

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from conftest import FakeIPRoute, route
from nexthop.config import NexthopConfig
from nexthop.gateways import GatewayQueryError, GatewayResolver
from nexthop.metrics import NexthopMetrics
from nexthop.server import create_app, create_app_from_env
from nexthop.targets import TargetStore


@pytest.fixture
def store():
    return TargetStore()


@pytest.fixture
def app(store):
    return create_app(store=store, resolver=GatewayResolver(FakeIPRoute()), start_scheduler=False)


async def _get(app, path, **kwargs):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.get(path, **kwargs)


class TestAppWiring:
    def test_injected_empty_store_is_kept(self):
        store = TargetStore()
        app = create_app(store=store, start_scheduler=False)
        assert app.state.store is store
        assert app.state.scheduler.store is store

    def test_injected_resolver_and_metrics_are_kept(self):
        resolver = GatewayResolver(FakeIPRoute())
        metrics = NexthopMetrics()
        app = create_app(resolver=resolver, metrics=metrics, start_scheduler=False)
        assert app.state.scheduler.resolver is resolver
        assert app.state.metrics is metrics

    async def test_fixture_app_reads_fixture_store(self, app, store):
        assert app.state.store is store
        store.upsert("192.0.2.7")
        resp = await _get(app, "/")
        assert resp.json() == [{"targets": ["192.0.2.7"]}]

    def test_factory_reads_env(self, monkeypatch):
        monkeypatch.setenv("NEXTHOP_POLL_INTERVAL", "7")
        app = create_app_from_env()
        assert app.state.config.poll_interval_minutes == 7


class TestTargets:
    async def test_empty_list(self, app):
        resp = await _get(app, "/")
        assert resp.status_code == 200
        assert resp.json() == [{"targets": []}]

    async def test_lists_store_contents(self, app, store):
        store.upsert("203.0.113.1")
        store.upsert("2001:db8::1%3")
        resp = await _get(app, "/")
        body = resp.json()
        assert len(body) == 1
        assert sorted(body[0]["targets"]) == ["2001:db8::1%3", "203.0.113.1"]


class TestMetrics:
    async def test_exposition_format(self, app, store):
        store.upsert("203.0.113.1")
        await _get(app, "/")
        resp = await _get(app, "/metrics")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert "nexthop_targets 1.0" in resp.text
        assert 'http_requests_total{method="GET",path="/",status="200"} 1.0' in resp.text

    async def test_gzip_when_accepted(self, app):
        await _get(app, "/")
        resp = await _get(app, "/metrics", headers={"Accept-Encoding": "gzip"})
        assert resp.headers.get("content-encoding") == "gzip"
        assert "http_requests_duration_seconds" in resp.text

    async def test_separate_apps_do_not_share_registry(self):
        first = create_app(start_scheduler=False)
        second = create_app(start_scheduler=False)
        assert first.state.metrics.registry is not second.state.metrics.registry


class TestHealth:
    async def test_health(self, app, store):
        store.upsert("203.0.113.1")
        resp = await _get(app, "/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["targets"] == 1
        assert data["scheduler_running"] is False
        assert data["last_poll"] is None


class TestLifespan:
    def test_scheduler_runs_during_lifespan(self):
        fake = FakeIPRoute([route(socket.AF_INET, 0, gateway="198.51.100.1")])
        store = TargetStore()
        app = create_app(
            NexthopConfig(poll_interval_minutes=1),
            store=store,
            resolver=GatewayResolver(fake),
        )
        assert app.state.store is store
        with TestClient(app) as client:
            scheduler = app.state.scheduler
            assert scheduler.running is True
            for _ in range(100):
                if store.snapshot():
                    break
                time.sleep(0.01)
            assert client.get("/").json() == [{"targets": ["198.51.100.1"]}]
        assert app.state.scheduler.running is False

    def test_unreachable_netlink_is_fatal(self):
        fake = FakeIPRoute(open_error=OSError("Address family not supported by protocol"))
        app = create_app(resolver=GatewayResolver(fake))
        with pytest.raises(GatewayQueryError):
            with TestClient(app):
                pass
