"""nexthop — publish the host's default gateways as Prometheus scrape targets.

Quickstart::

    from nexthop.targets import TargetStore
    from nexthop.gateways import GatewayResolver
    from nexthop.scheduler import TargetScheduler

    store = TargetStore()
    scheduler = TargetScheduler(store, GatewayResolver())
    await scheduler.start()
    store.snapshot()   # ["192.0.2.1", "fe80::1%2"]
"""

__version__ = "1.0.0"
