# tests/test_bundle.py
from packhouse.cache import ResultCache
from packhouse.services.bundle import build_services


def test_injected_empty_caches_are_used(store, clock):
    cache = ResultCache(10, 5.0, clock=clock, name="packaging")
    shipment_cache = ResultCache(10, 120.0, clock=clock, name="shipments")
    assert len(cache) == 0

    services = build_services(store, cache=cache, shipment_cache=shipment_cache)

    assert services.cache is cache
    assert services.shipment_cache is shipment_cache
    assert services.ledger.cache is cache
    assert services.shipments.cache is shipment_cache


def test_default_caches_are_built(store):
    services = build_services(store)
    assert isinstance(services.cache, ResultCache)
    assert services.shipment_cache is not services.cache
