# packhouse/services/bundle.py

from dataclasses import dataclass
from typing import Optional

from packhouse import config
from packhouse.cache import ResultCache
from packhouse.db import Store
from packhouse.locks import SessionLocks
from packhouse.services.cartons import CartonStateMachine
from packhouse.services.intake import IntakeFilter
from packhouse.services.ledger import ItemLedger
from packhouse.services.sessions import SessionController
from packhouse.services.shipments import ShipmentConsolidator


@dataclass
class ServiceBundle:
    store: Store
    cache: ResultCache
    shipment_cache: ResultCache
    locks: SessionLocks
    cartons: CartonStateMachine
    ledger: ItemLedger
    sessions: SessionController
    intake: IntakeFilter
    shipments: ShipmentConsolidator


def build_services(
    store: Store,
    cache: Optional[ResultCache] = None,
    shipment_cache: Optional[ResultCache] = None,
) -> ServiceBundle:
    """Wire the services around one store, one lock table and two caches.

    Packaging views and shipment listings are cached separately; every
    mutating service clears the caches it can make stale.
    """
    # an empty cache is falsy (__len__), so test identity rather than truth
    if cache is None:
        cache = ResultCache(config.CACHE_MAX_ENTRIES, config.CACHE_TTL, name="packaging")
    if shipment_cache is None:
        shipment_cache = ResultCache(config.CACHE_MAX_ENTRIES, config.SHIPMENT_CACHE_TTL, name="shipments")
    locks = SessionLocks()

    cartons = CartonStateMachine(store, cache, locks)
    return ServiceBundle(
        store=store,
        cache=cache,
        shipment_cache=shipment_cache,
        locks=locks,
        cartons=cartons,
        ledger=ItemLedger(store, cache, locks),
        sessions=SessionController(store, cartons, cache, locks, shipment_cache=shipment_cache),
        intake=IntakeFilter(store),
        shipments=ShipmentConsolidator(store, shipment_cache, locks, packaging_cache=cache),
    )
