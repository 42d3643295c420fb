# tests/conftest.py
import os
import sqlite3
import sys
import uuid
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is importable so `from packhouse...` works
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Minimal env for the app during tests
os.environ.setdefault("API_KEY", "test-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# DATETIME2 columns round-trip as ISO text on sqlite
sqlite3.register_adapter(datetime, lambda d: d.isoformat(timespec="microseconds"))


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Seed:
    """Writes the external rows (orders, picked lines) the packaging core reads."""

    def __init__(self, conn):
        self.conn = conn
        self._n = 0

    def order(
        self,
        order_id=None,
        customer_name="Acme Ltd",
        ship_to_address="1 Main Rd, Durban",
        order_status="completed",
        completed_at=None,
        packaging_deleted=False,
    ) -> str:
        self._n += 1
        order_id = order_id or f"ORD-{self._n}"
        self.conn.execute(
            "INSERT INTO customer_orders (order_id, order_number, customer_name, ship_to_address, "
            "order_status, completed_at, packaging_deleted) VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                order_id,
                f"SO{1000 + self._n}",
                customer_name,
                ship_to_address,
                order_status,
                completed_at or datetime(2026, 1, 1) + timedelta(minutes=self._n),
                packaging_deleted,
            ],
        )
        self.conn.commit()
        return order_id

    def line(self, order_id, sku, picked, barcode=None, item_name=None) -> str:
        line_id = str(uuid.uuid4())
        self.conn.execute(
            "INSERT INTO picklist (id, order_id, sku, item_name, barcode, quantity_picked) VALUES (?, ?, ?, ?, ?, ?)",
            [line_id, order_id, sku, item_name or f"Item {sku}", barcode or sku, picked],
        )
        self.conn.commit()
        return line_id


@pytest.fixture()
def conn():
    from packhouse.schema import create_schema

    c = sqlite3.connect(":memory:", check_same_thread=False)
    create_schema(c)
    yield c
    c.close()


@pytest.fixture()
def store(conn):
    from packhouse.db import Store

    return Store(connect=lambda: conn, errors=(sqlite3.Error,), release=lambda c: None)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def services(store, clock):
    from packhouse.cache import ResultCache
    from packhouse.services.bundle import build_services

    return build_services(
        store,
        cache=ResultCache(10, 5.0, clock=clock, name="packaging"),
        shipment_cache=ResultCache(10, 120.0, clock=clock, name="shipments"),
    )


@pytest.fixture()
def seed(conn):
    return Seed(conn)


@pytest.fixture()
def packed_session(services, seed):
    """Build a completed session for a fresh order with ``cartons`` sealed boxes."""

    def _build(customer_name="Acme Ltd", cartons=1, complete=True):
        from packhouse.models import BoxConfiguration

        order_id = seed.order(customer_name=customer_name)
        line_id = seed.line(order_id, f"SKU-{order_id}", picked=cartons * 2)
        session = services.sessions.create(order_id, [BoxConfiguration(quantity=cartons)], "Thandi")
        for i in range(cartons):
            box = services.cartons.current_open(session.id)
            services.ledger.add_item(box.id, line_id, 2, "Thandi", session.id)
            services.cartons.seal(box.id, 4.5, "Thandi")
            if i < cartons - 1:
                services.cartons.open_next(session.id)
        if complete:
            session = services.sessions.complete(session.id)
        return session

    return _build


@pytest.fixture(scope="session")
def app_instance():
    # Import after sys.path is prepared
    from packhouse.main import app
    return app


@pytest.fixture()
def client(app_instance, services):
    from packhouse import deps

    app_instance.dependency_overrides[deps.get_services] = lambda: services
    yield TestClient(app_instance)
    app_instance.dependency_overrides.clear()
