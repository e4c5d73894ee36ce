"""
Shared fixtures: a small shipment / line-item data set, an in-memory backend
over it, and a QueryEngine wired to both.
"""
import datetime

import pytest

from src.backend.memory import MemoryBackend
from src.catalog.loader import load_catalog
from src.core.config import Settings
from src.engine.cache import QueryCache
from src.engine.service import QueryEngine

TODAY = datetime.date(2025, 6, 30)


def _item(load_id, description, state, retail, pickup, customer_id=1, carrier="Saia", weight=500):
    return {
        "load_id": load_id,
        "description": description,
        "origin_state": state,
        "dest_state": "GA",
        "retail": retail,
        "cost": round(retail * 0.8, 2),
        "weight": weight,
        "carrier_name": carrier,
        "mode_name": "LTL",
        "pickup_date": pickup,
        "pickup_month": pickup[:7],
        "customer_id": customer_id,
    }


ITEMS = [
    _item(1, "Drawer System 48in", "TX", 100.0, "2025-06-10"),
    _item(2, "Drawer System 48in", "CA", 200.0, "2025-06-11"),
    _item(3, "Drawer System 60in", "TX", 300.0, "2025-06-12", customer_id=2),
    _item(4, "CargoGlide 1000", "TX", 50.0, "2025-06-15"),
    _item(5, "CargoGlide 1500 HD", "CA", 70.0, "2025-06-20", carrier="Estes Express"),
    _item(6, "Tool Box Crossover", "TX", 40.0, "2025-06-25", customer_id=2),
    _item(7, "Tool Box Low Profile", "CA", 999.0, "2025-01-05"),
]

SHIPMENTS = [
    {k: v for k, v in item.items() if k != "description"}
    for item in ITEMS
]


@pytest.fixture
def items():
    return [dict(item) for item in ITEMS]


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def catalog():
    return load_catalog()


@pytest.fixture
def settings():
    return Settings(
        default_date_range_days=30,
        default_limit=100,
        max_limit=200,
        fan_out_threshold=2,
        max_concurrency=1,
        cache_ttl_seconds=60,
    )


@pytest.fixture
def backend():
    return MemoryBackend({"shipment": SHIPMENTS, "shipment_item": ITEMS})


@pytest.fixture
def engine(backend, catalog, settings):
    return QueryEngine(backend=backend, cache=QueryCache(ttl=60), catalog=catalog, settings=settings)
