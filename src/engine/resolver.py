"""
Column resolution -- binds loosely-named fields onto catalog columns.

Order (first hit wins):
  1. exact, case-insensitive match on column id
  2. alias table (hint stripped to letters)
  3. fuzzy label containment in either direction

A miss returns ``None``; callers treat that as "no safe binding" and block
execution rather than guess.
"""
from __future__ import annotations

import re
from typing import Iterable, Sequence

from src.catalog.loader import Column

_NON_LETTERS = re.compile(r"[^a-z]")

# normalised hint → canonical column id
_ALIASES: dict[str, str] = {
    # products
    "product": "item_description",
    "products": "item_description",
    "productdescription": "item_description",
    "description": "item_description",
    "itemdescription": "item_description",
    "item": "item_description",
    "items": "item_description",
    "category": "item_description",
    "categories": "item_description",
    # money
    "cost": "cost",
    "costs": "cost",
    "carrierpay": "cost",
    "carriercost": "cost",
    "retail": "retail",
    "revenue": "retail",
    "charge": "retail",
    "charges": "retail",
    "price": "retail",
    # geography
    "state": "origin_state",
    "states": "origin_state",
    "origin": "origin_state",
    "originstate": "origin_state",
    "fromstate": "origin_state",
    "location": "origin_state",
    "destination": "dest_state",
    "dest": "dest_state",
    "deststate": "dest_state",
    "tostate": "dest_state",
    # carrier / mode / customer
    "carrier": "carrier_name",
    "carriers": "carrier_name",
    "carriername": "carrier_name",
    "mode": "mode_name",
    "modes": "mode_name",
    "modename": "mode_name",
    "shipmentmode": "mode_name",
    "customer": "customer_name",
    "customername": "customer_name",
    # time
    "date": "pickup_date",
    "day": "pickup_date",
    "pickupdate": "pickup_date",
    "shipdate": "pickup_date",
    "month": "pickup_month",
    "week": "pickup_week",
    # measures
    "weight": "weight",
    "totalweight": "weight",
    "miles": "miles",
    "mileage": "miles",
    "distance": "miles",
    "shipments": "load_id",
    "shipment": "load_id",
    "loads": "load_id",
    "volume": "load_id",
    "count": "load_id",
    "transit": "transit_days",
    "claims": "claim_count",
    "margin": "margin",
}


def normalize_hint(hint: str) -> str:
    return _NON_LETTERS.sub("", hint.lower())


def resolve(hint: str | None, catalog: Sequence[Column]) -> Column | None:
    """Map *hint* onto a column of *catalog*, or ``None`` on a total miss."""
    if not hint or not hint.strip():
        return None
    hint_lower = hint.strip().lower()

    for col in catalog:
        if col.id.lower() == hint_lower:
            return col

    canonical = _ALIASES.get(normalize_hint(hint))
    if canonical is not None:
        for col in catalog:
            if col.id == canonical:
                return col

    for col in catalog:
        label = col.label.lower()
        if hint_lower in label or label in hint_lower:
            return col

    return None


def resolve_first(hints: Iterable[str], catalog: Sequence[Column]) -> Column | None:
    """First hint that resolves (candidate lists, e.g. ``cost`` → ``retail``)."""
    for hint in hints:
        col = resolve(hint, catalog)
        if col is not None:
            return col
    return None
