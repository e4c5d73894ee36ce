"""
Seed data generator -- creates realistic freight shipments for the
in-memory backend (and optionally a Postgres database).

Generates:
  - ~1 500 shipments across 12 customers and 10 carriers
  - 1-4 line items per shipment, denormalised with their shipment's fields

Writes ``data/sample_shipments.json`` as ``{"shipment": [...],
"shipment_item": [...]}``.  With ``--postgres`` the same rows are also
inserted via SQLAlchemy into the ``shipment`` / ``shipment_item`` tables.

Run:  python -m pipelines.seed.seed_data [--postgres]
"""
from __future__ import annotations

import json
import os
import random
import sys
from datetime import date, timedelta
from pathlib import Path

from dotenv import load_dotenv
from faker import Faker
from sqlalchemy import create_engine, text

# ── Load .env from project root ─────────────────────────
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(_PROJECT_ROOT / ".env")

fake = Faker("en_US")
Faker.seed(42)
random.seed(42)

# ── Tunables ─────────────────────────────────────────────
NUM_SHIPMENTS = 1_500
NUM_CUSTOMERS = 12
MAX_ITEMS_PER_SHIPMENT = 4
HISTORY_DAYS = 365
OUTPUT_PATH = _PROJECT_ROOT / "data" / "sample_shipments.json"

STATES = [
    "AL", "AZ", "CA", "CO", "FL", "GA", "IL", "IN", "KY", "MI", "MN", "MO",
    "NC", "NJ", "NY", "OH", "OR", "PA", "SC", "TN", "TX", "UT", "VA", "WA", "WI",
]
MODES = ["LTL", "TL", "Parcel", "Intermodal"]
MODE_WEIGHTS = [0.55, 0.25, 0.15, 0.05]
EQUIPMENT = ["Dry Van", "Flatbed", "Reefer", "Box Truck"]
SERVICE_TYPES = ["Standard", "Expedited", "Guaranteed"]
STATUSES = ["Delivered", "In Transit", "Booked", "Cancelled"]
STATUS_WEIGHTS = [0.75, 0.12, 0.08, 0.05]
CARRIERS = [
    ("Old Dominion", "ODFL"), ("Estes Express", "EXLA"), ("XPO Logistics", "CNWY"),
    ("Saia", "SAIA"), ("R+L Carriers", "RLCA"), ("FedEx Freight", "FXFE"),
    ("ABF Freight", "ABFS"), ("Southeastern", "SEFL"), ("TForce", "UPGF"),
    ("Averitt", "AVRT"),
]
PRODUCTS = [
    ("Drawer System 48in", "Storage", "85"),
    ("Drawer System 60in", "Storage", "85"),
    ("Steel Drawer Unit", "Storage", "70"),
    ("CargoGlide 1000", "Slide-outs", "92.5"),
    ("CargoGlide 1500 HD", "Slide-outs", "92.5"),
    ("Tool Box Crossover", "Truck Accessories", "100"),
    ("Tool Box Low Profile", "Truck Accessories", "100"),
    ("Shelf Kit", "Storage", "65"),
    ("Cargo Divider", "Storage", "55"),
    ("Roof Rack", "Truck Accessories", "125"),
]


def _carrier() -> tuple[str, str]:
    return random.choice(CARRIERS)


def _customers() -> list[dict]:
    return [{"customer_id": cid, "customer_name": fake.company()} for cid in range(1, NUM_CUSTOMERS + 1)]


def _db_url() -> str:
    user = os.getenv("POSTGRES_USER", "freight")
    pw = os.getenv("POSTGRES_PASSWORD", "freight_pw")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "freight")
    return f"postgresql://{user}:{pw}@{host}:{port}/{db}"


# ── Generators ───────────────────────────────────────────

def gen_shipments(today: date | None = None) -> list[dict]:
    today = today or date.today()
    customers = _customers()
    rows = []
    for load_id in range(1, NUM_SHIPMENTS + 1):
        customer = random.choice(customers)
        carrier_name, scac = _carrier()
        mode = random.choices(MODES, weights=MODE_WEIGHTS, k=1)[0]
        status = random.choices(STATUSES, weights=STATUS_WEIGHTS, k=1)[0]
        pickup = today - timedelta(days=random.randint(0, HISTORY_DAYS))
        transit = random.randint(1, 7)
        delivery = pickup + timedelta(days=transit)
        miles = random.randint(80, 2_800)
        weight = random.randint(150, 38_000)

        linehaul = round(miles * random.uniform(0.9, 2.6), 2)
        fuel = round(linehaul * random.uniform(0.18, 0.32), 2)
        accessorial = round(random.choice([0, 0, 0, 45, 75, 120]) * 1.0, 2)
        cost = round(linehaul + fuel + accessorial, 2)
        retail = round(cost * random.uniform(1.08, 1.35), 2)
        margin = round(retail - cost, 2)

        rows.append({
            "load_id": load_id,
            "reference_number": fake.bothify("REF-#######"),
            "bol_number": fake.bothify("BOL########"),
            "pro_number": fake.bothify("##########"),
            "status_name": status,
            "mode_name": mode,
            "equipment_name": random.choice(EQUIPMENT),
            "service_type": random.choice(SERVICE_TYPES),
            "pickup_date": pickup.isoformat(),
            "delivery_date": delivery.isoformat(),
            "miles": miles,
            "weight": weight,
            "number_of_pallets": max(1, weight // 1_200),
            "transit_days": transit,
            "claim_count": random.choices([0, 1, 2], weights=[0.93, 0.06, 0.01], k=1)[0],
            "is_completed": status == "Delivered",
            "is_late": random.random() < 0.12,
            "retail": retail,
            "retail_without_tax": round(retail / 1.07, 2),
            "fuel_surcharge": fuel,
            "accessorial_total": accessorial,
            "cost": cost,
            "cost_without_tax": round(cost / 1.07, 2),
            "margin": margin,
            "margin_percent": round(margin / retail * 100, 2),
            "linehaul": linehaul,
            "carrier_total": cost,
            "target_rate": round(cost * random.uniform(0.95, 1.05), 2),
            "origin_city": fake.city(),
            "origin_state": random.choice(STATES),
            "origin_zip": fake.zipcode(),
            "shipper_name": fake.company(),
            "dest_city": fake.city(),
            "dest_state": random.choice(STATES),
            "dest_zip": fake.zipcode(),
            "consignee_name": fake.company(),
            "carrier_name": carrier_name,
            "scac": scac,
            "customer_id": customer["customer_id"],
            "customer_name": customer["customer_name"],
            "pickup_month": pickup.strftime("%Y-%m"),
            "pickup_week": f"{pickup.isocalendar()[0]}-W{pickup.isocalendar()[1]:02d}",
            "day_of_week": pickup.strftime("%A"),
        })
    return rows


def gen_items(shipments: list[dict]) -> list[dict]:
    """Line items carrying a copy of their shipment's fields."""
    items: list[dict] = []
    for shipment in shipments:
        n_items = random.randint(1, MAX_ITEMS_PER_SHIPMENT)
        for description, commodity, freight_class in random.sample(PRODUCTS, n_items):
            quantity = random.randint(1, 12)
            items.append({
                **shipment,
                "description": description,
                "commodity": commodity,
                "freight_class": freight_class,
                "sku": fake.bothify("SKU-????-####").upper(),
                "item_weight": round(random.uniform(20, 900), 1),
                "item_quantity": quantity,
            })
    return items


# ── Output helpers ───────────────────────────────────────

def write_json(shipments: list[dict], items: list[dict], path: Path = OUTPUT_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump({"shipment": shipments, "shipment_item": items}, f)
    print(f"  ✓ {path}")


def _bulk_insert(engine, table: str, rows: list[dict], batch_size: int = 2000):
    """Insert rows into *table* in batches using executemany-style VALUES."""
    if not rows:
        return
    cols = list(rows[0].keys())
    col_list = ", ".join(cols)
    param_list = ", ".join(f":{c}" for c in cols)
    sql = text(f"INSERT INTO {table} ({col_list}) VALUES ({param_list})")
    with engine.begin() as conn:
        for i in range(0, len(rows), batch_size):
            conn.execute(sql, rows[i : i + batch_size])
    print(f"  ✓ {table}: {len(rows):,} rows")


def write_postgres(shipments: list[dict], items: list[dict]) -> None:
    engine = create_engine(_db_url(), echo=False)
    print("Truncating shipment tables …")
    with engine.begin() as conn:
        for t in ["shipment_item", "shipment"]:
            conn.execute(text(f"TRUNCATE TABLE {t} CASCADE"))
    _bulk_insert(engine, "shipment", shipments)
    _bulk_insert(engine, "shipment_item", items)


# ── Main ─────────────────────────────────────────────────

def main():
    print("═══ Freight Seed Generator ═══")
    print("Generating data …")
    shipments = gen_shipments()
    items = gen_items(shipments)

    print("Writing …")
    write_json(shipments, items)
    if "--postgres" in sys.argv[1:]:
        write_postgres(shipments, items)

    print(f"\nDone: {len(shipments):,} shipments, {len(items):,} line items.")


if __name__ == "__main__":
    main()
