"""
Loads, parses, and caches the column catalog YAML into strongly-typed objects.

The catalog is the single source of truth for:
  - queryable columns (label, category, data type, restricted flag, level)
  - product-term phrases recognised in free text
  - metric bindings (canonical metric id -> candidate columns)
  - table routing (shipment-level vs item-level)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from functools import lru_cache
from typing import Any

import yaml

_CATALOG_PATH = Path(__file__).resolve().parents[2] / "semantic_layer" / "catalog.yml"

DATA_TYPES = ("string", "number", "date", "boolean")
LEVEL_SHIPMENT = "shipment"
LEVEL_ITEM = "item"


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class Column:
    id: str
    label: str
    category: str
    data_type: str  # string | number | date | boolean
    restricted: bool = False
    level: str = LEVEL_SHIPMENT
    field: str | None = None
    description: str = ""

    @property
    def backend_field(self) -> str:
        """Field name used in backend requests (defaults to the id)."""
        return self.field or self.id

    @property
    def is_numeric(self) -> bool:
        return self.data_type == "number"

    @property
    def is_item_level(self) -> bool:
        return self.level == LEVEL_ITEM


@dataclass(frozen=True)
class TermDefinition:
    label: str
    patterns: tuple[str, ...]


@dataclass(frozen=True)
class MetricBinding:
    name: str
    candidates: tuple[str, ...]
    aggregation: str | None = None


@dataclass
class Catalog:
    """Fully parsed column catalog."""

    version: int
    columns: tuple[Column, ...]
    terms: tuple[TermDefinition, ...]
    metrics: dict[str, MetricBinding]
    tables: dict[str, str] = field(default_factory=dict)
    date_field: str = "pickup_date"
    term_field: str = "item_description"

    # ── Convenience look-ups ─────────────────────────

    def column(self, column_id: str) -> Column | None:
        for col in self.columns:
            if col.id == column_id:
                return col
        return None

    def get_column_ids(self) -> list[str]:
        return [c.id for c in self.columns]

    def visible_columns(self, is_admin: bool) -> list[Column]:
        """Columns the caller may see; restricted ones only for admins."""
        if is_admin:
            return list(self.columns)
        return [c for c in self.columns if not c.restricted]

    def metric_binding(self, name: str) -> MetricBinding | None:
        return self.metrics.get(name)

    def table_for(self, level: str) -> str:
        return self.tables.get(level, self.tables.get(LEVEL_SHIPMENT, "shipment"))

    def item_level_fields(self) -> set[str]:
        """Backend field names that only exist on the item-level table."""
        return {c.backend_field for c in self.columns if c.is_item_level}

    def get_columns_list(self, is_admin: bool = False) -> list[dict[str, Any]]:
        """Return visible columns as a list of dicts (for API responses)."""
        return [
            {
                "id": c.id,
                "label": c.label,
                "category": c.category,
                "data_type": c.data_type,
                "restricted": c.restricted,
                "description": c.description,
            }
            for c in self.visible_columns(is_admin)
        ]


# ── Parsing ──────────────────────────────────────────────

def _parse_column(raw: dict[str, Any]) -> Column:
    data_type = raw.get("type", "string")
    if data_type not in DATA_TYPES:
        raise ValueError(f"Column '{raw.get('id')}' has unknown type '{data_type}'")
    return Column(
        id=raw["id"],
        label=raw.get("label", raw["id"]),
        category=raw.get("category", ""),
        data_type=data_type,
        restricted=bool(raw.get("restricted", False)),
        level=raw.get("level", LEVEL_SHIPMENT),
        field=raw.get("field"),
        description=raw.get("description", ""),
    )


def _parse_term(raw: dict[str, Any]) -> TermDefinition:
    patterns = raw.get("patterns") or [raw["label"]]
    return TermDefinition(label=raw["label"], patterns=tuple(patterns))


def _parse_metric(raw: dict[str, Any]) -> MetricBinding:
    return MetricBinding(
        name=raw["name"],
        candidates=tuple(raw.get("candidates") or [raw["name"]]),
        aggregation=raw.get("aggregation"),
    )


def parse_catalog(raw_yaml: dict[str, Any]) -> Catalog:
    columns = tuple(_parse_column(c) for c in raw_yaml.get("columns", []))
    terms = tuple(_parse_term(t) for t in raw_yaml.get("terms", []))
    metrics = {m["name"]: _parse_metric(m) for m in raw_yaml.get("metrics", [])}
    return Catalog(
        version=raw_yaml.get("version", 1),
        columns=columns,
        terms=terms,
        metrics=metrics,
        tables=dict(raw_yaml.get("tables") or {LEVEL_SHIPMENT: "shipment", LEVEL_ITEM: "shipment_item"}),
        date_field=raw_yaml.get("date_field", "pickup_date"),
        term_field=raw_yaml.get("term_field", "item_description"),
    )


# ── Public API ───────────────────────────────────────────

@lru_cache
def load_catalog() -> Catalog:
    """Load and cache the column catalog from YAML."""
    with open(_CATALOG_PATH) as f:
        raw = yaml.safe_load(f)
    return parse_catalog(raw)


def get_column_ids() -> list[str]:
    return load_catalog().get_column_ids()
