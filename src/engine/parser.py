"""
Intent parser -- deterministic keyword/regex interpretation of a free-text
analytical request into a ParsedQuery.

Every heuristic cascade is an ordered list of ``Rule`` objects evaluated by
``first_match``; precedence is the list order.  Classifications (intent,
metrics, dimensions, multi-dimension, time range, filters) are independent
of each other.  The parser never fails: unknown text yields defaults.
"""
from __future__ import annotations

import calendar
import datetime
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Generic, Sequence, TypeVar

from src.core.config import get_settings
from src.core.utils import today as _today
from src.catalog.loader import load_catalog
from src.engine.models import FilterClause, MultiDimension, ParsedQuery, TimeRange
from src.engine.terms import TermExtractor, default_extractor

T = TypeVar("T")


# ── Rule dispatch ────────────────────────────────────────

@dataclass(frozen=True)
class Rule(Generic[T]):
    """An ordered heuristic: cheap predicate, then extractor (None = no result)."""
    name: str
    predicate: Callable[[str], bool]
    extract: Callable[[str], T | None]


def first_match(rules: Sequence[Rule[T]], text: str) -> tuple[str, T] | None:
    """Run *rules* in order and return ``(rule name, value)`` of the first hit."""
    for rule in rules:
        if not rule.predicate(text):
            continue
        value = rule.extract(text)
        if value is not None:
            return rule.name, value
    return None


@lru_cache(maxsize=512)
def _phrase_re(phrase: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(phrase)}\b")


def _has_phrase(text: str, phrase: str) -> bool:
    return _phrase_re(phrase).search(text) is not None


def _has_any(phrases: Sequence[str]) -> Callable[[str], bool]:
    return lambda text: any(_has_phrase(text, p) for p in phrases)


def _always(_: str) -> bool:
    return True


# ── Keyword tables ───────────────────────────────────────

_INTENT_KEYWORDS: dict[str, list[str]] = {
    "analyze":   ["show", "display", "what", "how much", "analyze", "analyse", "give me"],
    "compare":   ["compare", "comparison", "versus", "vs", "difference", "between", "against"],
    "trend":     ["trend", "trends", "over time", "change", "growth", "decline", "history", "monthly", "weekly"],
    "breakdown": ["breakdown", "break down", "broken down", "split", "segment", "composition", "distribution"],
    "find":      ["find", "where", "which", "top", "bottom", "highest", "lowest", "best", "worst"],
    "summarize": ["summary", "summarize", "summarise", "overview", "total", "aggregate"],
}

_METRIC_SYNONYMS: dict[str, list[str]] = {
    "cost":      ["cost", "costs", "spend", "spending", "expense", "expenses", "price", "prices",
                  "rate", "rates", "charge", "charges", "fee", "fees", "retail", "revenue"],
    "shipments": ["shipments", "shipment", "loads", "orders", "volume", "count"],
    "transit":   ["transit", "transit time", "delivery time", "lead time", "duration"],
    "claims":    ["claims", "claim", "damage", "loss"],
    "margin":    ["margin", "margins", "profit", "markup"],
    "weight":    ["weight", "weights", "pounds", "lbs", "tonnage"],
    "miles":     ["miles", "mileage", "distance"],
}

_DIMENSION_SYNONYMS: dict[str, list[str]] = {
    "product":     ["product", "products", "item", "items", "description", "category", "categories"],
    "state":       ["state", "states", "origin", "origins", "region", "regions", "location", "geography"],
    "destination": ["destination", "destinations", "dest"],
    "carrier":     ["carrier", "carriers", "vendor", "vendors", "provider"],
    "mode":        ["mode", "modes", "service", "method"],
    "customer":    ["customer", "customers", "client", "clients", "account", "shipper"],
    "month":       ["month", "monthly"],
    "week":        ["week", "weekly"],
    "day":         ["day", "daily", "date"],
}

_AGGREGATION_KEYWORDS: list[tuple[str, list[str]]] = [
    ("sum",   ["total", "sum"]),
    ("count", ["count", "how many", "number of"]),
    ("min",   ["min", "minimum", "lowest"]),
    ("max",   ["max", "maximum", "highest"]),
    ("avg",   ["average", "avg", "mean"]),
]

# single-word tokens that name a dimension (used by the multi-dimension rules)
_DIMENSION_TOKENS: dict[str, str] = {
    token: dim
    for dim, synonyms in _DIMENSION_SYNONYMS.items()
    for token in synonyms
    if " " not in token
}

_METRIC_TOKENS: dict[str, str] = {
    token: metric
    for metric, synonyms in _METRIC_SYNONYMS.items()
    for token in synonyms
    if " " not in token
}

_US_STATES = frozenset(
    "AL AK AZ AR CA CO CT DE DC FL GA HI ID IL IN IA KS KY LA ME MD MA MI MN MS MO "
    "MT NE NV NH NJ NM NY NC ND OH OK OR PA RI SC SD TN TX UT VT VA WA WV WI WY".split()
)


# ── Intent / metric / dimension detection ────────────────

_INTENT_RULES: list[Rule[str]] = [
    Rule(intent, _has_any(keywords), lambda _t, _i=intent: _i)
    for intent, keywords in _INTENT_KEYWORDS.items()
]

_AGGREGATION_RULES: list[Rule[str]] = [
    Rule(agg, _has_any(keywords), lambda _t, _a=agg: _a)
    for agg, keywords in _AGGREGATION_KEYWORDS
]


def _detect_all(table: dict[str, list[str]], text: str) -> list[str]:
    """Every key of *table* with at least one synonym present, in table order."""
    return [name for name, synonyms in table.items() if any(_has_phrase(text, s) for s in synonyms)]


# ── Multi-dimension detection ────────────────────────────

_TEMPLATE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\b(?:average|avg|total|sum|count|show|get)\s+(\w+)\s+(?:by|per|for)\s+(\w+)\s+"
               r"(?:by|and|per|grouped by|for each|&)\s+(\w+)"),
    re.compile(r"\b(\w+)\s+(?:per|by|for)\s+(\w+)\s+(?:by|and|per|grouped by|&)\s+(\w+)"),
    re.compile(r"\bbreakdown\s+of\s+(\w+)\s+by\s+(\w+)\s+(?:and|&|by)\s+(\w+)"),
    re.compile(r"\b(\w+)\s+by\s+(\w+)\s+grouped\s+by\s+(\w+)"),
]

_SECONDARY = r"(origin|state|destination|carrier|mode)s?"

_PROXIMITY_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\b(?:by|per|split\s+(?:up\s+|out\s+)?by|broken?\s+(?:down|out)\s+by|grouped\s+by|"
               r"also\s+by|and\s+(?:by|per)|as\s+well\s+(?:as|by))\s+" + _SECONDARY + r"\b"),
    re.compile(r"\b" + _SECONDARY + r"\s+(?:as\s+well|too|also)\b"),
    re.compile(r"\bfor\s+each\s+" + _SECONDARY + r"\b"),
]

_PRODUCT_WORDS = ("product", "products", "item", "items", "category", "categories")
_METRIC_HINT_WORDS = ("cost", "price", "retail", "average", "avg", "total", "sum", "count", "charge")

_CONJUNCTION_RE = re.compile(r"\bby\s+(\w+)\s+(?:and|&)\s+(\w+)")


def _dimension_token(token: str) -> str | None:
    return _DIMENSION_TOKENS.get(token.lower())


def _pair(first: str, second: str) -> tuple[str, str] | None:
    """Both tokens must name distinct known dimensions."""
    a, b = _dimension_token(first), _dimension_token(second)
    if a is None or b is None or a == b:
        return None
    return a, b


# ── Time ranges ──────────────────────────────────────────

def _shift_months(day: datetime.date, months: int) -> datetime.date:
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, min(day.day, last_day))


def _month_start(day: datetime.date) -> datetime.date:
    return day.replace(day=1)


_TimeFn = Callable[[datetime.date, re.Match[str]], tuple[datetime.date, datetime.date]]

_TIME_PHRASES: list[tuple[str, str, _TimeFn]] = [
    # (regex, granularity, range builder)
    (r"\btoday\b", "day", lambda d, m: (d, d)),
    (r"\byesterday\b", "day",
     lambda d, m: (d - datetime.timedelta(days=1), d - datetime.timedelta(days=1))),
    (r"\bthis\s+week\b", "week", lambda d, m: (d - datetime.timedelta(days=d.weekday()), d)),
    (r"\blast\s+week\b", "week",
     lambda d, m: (d - datetime.timedelta(days=d.weekday() + 7), d - datetime.timedelta(days=d.weekday() + 1))),
    (r"\bthis\s+month\b", "month", lambda d, m: (_month_start(d), d)),
    (r"\blast\s+month\b", "month",
     lambda d, m: (_month_start(_month_start(d) - datetime.timedelta(days=1)),
                   _month_start(d) - datetime.timedelta(days=1))),
    (r"\b(?:last|past)\s+(\d+)\s+days?\b", "day",
     lambda d, m: (d - datetime.timedelta(days=int(m.group(1))), d)),
    (r"\b(?:last|past)\s+(\d+)\s+weeks?\b", "week",
     lambda d, m: (d - datetime.timedelta(weeks=int(m.group(1))), d)),
    (r"\b(?:last|past)\s+(\d+)\s+months?\b", "month",
     lambda d, m: (_shift_months(d, int(m.group(1))), d)),
    (r"\b(?:ytd|year\s+to\s+date|this\s+year)\b", "month",
     lambda d, m: (datetime.date(d.year, 1, 1), d)),
    (r"\blast\s+year\b", "month",
     lambda d, m: (datetime.date(d.year - 1, 1, 1), datetime.date(d.year - 1, 12, 31))),
]

_TIME_PATTERNS: list[tuple[re.Pattern[str], str, _TimeFn]] = [
    (re.compile(p), g, fn) for p, g, fn in _TIME_PHRASES
]


def detect_time_range(text: str, today: datetime.date) -> tuple[TimeRange, tuple[int, int]] | None:
    """First matching relative phrase (table order) and the span it covers."""
    for pattern, granularity, build in _TIME_PATTERNS:
        m = pattern.search(text)
        if m:
            start, end = build(today, m)
            return TimeRange(start=start, end=end, granularity=granularity, label=m.group(0)), m.span()
    return None


# ── Filters ──────────────────────────────────────────────

_REGION_RE = re.compile(r"\b(?i:in|for|from)\s+([A-Z]{2})\b")
_TOP_RE = re.compile(r"\btop\s+(\d+)\b")
_BOTTOM_RE = re.compile(r"\bbottom\s+(\d+)\b")
_VS_RE = re.compile(r"\b(\w+)\s+(?:vs\.?|versus|compared\s+to)\s+(\w+)")


def extract_filters(original: str) -> list[FilterClause]:
    """Explicit qualifiers: two-letter state codes ("in TX")."""
    filters: list[FilterClause] = []
    for m in _REGION_RE.finditer(original):
        code = m.group(1)
        if code in _US_STATES:
            clause = FilterClause(field="state", operator="eq", value=code)
            if clause not in filters:
                filters.append(clause)
    return filters


def extract_limit(text: str) -> tuple[int | None, str | None]:
    """``top N`` / ``bottom N`` → (limit, sort direction)."""
    m = _TOP_RE.search(text)
    if m:
        return int(m.group(1)), "desc"
    m = _BOTTOM_RE.search(text)
    if m:
        return int(m.group(1)), "asc"
    return None, None


# ── Parser ───────────────────────────────────────────────

class IntentParser:
    """Heuristic free text → ParsedQuery parser."""

    def __init__(
        self,
        extractor: TermExtractor | None = None,
        fallback_metric: str = "cost",
        metric_aggregations: dict[str, str] | None = None,
    ):
        self._extractor = extractor or default_extractor()
        self._fallback_metric = fallback_metric
        self._metric_aggregations = dict(metric_aggregations or {})

    # ── multi-dimension rules ────────────────────────

    def _multi_dimension_rules(
        self, terms: list[str], metrics: list[str], aggregation: str,
    ) -> list[Rule[MultiDimension]]:
        primary_metric = metrics[0]

        def from_templates(text: str) -> MultiDimension | None:
            for pattern in _TEMPLATE_PATTERNS:
                for m in pattern.finditer(text):
                    metric_tok, first, second = m.groups()
                    pair = _pair(first, second)
                    if pair is None:
                        continue
                    return MultiDimension(
                        primary=pair[0], secondary=pair[1],
                        metric=_METRIC_TOKENS.get(metric_tok, primary_metric),
                        aggregation=aggregation, source="template",
                    )
            return None

        def mentions_product_and_metric(text: str) -> bool:
            has_product = bool(terms) or any(_has_phrase(text, w) for w in _PRODUCT_WORDS)
            has_metric = any(_has_phrase(text, w) for w in _METRIC_HINT_WORDS)
            return has_product and has_metric

        def from_proximity(text: str) -> MultiDimension | None:
            for pattern in _PROXIMITY_PATTERNS:
                m = pattern.search(text)
                if m:
                    secondary = _dimension_token(m.group(1))
                    if secondary is None or secondary == "product":
                        continue
                    return MultiDimension(
                        primary="product", secondary=secondary,
                        metric=primary_metric, aggregation=aggregation, source="proximity",
                    )
            return None

        def from_conjunction(text: str) -> MultiDimension | None:
            for m in _CONJUNCTION_RE.finditer(text):
                pair = _pair(m.group(1), m.group(2))
                if pair is not None:
                    return MultiDimension(
                        primary=pair[0], secondary=pair[1],
                        metric=primary_metric, aggregation=aggregation, source="conjunction",
                    )
            return None

        return [
            Rule("template", _always, from_templates),
            Rule("proximity", mentions_product_and_metric, from_proximity),
            Rule("conjunction", lambda t: "by" in t, from_conjunction),
        ]

    # ── public ───────────────────────────────────────

    def parse(self, text: str, today: datetime.date | None = None) -> ParsedQuery:
        original = text or ""
        q = original.lower().strip()
        today = today or _today()

        # 1. intent
        hit = first_match(_INTENT_RULES, q)
        intent = hit[1] if hit else "analyze"

        # 2. time range (its span is excluded from dimension scanning)
        time_range: TimeRange | None = None
        scan = q
        found = detect_time_range(q, today)
        if found:
            time_range, (start, end) = found
            scan = q[:start] + " " * (end - start) + q[end:]

        # 3. metrics
        metrics = _detect_all(_METRIC_SYNONYMS, scan) or [self._fallback_metric]

        # 4. dimensions (all matches)
        dimensions = _detect_all(_DIMENSION_SYNONYMS, scan)

        # 5. terms
        terms = self._extractor.extract(original)
        for quoted in self._extractor.extract_quoted(original):
            if quoted.lower() not in (t.lower() for t in terms):
                terms.append(quoted)

        # 6. aggregation
        hit = first_match(_AGGREGATION_RULES, scan)
        if hit:
            aggregation = hit[1]
        else:
            aggregation = self._metric_aggregations.get(metrics[0], "avg")

        # 7. multi-dimension
        hit = first_match(self._multi_dimension_rules(terms, metrics, aggregation), scan)
        multi_dimension = hit[1] if hit else None

        # 8. filters / limit
        filters = extract_filters(original)
        limit, sort = extract_limit(q)

        geographic = None
        if "state" in dimensions or "destination" in dimensions or _has_any(["map", "geographic"])(q):
            geographic = "state"

        comparison_targets: list[str] = []
        if intent == "compare":
            if len(terms) >= 2:
                comparison_targets = list(terms)
            else:
                m = _VS_RE.search(q)
                if m:
                    comparison_targets = [m.group(1), m.group(2)]

        return ParsedQuery(
            question=original,
            intent=intent,
            metrics=metrics,
            dimensions=dimensions,
            filters=filters,
            time_range=time_range,
            geographic=geographic,
            comparison_targets=comparison_targets,
            terms=terms,
            aggregation=aggregation,
            multi_dimension=multi_dimension,
            limit=limit,
            sort=sort,
        )


@lru_cache
def default_parser() -> IntentParser:
    catalog = load_catalog()
    return IntentParser(
        extractor=default_extractor(),
        fallback_metric=get_settings().fallback_metric,
        metric_aggregations={
            name: b.aggregation for name, b in catalog.metrics.items() if b.aggregation
        },
    )


def parse(text: str, today: datetime.date | None = None) -> ParsedQuery:
    """Parse *text* with the catalog-configured parser."""
    return default_parser().parse(text, today=today)
