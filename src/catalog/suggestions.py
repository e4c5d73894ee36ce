"""
Column suggestions for partial or misspelled field names.

When a field cannot be bound (e.g. ``"carier"``), this module ranks the
caller's visible columns using a combination of:
  - Exact/prefix matching
  - Token overlap (Jaccard-like)
  - Levenshtein edit-distance similarity
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from src.catalog.loader import Column, load_catalog
from src.core.logging import get_logger

logger = get_logger(__name__)


# ── Data classes ────────────────────────────────────────


@dataclass
class Suggestion:
    """A single column suggestion."""
    id: str
    label: str
    category: str
    score: float  # 0.0 – 1.0, higher is better match

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "category": self.category,
            "score": round(self.score, 3),
        }


# ── Similarity helpers ──────────────────────────────────


def _levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        return _levenshtein(b, a)
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a):
        curr = [i + 1]
        for j, cb in enumerate(b):
            substitution = 0 if ca == cb else 1
            curr.append(min(curr[j] + 1, prev[j + 1] + 1, prev[j] + substitution))
        prev = curr
    return prev[-1]


def _edit_similarity(a: str, b: str) -> float:
    """1.0 = identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - _levenshtein(a, b) / longest


def _tokens(text: str) -> set[str]:
    cleaned = "".join(ch if ch.isalnum() else " " for ch in text.lower())
    return {t for t in cleaned.split() if t}


def _jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    if not union:
        return 1.0
    return len(a & b) / len(union)


def _score(query: str, column: Column) -> float:
    """Composite similarity score (0–1).

      - 0.40 best edit-distance similarity on id, label or any of their words
      - 0.30 token overlap on id + label
      - 0.15 token overlap on description
      - 0.15 bonus for a prefix match
    """
    q = query.lower().strip()
    ident = column.id.lower()
    label = column.label.lower()
    name_tokens = _tokens(f"{ident} {label}")

    edit_sim = max(_edit_similarity(q, candidate) for candidate in (ident, label, *name_tokens))
    name_overlap = _jaccard(_tokens(q), name_tokens)
    desc_overlap = _jaccard(_tokens(q), _tokens(column.description)) if column.description else 0.0
    prefix = 1.0 if ident.startswith(q) or label.startswith(q) else 0.0

    return 0.40 * edit_sim + 0.30 * name_overlap + 0.15 * desc_overlap + 0.15 * prefix


# ── Public API ──────────────────────────────────────────


def suggest_columns(
    query: str,
    columns: Sequence[Column] | None = None,
    top_k: int = 5,
    min_score: float = 0.25,
) -> list[Suggestion]:
    """Return visible columns ranked by similarity to *query*.

    Parameters
    ----------
    query : str
        The partial / ambiguous field name.
    columns : list[Column], optional
        Visibility-filtered catalog; defaults to the non-admin view.
    top_k : int
        Maximum number of suggestions to return.
    min_score : float
        Minimum similarity score to include.
    """
    if not query.strip():
        return []
    if columns is None:
        columns = load_catalog().visible_columns(is_admin=False)

    suggestions: list[Suggestion] = []
    for c in columns:
        s = _score(query, c)
        if s >= min_score:
            suggestions.append(Suggestion(id=c.id, label=c.label, category=c.category, score=s))

    suggestions.sort(key=lambda x: x.score, reverse=True)
    logger.debug("suggest_columns(%r) -> %d candidates", query, len(suggestions))
    return suggestions[:top_k]
