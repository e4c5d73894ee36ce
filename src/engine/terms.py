"""
Term extraction -- finds known product-category phrases in free text.

Matching is case-insensitive and longest-match-first: once a longer phrase
fires ("drawer system"), any shorter term whose match falls inside it
("drawer") is suppressed for the whole request.  The keyword table comes
from the catalog so it can grow without touching this module.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable

from src.catalog.loader import TermDefinition, load_catalog

_QUOTED_RE = re.compile(r'"([^"]+)"')


@dataclass(frozen=True)
class _Match:
    label: str
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    def within(self, other: "_Match") -> bool:
        return other.start <= self.start and self.end <= other.end


class TermExtractor:
    """Pure function of its keyword table."""

    def __init__(self, terms: Iterable[TermDefinition]):
        self._compiled: list[tuple[str, list[re.Pattern[str]]]] = [
            (t.label, [re.compile(rf"\b(?:{p})\b", re.IGNORECASE) for p in t.patterns])
            for t in terms
        ]

    def _find_all(self, text: str) -> dict[str, list[_Match]]:
        found: dict[str, list[_Match]] = {}
        for label, patterns in self._compiled:
            for pattern in patterns:
                for m in pattern.finditer(text):
                    found.setdefault(label, []).append(_Match(label, m.start(), m.end()))
        return found

    def extract(self, text: str) -> list[str]:
        """Return term labels in order of first appearance, de-duplicated."""
        found = self._find_all(text)
        if not found:
            return []

        # Longest single match first; ties keep table order
        order = {label: i for i, (label, _) in enumerate(self._compiled)}
        ranked = sorted(
            found,
            key=lambda lbl: (-max(m.length for m in found[lbl]), order[lbl]),
        )

        accepted: dict[str, list[_Match]] = {}
        for label in ranked:
            matches = found[label]
            suppressed = any(
                m.within(big)
                for m in matches
                for bigger in accepted.values()
                for big in bigger
            )
            if not suppressed:
                accepted[label] = matches

        first_seen = {label: min(m.start for m in matches) for label, matches in accepted.items()}
        return sorted(accepted, key=lambda lbl: (first_seen[lbl], order[lbl]))

    @staticmethod
    def extract_quoted(text: str) -> list[str]:
        """Phrases the user wrapped in double quotes, in order, de-duplicated."""
        seen: list[str] = []
        for m in _QUOTED_RE.finditer(text):
            phrase = m.group(1).strip()
            if phrase and phrase.lower() not in (s.lower() for s in seen):
                seen.append(phrase)
        return seen


@lru_cache
def default_extractor() -> TermExtractor:
    return TermExtractor(load_catalog().terms)


def extract_terms(text: str, extractor: TermExtractor | None = None) -> list[str]:
    """Known product terms mentioned in *text* (see ``TermExtractor.extract``)."""
    return (extractor or default_extractor()).extract(text)
