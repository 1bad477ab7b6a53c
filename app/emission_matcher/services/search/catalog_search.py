"""Multi-term fuzzy ranking over the emission factor catalog.

Each query term is scored against an entry's code and name separately and
the scores are summed:

    code:  exact 100, prefix 75, substring 50
    name:  prefix 25, substring 15, prefix of a word 10

Entries matching no term are dropped. An entry matched by every term gets a
+30 bonus. Results are sorted by score, highest first; the sort is stable,
so equal scores keep catalog order.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Sequence

from emission_matcher.utils.logging import get_logger

logger = get_logger(__name__)

EXACT_CODE_SCORE = 100
CODE_PREFIX_SCORE = 75
CODE_SUBSTRING_SCORE = 50
NAME_PREFIX_SCORE = 25
NAME_SUBSTRING_SCORE = 15
WORD_PREFIX_SCORE = 10
FULL_COVERAGE_BONUS = 30


@dataclass(frozen=True)
class CatalogEntry:
    code: str
    name: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CatalogEntry":
        name = data.get("name")
        return cls(code=str(data.get("code", "")), name="" if name is None else str(name))

    def as_dict(self) -> dict:
        return {"code": self.code, "name": self.name}


@dataclass
class EntryScore:
    entry: CatalogEntry
    score: int = 0
    matched_terms: int = 0
    matched_in: List[str] = field(default_factory=list)

    @property
    def matches(self) -> bool:
        return self.matched_terms > 0


def split_query(query: str) -> List[str]:
    return query.lower().split()


def _code_score(code: str, term: str) -> int:
    if term not in code:
        return 0
    if code == term:
        return EXACT_CODE_SCORE
    if code.startswith(term):
        return CODE_PREFIX_SCORE
    return CODE_SUBSTRING_SCORE


def _name_score(name: str, words: Sequence[str], term: str) -> tuple[int, str]:
    if term in name:
        if name.startswith(term):
            return NAME_PREFIX_SCORE, "name-full"
        return NAME_SUBSTRING_SCORE, "name-full"
    if any(word.startswith(term) for word in words):
        return WORD_PREFIX_SCORE, "name-word"
    return 0, ""


def score_entry(entry: CatalogEntry, terms: Sequence[str]) -> EntryScore:
    result = EntryScore(entry=entry)
    if not entry.name:
        # Nameless entries are never offered
        return result

    code = entry.code.lower()
    name = entry.name.lower()
    words = name.split()

    for term in terms:
        term_matched = False

        code_points = _code_score(code, term)
        if code_points:
            result.score += code_points
            result.matched_in.append("code")
            term_matched = True

        name_points, where = _name_score(name, words, term)
        if name_points:
            result.score += name_points
            result.matched_in.append(where)
            term_matched = True

        if term_matched:
            result.matched_terms += 1

    if result.matches and result.matched_terms == len(terms):
        result.score += FULL_COVERAGE_BONUS
    return result


def rank_catalog(catalog: Sequence[CatalogEntry], query: str) -> List[EntryScore]:
    """Scored matches for ``query``, best first. Blank query returns an empty list."""
    terms = split_query(query)
    if not terms:
        return []
    scored = [score_entry(entry, terms) for entry in catalog]
    matched = [s for s in scored if s.matches]
    logger.debug(
        "Catalog search %r: %d/%d matched (code=%d, name=%d, word=%d)",
        query,
        len(matched),
        len(scored),
        sum(1 for s in matched if "code" in s.matched_in),
        sum(1 for s in matched if "name-full" in s.matched_in),
        sum(1 for s in matched if "name-word" in s.matched_in),
    )
    return sorted(matched, key=lambda s: s.score, reverse=True)


def search_catalog(catalog: Sequence[CatalogEntry], query: str) -> List[CatalogEntry]:
    """Rank catalog entries against a free-text query.

    A blank query returns the catalog unchanged, in catalog order.
    """
    if not query.strip():
        return list(catalog)
    return [s.entry for s in rank_catalog(catalog, query)]


def to_catalog(records: Iterable[Mapping[str, Any]]) -> List[CatalogEntry]:
    return [CatalogEntry.from_dict(r) for r in records]


__all__ = [
    "CatalogEntry",
    "EntryScore",
    "split_query",
    "score_entry",
    "rank_catalog",
    "search_catalog",
    "to_catalog",
]
