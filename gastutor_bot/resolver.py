from __future__ import annotations

from typing import List, Sequence, Set

from .content import EXACT_ANSWERS, TOPIC_RULES, ContentCatalog, catalog
from .models import (
    ExactAnswer,
    ExactAnswerResult,
    Level,
    NoMatch,
    ResolutionResult,
    TopicRule,
    Unit,
    UnitsResult,
)

DEFAULT_UNIT_COUNTS = {Level.G3: 3, Level.G2: 5}


def normalize_query(query: str) -> str:
    return (query or "").lower()


class TopicResolver:
    """Map a free-text question to curriculum units or a canned answer.

    Matching is plain substring containment on the lowercased query. Exact
    answers are checked first and in declared order, so an earlier, shorter
    trigger beats a later, more specific one. When nothing matches, the first
    few units of the level are returned instead of an empty result.
    """

    def __init__(
        self,
        content: ContentCatalog = catalog,
        rules: Sequence[TopicRule] = TOPIC_RULES,
        exact_answers: Sequence[ExactAnswer] = EXACT_ANSWERS,
    ) -> None:
        self._catalog = content
        self._rules = tuple(rules)
        self._exact_answers = tuple(exact_answers)

    def resolve(self, query: str, level: Level) -> ResolutionResult:
        lowered = normalize_query(query)

        for answer in self._exact_answers:
            if answer.trigger in lowered:
                return ExactAnswerResult(answer.body)

        available = self._catalog.units_for_level(level)
        candidates = self._match_rules(lowered)
        if not candidates and lowered.strip():
            candidates = {unit.number for unit in available if lowered in unit.title.lower()}

        if candidates:
            matched = sorted(
                (unit for unit in available if unit.number in candidates),
                key=lambda unit: unit.number,
            )
            if matched:
                return UnitsResult(tuple(matched))

        return self._default_units(available, level)

    def _match_rules(self, lowered: str) -> Set[int]:
        numbers: Set[int] = set()
        for rule in self._rules:
            if rule.keyword in lowered:
                numbers.update(rule.units)
        return numbers

    def _default_units(self, available: List[Unit], level: Level) -> ResolutionResult:
        if not available:
            return NoMatch()
        return UnitsResult(tuple(available[: DEFAULT_UNIT_COUNTS[level]]))


resolver = TopicResolver()
