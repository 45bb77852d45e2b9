"""
Intent Classifier implementation for natural-language questions about tabular data.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Sequence

from ..models import (
    EntityType,
    IntentClassificationResult,
    PatternMatch,
    QueryEntity,
    QueryIntent,
    QueryType,
    RoutingThresholds,
)
from ..utils import get_logger
from ..utils.error_handling import ClassificationError


@dataclass(frozen=True)
class QueryPattern:
    """One rule of the ordered pattern list."""
    pattern: Pattern
    type: QueryType
    confidence: float
    extractors: Dict[EntityType, List[Pattern]] = field(default_factory=dict)
    examples: List[str] = field(default_factory=list)

    def matches(self, query: str) -> bool:
        return self.pattern.search(query) is not None


def _rx(expression: str) -> Pattern:
    return re.compile(expression)


# Evaluated top-down. Specific intents come before the broad profile pattern.
DEFAULT_PATTERNS: List[QueryPattern] = [
    QueryPattern(
        pattern=_rx(r"(sum|total|average|avg|mean|count|max|maximum|min|minimum) (of )?(\w+)"),
        type=QueryType.AGGREGATION,
        confidence=0.9,
        extractors={
            EntityType.MEASURE: [
                _rx(r"(?:sum|total|average|avg|mean|count|max|maximum|min|minimum) (?:of )?(\w+)"),
            ],
        },
        examples=["Sum of sales", "Average price", "Count of orders"],
    ),
    # Must precede comparison so "between" in a correlation question is not read as a comparison
    QueryPattern(
        pattern=_rx(r"(correlation|relationship|related|depends)"),
        type=QueryType.RELATIONSHIP,
        confidence=0.75,
        extractors={
            EntityType.MEASURE: [_rx(r"\b(sales|revenue|price|age|score)\w*\b")],
        },
        examples=["Correlation between price and sales", "Relationship of age to income"],
    ),
    QueryPattern(
        pattern=_rx(r"(trend|over time|time series|growth|decline|changes?.*over|changes?.*by)"),
        type=QueryType.TREND,
        confidence=0.85,
        extractors={
            EntityType.TIME: [_rx(r"\b(date|time|month|year|day)\w*\b")],
            EntityType.MEASURE: [_rx(r"\b(sales|revenue|price|amount|count|total)\w*\b")],
        },
        examples=["Show sales trends over time", "Revenue growth by month"],
    ),
    QueryPattern(
        pattern=_rx(r"(top|bottom|highest|lowest|best|worst)"),
        type=QueryType.RANKING,
        confidence=0.85,
        extractors={
            EntityType.LIMIT: [_rx(r"(?:top|bottom|highest|lowest|best|worst) (\d+)")],
            EntityType.MEASURE: [_rx(r"\b(sales|revenue|price|score|rating)\w*\b")],
        },
        examples=["Top 10 customers", "Highest revenue products"],
    ),
    QueryPattern(
        pattern=_rx(r"(distribution|spread|histogram|frequency)"),
        type=QueryType.DISTRIBUTION,
        confidence=0.8,
        extractors={
            EntityType.MEASURE: [_rx(r"(?:distribution|spread|histogram|frequency) (?:of )?(\w+)")],
        },
        examples=["Distribution of ages", "Price histogram"],
    ),
    QueryPattern(
        pattern=_rx(r"(show only|filter|where|>|<|>=|<=|contains|like)"),
        type=QueryType.FILTER,
        confidence=0.75,
        extractors={
            EntityType.FILTER: [_rx(r"(where|=|>|<|>=|<=|contains|like)\s+(\w+)")],
        },
        examples=["Show only sales > 1000", "Filter where region = North"],
    ),
    QueryPattern(
        pattern=_rx(r"(compare|vs|versus|difference|between)"),
        type=QueryType.COMPARISON,
        confidence=0.7,
        extractors={
            EntityType.DIMENSION: [_rx(r"\b(category|type|group|region|channel)\w*\b")],
            EntityType.MEASURE: [_rx(r"\b(sales|revenue|count|total|average)\w*\b")],
        },
        examples=["Compare sales vs revenue", "Difference between regions"],
    ),
    # Broadest pattern, keep last
    QueryPattern(
        pattern=_rx(r"(what.*data|tell me.*data|show me.*overview|describe.*dataset|overview|summary|profile)"),
        type=QueryType.PROFILE,
        confidence=0.9,
        examples=["What is in this data?", "Show me an overview", "Describe the dataset"],
    ),
]

# Explicit ordering request, independent of the intent type
SORT_PATTERN = _rx(r"\b(?:sort(?:ed)?|order(?:ed)?) by\b")
ASCENDING_PATTERN = _rx(r"\b(?:asc|ascending|increasing|lowest first|smallest first)\b")

# Words that mark a literally mentioned column as a measure rather than a dimension
MEASURE_LEXICON = (
    "price", "amount", "total", "count", "sales", "revenue", "quantity", "cost", "value",
)

BASE_COSTS: Dict[QueryType, int] = {
    QueryType.PROFILE: 2,
    QueryType.AGGREGATION: 3,
    QueryType.FILTER: 4,
    QueryType.TREND: 5,
    QueryType.COMPARISON: 6,
    QueryType.DISTRIBUTION: 7,
    QueryType.RANKING: 7,
    QueryType.RELATIONSHIP: 9,
    QueryType.UNKNOWN: 10,
}

FILTER_OPERATORS = {
    "=": "eq",
    ">": "gt",
    "<": "lt",
    ">=": "gte",
    "<=": "lte",
    "contains": "contains",
    "like": "contains",
}

# (resolved, unresolved) entity confidences
_ENTITY_CONFIDENCE = {
    EntityType.MEASURE: (0.9, 0.6),
    EntityType.DIMENSION: (0.8, 0.5),
    EntityType.TIME: (0.9, 0.4),
}

_UNKNOWN_MATCH = PatternMatch(type=QueryType.UNKNOWN, confidence=0.1, reason="No clear pattern matched")


class IntentClassifier:
    """
    Rule-based intent classifier for data questions.

    Evaluates an ordered list of patterns over the lowercased query, keeps
    every match ranked by confidence, and lets the top match drive entity
    extraction. Entities are resolved against the caller's column names.
    The classifier holds no mutable state and performs no I/O.
    """

    def __init__(self, patterns: Optional[Sequence[QueryPattern]] = None,
                 thresholds: Optional[RoutingThresholds] = None):
        self.logger = get_logger(__name__)
        self.patterns: List[QueryPattern] = list(patterns if patterns is not None else DEFAULT_PATTERNS)
        self.thresholds = thresholds or RoutingThresholds()

    def classify_intent(self, query: str, available_columns: Sequence[str] = ()) -> IntentClassificationResult:
        """
        Classify a query and extract its entities.

        Args:
            query: Natural-language question
            available_columns: Column names of the dataset being asked about

        Returns:
            IntentClassificationResult with the winning intent, up to three
            alternatives and the full ranked match list

        Raises:
            ClassificationError: If the query is not a string
        """
        if query is not None and not isinstance(query, str):
            raise ClassificationError(f"Query must be text, got {type(query).__name__}", query=repr(query))

        start_time = time.perf_counter()
        normalized = (query or "").lower().strip()
        columns = list(available_columns)

        ranked = self.match_patterns(normalized)
        best = ranked[0] if ranked else _UNKNOWN_MATCH

        entities = self.extract_entities(normalized, best.type, columns)
        intent = self._build_intent(query or "", best, entities)

        processing_time_ms = (time.perf_counter() - start_time) * 1000
        self.logger.debug(
            f"Classified '{normalized[:50]}' as {intent.type.value} "
            f"(confidence: {intent.confidence:.2f}, {len(entities)} entities)"
        )

        return IntentClassificationResult(
            intent=intent,
            alternatives=ranked[1:4],
            ranked_matches=ranked,
            processing_time_ms=processing_time_ms
        )

    def match_patterns(self, query: str) -> List[PatternMatch]:
        """Return every matching pattern, ranked by confidence (stable for ties)."""
        matches = [
            PatternMatch(
                type=rule.type,
                confidence=rule.confidence,
                reason=f"Matched pattern: {rule.pattern.pattern}"
            )
            for rule in self.patterns
            if rule.matches(query)
        ]
        return sorted(matches, key=lambda match: match.confidence, reverse=True)

    def extract_entities(self, query: str, intent_type: QueryType,
                         available_columns: Sequence[str]) -> List[QueryEntity]:
        """
        Extract entities for the given intent type and resolve them to columns.
        """
        entities: List[QueryEntity] = []
        rule = self._pattern_for(intent_type)

        if rule is not None:
            for entity_type in (EntityType.MEASURE, EntityType.DIMENSION, EntityType.TIME):
                preferred = ("date", "time") if entity_type == EntityType.TIME else ()
                resolved_conf, unresolved_conf = _ENTITY_CONFIDENCE[entity_type]
                for value in self._scan(query, rule.extractors.get(entity_type, [])):
                    column = self.find_best_column_match(value, available_columns, preferred)
                    entities.append(QueryEntity(
                        type=entity_type,
                        value=value,
                        column=column,
                        confidence=resolved_conf if column else unresolved_conf
                    ))

            for regex in rule.extractors.get(EntityType.LIMIT, []):
                for match in regex.finditer(query):
                    if match.group(1):
                        entities.append(QueryEntity(type=EntityType.LIMIT, value=match.group(1), confidence=0.9))

        if intent_type == QueryType.FILTER:
            # Marker entity so a filter query is never treated as cacheable
            entities.append(QueryEntity(type=EntityType.FILTER, value="filter_condition", confidence=0.8))

        if rule is not None:
            for regex in rule.extractors.get(EntityType.FILTER, []):
                for match in regex.finditer(query):
                    entities.append(QueryEntity(
                        type=EntityType.FILTER,
                        value=_match_value(match),
                        operator=FILTER_OPERATORS.get(match.group(1)),
                        confidence=0.7
                    ))

        entities.extend(self._sweep_columns(query, available_columns, entities))
        return entities

    def find_best_column_match(self, term: str, available_columns: Sequence[str],
                               preferred_types: Sequence[str] = ()) -> Optional[str]:
        """
        Resolve a token to a column: exact match, then a preferred-type
        substring match, then any substring match in either direction.
        """
        lower_term = term.lower()

        for column in available_columns:
            if column.lower() == lower_term:
                return column

        if preferred_types:
            for column in available_columns:
                lower_column = column.lower()
                if lower_term in lower_column and any(kind in lower_column for kind in preferred_types):
                    return column

        for column in available_columns:
            lower_column = column.lower()
            if lower_term in lower_column or lower_column in lower_term:
                return column

        return None

    def should_use_llm(self, intent_type: QueryType, confidence: float) -> bool:
        if intent_type in (QueryType.UNKNOWN, QueryType.RELATIONSHIP):
            return True
        return confidence < self.thresholds.llm_required_confidence

    def can_cache_query(self, intent_type: QueryType, entities: Sequence[QueryEntity]) -> bool:
        if intent_type == QueryType.PROFILE:
            return True
        return not any(entity.type == EntityType.FILTER for entity in entities)

    def estimate_query_cost(self, intent_type: QueryType, entities: Sequence[QueryEntity]) -> int:
        cost = BASE_COSTS.get(intent_type, 1)
        if len(entities) > 3:
            cost += 2
        if len(entities) > 6:
            cost += 3
        return min(cost, 10)

    def _build_intent(self, query: str, best: PatternMatch, entities: List[QueryEntity]) -> QueryIntent:
        time_entity = next((e for e in entities if e.type == EntityType.TIME), None)
        limit_entity = next((e for e in entities if e.type == EntityType.LIMIT), None)

        return QueryIntent(
            type=best.type,
            confidence=best.confidence,
            original_query=query,
            entities=entities,
            measures=_names(entities, EntityType.MEASURE),
            dimensions=_names(entities, EntityType.DIMENSION),
            filters=[e for e in entities if e.type == EntityType.FILTER],
            time_column=time_entity.column if time_entity else None,
            limit=int(limit_entity.value) if limit_entity else None,
            sort_direction=_sort_direction(query.lower()),
            requires_llm=self.should_use_llm(best.type, best.confidence),
            can_use_cache=self.can_cache_query(best.type, entities),
            estimated_cost=self.estimate_query_cost(best.type, entities)
        )

    def _pattern_for(self, intent_type: QueryType) -> Optional[QueryPattern]:
        return next((rule for rule in self.patterns if rule.type == intent_type), None)

    def _scan(self, query: str, regexes: Sequence[Pattern]) -> List[str]:
        return [_match_value(match) for regex in regexes for match in regex.finditer(query)]

    def _sweep_columns(self, query: str, available_columns: Sequence[str],
                       found: Sequence[QueryEntity]) -> List[QueryEntity]:
        """Add every column literally named in the query that was not already found."""
        swept: List[QueryEntity] = []
        for column in available_columns:
            lower_column = column.lower()
            if lower_column not in query:
                continue

            is_measure = any(word in lower_column for word in MEASURE_LEXICON)
            entity_type = EntityType.MEASURE if is_measure else EntityType.DIMENSION
            already_found = any(
                entity.column == column and entity.type == entity_type
                for entity in list(found) + swept
            )
            if not already_found:
                swept.append(QueryEntity(type=entity_type, value=column, column=column, confidence=0.9))
        return swept


def _sort_direction(query: str) -> Optional[str]:
    if not SORT_PATTERN.search(query):
        return None
    return "asc" if ASCENDING_PATTERN.search(query) else "desc"


def _match_value(match) -> str:
    """Last non-empty capture group, else the whole match."""
    for group in reversed(match.groups()):
        if group:
            return group
    return match.group(0)


def _names(entities: Sequence[QueryEntity], entity_type: EntityType) -> List[str]:
    names: List[str] = []
    for entity in entities:
        if entity.type == entity_type:
            name = entity.column or entity.value
            if name not in names:
                names.append(name)
    return names
