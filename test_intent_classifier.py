"""
Tests for the rule-based intent classifier.
"""

import pytest

from semantic_routing.models import EntityType, QueryType
from semantic_routing.core.classifier import IntentClassifier
from semantic_routing.utils.error_handling import ClassificationError


SAMPLE_QUERIES = [
    "",
    "Sum of sales",
    "Average price by region",
    "Correlation between price and sales",
    "Show sales trend over time",
    "Top 10 customers by revenue",
    "Distribution of age",
    "Show only sales > 1000",
    "Compare sales vs revenue",
    "Give me an overview",
    "Why is the sky blue?",
]


@pytest.fixture
def classifier():
    return IntentClassifier()


def test_sum_of_sales(classifier):
    intent = classifier.classify_intent("Sum of sales", ["sales", "region"]).intent

    assert intent.type == QueryType.AGGREGATION
    assert intent.measures == ["sales"]
    assert intent.confidence > 0.8
    assert intent.requires_llm is False
    assert intent.estimated_cost == 3
    assert intent.can_use_cache is True


@pytest.mark.parametrize("query,direction", [
    ("Sum of sales", None),
    ("Sum of sales by region sorted by sales", "desc"),
    ("Total sales by region order by sales ascending", "asc"),
    ("Average price by region ordered by price, lowest first", "asc"),
])
def test_explicit_sort_request(classifier, query, direction):
    intent = classifier.classify_intent(query, ["sales", "region", "price"]).intent

    assert intent.type == QueryType.AGGREGATION
    assert intent.sort_direction == direction


def test_empty_query_is_unknown(classifier):
    result = classifier.classify_intent("", ["sales", "region"])

    assert result.intent.type == QueryType.UNKNOWN
    assert result.intent.confidence < 0.5
    assert result.intent.requires_llm is True
    assert result.intent.estimated_cost == 10
    assert result.alternatives == []


@pytest.mark.parametrize("query", SAMPLE_QUERIES)
def test_requires_llm_invariant(classifier, query):
    intent = classifier.classify_intent(query, ["sales", "price", "region", "age"]).intent

    if intent.confidence < 0.6 or intent.type in (QueryType.UNKNOWN, QueryType.RELATIONSHIP):
        assert intent.requires_llm
    assert 1 <= intent.estimated_cost <= 10


def test_relationship_always_requires_llm(classifier):
    intent = classifier.classify_intent("Correlation between price and sales", ["price", "sales"]).intent

    assert intent.type == QueryType.RELATIONSHIP
    assert intent.requires_llm
    assert intent.measures == ["price", "sales"]


def test_ranking_extracts_limit(classifier):
    intent = classifier.classify_intent("Top 10 customers by revenue", ["customer", "revenue"]).intent

    assert intent.type == QueryType.RANKING
    assert intent.limit == 10
    assert "revenue" in intent.measures


def test_trend_prefers_date_columns_for_time_entities(classifier):
    intent = classifier.classify_intent("Show sales trend by date", ["order_date", "sales"]).intent

    assert intent.type == QueryType.TREND
    assert intent.time_column == "order_date"
    assert intent.measures == ["sales"]


def test_filter_query_extracts_conditions_and_is_not_cacheable(classifier):
    intent = classifier.classify_intent("Show only sales > 1000", ["sales", "region"]).intent

    assert intent.type == QueryType.FILTER
    values = [entity.value for entity in intent.filters]
    assert values == ["filter_condition", "1000"]
    assert intent.filters[1].operator == "gt"
    assert intent.can_use_cache is False
    assert intent.measures == ["sales"]


def test_unresolved_entities_have_lower_confidence(classifier):
    intent = classifier.classify_intent("Sum of widgets", ["sales"]).intent

    measure = next(entity for entity in intent.entities if entity.type == EntityType.MEASURE)
    assert measure.value == "widgets"
    assert measure.column is None
    assert measure.confidence <= 0.6


def test_column_sweep_adds_dimensions(classifier):
    intent = classifier.classify_intent("Sum of sales by region", ["sales", "region"]).intent

    assert intent.dimensions == ["region"]
    assert intent.measures == ["sales"]


def test_column_sweep_does_not_duplicate_found_entities(classifier):
    intent = classifier.classify_intent("Sum of sales", ["sales"]).intent

    measures = [entity for entity in intent.entities if entity.type == EntityType.MEASURE]
    assert len(measures) == 1


def test_exact_column_match_is_case_insensitive(classifier):
    assert classifier.find_best_column_match("SALES", ["Region", "Sales"]) == "Sales"
    assert classifier.find_best_column_match("time", ["created_time", "time_zone_label"], ("date", "time")) == "created_time"
    assert classifier.find_best_column_match("rev", ["total_revenue"]) == "total_revenue"
    assert classifier.find_best_column_match("missing", ["sales"]) is None


def test_matches_are_ranked_by_confidence(classifier):
    result = classifier.classify_intent("Compare sales trend over time", ["sales"])

    confidences = [match.confidence for match in result.ranked_matches]
    assert confidences == sorted(confidences, reverse=True)
    assert result.intent.type == QueryType.TREND
    assert [match.type for match in result.alternatives] == [QueryType.COMPARISON]
    assert len(result.alternatives) <= 3


def test_list_order_breaks_confidence_ties(classifier):
    # trend and ranking share a confidence; trend is earlier in the pattern list
    result = classifier.classify_intent("Top sales growth", ["sales"])

    assert [match.type for match in result.ranked_matches[:2]] == [QueryType.TREND, QueryType.RANKING]
    assert result.intent.type == QueryType.TREND


def test_profile_pattern_is_evaluated_last(classifier):
    result = classifier.classify_intent("Give me a summary of total sales", ["sales"])

    assert result.intent.type == QueryType.AGGREGATION
    assert QueryType.PROFILE in [match.type for match in result.ranked_matches]


def test_entity_count_raises_cost(classifier):
    columns = ["sales", "revenue", "region", "category"]
    intent = classifier.classify_intent("Compare sales vs revenue by region and category", columns).intent

    assert intent.type == QueryType.COMPARISON
    assert len(intent.entities) == 4
    assert intent.estimated_cost == 8


def test_classification_is_idempotent(classifier):
    columns = ["sales", "region", "order_date"]
    for query in SAMPLE_QUERIES:
        first = classifier.classify_intent(query, columns).intent
        second = classifier.classify_intent(query, columns).intent
        assert first == second


def test_classification_is_fast(classifier):
    result = classifier.classify_intent("Show sales trend over time by region", ["sales", "region", "date"])

    assert result.processing_time_ms < 100


def test_non_text_query_is_rejected(classifier):
    with pytest.raises(ClassificationError) as exc_info:
        classifier.classify_intent(42, ["sales"])

    assert exc_info.value.error_code == "CLASSIFICATION_ERROR"
