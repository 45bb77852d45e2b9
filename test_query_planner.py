"""
Tests for the query planner agent.
"""

import pytest

from semantic_routing.models import QueryType, StepType
from semantic_routing.core.planner import QueryPlannerAgent, QueryPlannerInput
from semantic_routing.utils.error_handling import AgentValidationError

from conftest import make_profile


@pytest.fixture
def planner():
    return QueryPlannerAgent()


def plan_for(planner, context, query, columns=("sales", "region"), row_count=999):
    result = planner.execute(QueryPlannerInput(query=query, profile=make_profile(columns, row_count)), context)
    assert result.success, result.error
    return result.data


def test_aggregation_plan(planner, context):
    planned = plan_for(planner, context, "Sum of sales by region")
    plan = planned.execution_plan

    assert planned.query_intent.type == QueryType.AGGREGATION
    assert not plan.fallback_to_llm
    assert [step.type for step in plan.steps] == [StepType.LOAD, StepType.AGGREGATE]
    assert plan.steps[1].params["measures"] == ["sales"]
    assert plan.steps[1].params["dimensions"] == ["region"]
    assert plan.estimated_time_ms == 195
    assert plan.estimated_cost == 3
    assert plan.cache_key == 'query_aggregation_["sales"]_["region"]_[]'
    assert plan.optimizations == ["cacheable", "column_pruning", "index_usage"]


def test_steps_form_a_chain(planner, context):
    plan = plan_for(planner, context, "Top 3 sales by region").execution_plan

    ids = [step.id for step in plan.steps]
    assert ids == [f"step-{n}" for n in range(1, len(ids) + 1)]
    assert plan.steps[0].depends_on == []
    for previous, step in zip(plan.steps, plan.steps[1:]):
        assert step.depends_on == [previous.id]


def test_ranking_plan_sorts_and_limits(planner, context):
    planned = plan_for(planner, context, "Top 3 sales by region")
    plan = planned.execution_plan

    assert planned.query_intent.type == QueryType.RANKING
    assert [step.type for step in plan.steps] == [
        StepType.LOAD, StepType.AGGREGATE, StepType.SORT, StepType.LIMIT,
    ]
    assert plan.steps[2].params == {"columns": ["sales"], "direction": "desc"}
    assert plan.steps[3].params == {"limit": 3}
    assert plan.cache_key is None


def test_filter_plan_pushes_predicates_and_skips_cache(planner, context):
    plan = plan_for(planner, context, "Show only sales > 1000").execution_plan

    filter_steps = [step for step in plan.steps if step.type == StepType.FILTER]
    assert len(filter_steps) == 2
    assert filter_steps[1].params["operator"] == "gt"
    assert plan.cache_key is None
    assert "predicate_pushdown" in plan.optimizations
    assert "cacheable" not in plan.optimizations


def test_unknown_query_falls_back_to_llm(planner, context):
    planned = plan_for(planner, context, "Why is the sky blue?")
    plan = planned.execution_plan

    assert planned.query_intent.type == QueryType.UNKNOWN
    assert plan.fallback_to_llm
    assert len(plan.steps) == 1
    step = plan.steps[0]
    assert step.id == "llm-fallback"
    assert step.operation == "llm_analysis"
    assert step.params["fallback_reason"] == "low_confidence"
    assert plan.estimated_time_ms == 5000
    assert plan.estimated_cost == 8
    assert plan.cache_key is None
    assert plan.optimizations == []


def test_equivalent_queries_share_cache_key(planner, context):
    first = plan_for(planner, context, "Sum of sales").execution_plan
    second = plan_for(planner, context, "Total sales").execution_plan

    assert first.cache_key == 'query_aggregation_["sales"]_[]_[]'
    assert first.cache_key == second.cache_key
    assert first.id != second.id


@pytest.mark.parametrize("query,query_type,cache_key", [
    ("Show me an overview", QueryType.PROFILE, "query_profile_[]_[]_[]"),
    ("Sum of sales by region", QueryType.AGGREGATION, 'query_aggregation_["sales"]_["region"]_[]'),
    ("Compare sales by region", QueryType.COMPARISON, 'query_comparison_["sales"]_["region"]_[]'),
    ("Distribution of sales", QueryType.DISTRIBUTION, 'query_distribution_["sales"]_[]_[]'),
])
def test_cacheable_intent_types_get_a_key(planner, context, query, query_type, cache_key):
    planned = plan_for(planner, context, query)

    assert planned.query_intent.type == query_type
    assert planned.execution_plan.cache_key == cache_key
    assert "cacheable" in planned.execution_plan.optimizations


def test_trend_without_filters_has_no_cache_key(planner, context):
    planned = plan_for(planner, context, "Show sales trends over time")

    assert planned.query_intent.type == QueryType.TREND
    assert planned.query_intent.filters == []
    assert planned.execution_plan.cache_key is None


def test_explicit_sort_adds_sort_step(planner, context):
    plan = plan_for(planner, context, "Sum of sales by region sorted by sales ascending").execution_plan

    assert [step.type for step in plan.steps] == [StepType.LOAD, StepType.AGGREGATE, StepType.SORT]
    assert plan.steps[2].params == {"columns": ["sales"], "direction": "asc"}


def test_explicit_sort_defaults_to_descending(planner, context):
    plan = plan_for(planner, context, "Total sales by region ordered by sales").execution_plan

    assert plan.steps[-1].type == StepType.SORT
    assert plan.steps[-1].params["direction"] == "desc"


def test_relationship_suggests_scatter(planner, context):
    planned = plan_for(planner, context, "Correlation between price and sales", columns=("price", "sales"))

    assert planned.visualization.type == "scatter"
    assert planned.visualization.x_axis == "price"
    assert planned.visualization.y_axis == "sales"


def test_trend_suggests_line_chart(planner, context):
    planned = plan_for(planner, context, "Show sales trend by date", columns=("order_date", "sales"))

    assert planned.visualization.type == "line"
    assert planned.visualization.y_axis == "sales"


def test_cost_grows_as_confidence_drops(planner):
    assert planner.estimate_query_cost(QueryType.AGGREGATION, 1.0) == 3
    assert planner.estimate_query_cost(QueryType.RELATIONSHIP, 0.0) == 10


@pytest.mark.parametrize("bad_input", [
    None,
    "Sum of sales",
    QueryPlannerInput(query="   ", profile=make_profile()),
    QueryPlannerInput(query="Sum of sales", profile=None),
])
def test_invalid_input_is_rejected(planner, context, bad_input):
    result = planner.execute(bad_input, context)

    assert not result.success
    assert isinstance(result.error, AgentValidationError)


def test_mapping_input_is_accepted(planner, context):
    result = planner.execute({"query": "Sum of sales", "profile": make_profile()}, context)

    assert result.success
    assert result.data.query_intent.measures == ["sales"]
