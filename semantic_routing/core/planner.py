"""
Query Planner agent: turns a classified intent into a cost-estimated execution plan.
"""

import json
import math
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..models import (
    AgentExecutionContext,
    AgentType,
    DataProfile,
    ExecutionPlan,
    IntentClassificationResult,
    PlanStep,
    QueryIntent,
    QueryPlannerResult,
    QueryType,
    RoutingThresholds,
    StepType,
    VisualizationConfig,
)
from .base import BaseAgent
from .classifier import IntentClassifier


@dataclass(frozen=True)
class QueryPlannerInput:
    query: str
    profile: DataProfile


CACHEABLE_TYPES = frozenset({
    QueryType.PROFILE,
    QueryType.AGGREGATION,
    QueryType.COMPARISON,
    QueryType.DISTRIBUTION,
})

PLAN_BASE_COSTS: Dict[QueryType, int] = {
    QueryType.PROFILE: 1,
    QueryType.FILTER: 2,
    QueryType.AGGREGATION: 3,
    QueryType.TREND: 4,
    QueryType.COMPARISON: 5,
    QueryType.DISTRIBUTION: 6,
    QueryType.RANKING: 4,
    QueryType.RELATIONSHIP: 7,
    QueryType.UNKNOWN: 10,
}

# Fixed per-step estimates in milliseconds
STEP_TIMES_MS = {
    StepType.LOAD: 50,
    StepType.FILTER: 20,
    StepType.AGGREGATE: 100,
    StepType.SORT: 30,
    StepType.LIMIT: 5,
}

LLM_FALLBACK_TIME_MS = 5000
LLM_FALLBACK_COST = 8

_CHART_TYPES = {
    QueryType.TREND: "line",
    QueryType.COMPARISON: "bar",
    QueryType.DISTRIBUTION: "heatmap",
    QueryType.RANKING: "bar",
}


class QueryPlannerAgent(BaseAgent):
    """
    Plans structured execution for a query or marks it for LLM fallback.
    """

    agent_type = AgentType.QUERY_PLANNING
    name = "QueryPlannerAgent"

    def __init__(self, classifier: Optional[IntentClassifier] = None,
                 thresholds: Optional[RoutingThresholds] = None, **kwargs):
        super().__init__(**kwargs)
        self.thresholds = thresholds or RoutingThresholds()
        self.classifier = classifier or IntentClassifier(thresholds=self.thresholds)
        self.logger.info("QueryPlannerAgent initialized with IntentClassifier")

    def validate_input(self, input_data: Any) -> bool:
        input_data = _coerce_input(input_data)
        if input_data is None:
            return False
        if not isinstance(input_data.query, str) or not input_data.query.strip():
            return False
        profile = input_data.profile
        return bool(profile is not None and profile.id and profile.schema is not None
                    and profile.schema.columns is not None)

    def execute_internal(self, input_data: Any, context: AgentExecutionContext) -> QueryPlannerResult:
        request = _coerce_input(input_data)
        self.logger.info(f"Planning query: \"{request.query}\"")

        # Step 1: Classify the query intent
        classification = self.classifier.classify_intent(request.query, request.profile.column_names())
        intent = classification.intent
        self.logger.info(f"Query classified as: {intent.type.value} (confidence: {intent.confidence})")

        # Step 2: Generate execution plan
        plan = self.generate_execution_plan(classification, request.profile)

        # Step 3: Suggest a visualization
        visualization = self.suggest_visualization(intent)

        self.logger.info(
            f"Query planning completed: {len(plan.steps)} steps, "
            f"fallback_to_llm={plan.fallback_to_llm}"
        )

        return QueryPlannerResult(
            query_intent=intent,
            execution_plan=plan,
            visualization=visualization,
            alternatives=classification.alternatives
        )

    def generate_execution_plan(self, classification: IntentClassificationResult,
                                profile: DataProfile) -> ExecutionPlan:
        """
        Build the execution plan for a classified intent.

        Args:
            classification: Classifier output for the query
            profile: Profile of the dataset being queried

        Returns:
            ExecutionPlan with either semantic steps or a single LLM step
        """
        intent = classification.intent
        plan_id = f"plan-{uuid.uuid4().hex[:12]}"
        fallback_to_llm = (intent.confidence < self.thresholds.planner_fallback_confidence
                           or intent.type == QueryType.UNKNOWN)

        if fallback_to_llm:
            steps = [PlanStep(
                id="llm-fallback",
                type=StepType.TRANSFORM,
                operation="llm_analysis",
                params={
                    "query": intent.original_query or "complex query",
                    "fallback_reason": "low_confidence",
                },
                estimated_time_ms=LLM_FALLBACK_TIME_MS,
                depends_on=[]
            )]
            estimated_time = LLM_FALLBACK_TIME_MS
            estimated_cost = LLM_FALLBACK_COST
            optimizations: List[str] = []
        else:
            steps = self.generate_semantic_steps(intent, profile)
            estimated_time = self.estimate_execution_time(steps, profile)
            estimated_cost = self.estimate_query_cost(intent.type, intent.confidence)
            optimizations = self.identify_optimizations(intent, profile)

        return ExecutionPlan(
            id=plan_id,
            steps=steps,
            estimated_time_ms=estimated_time,
            estimated_cost=estimated_cost,
            fallback_to_llm=fallback_to_llm,
            optimizations=optimizations,
            cache_key=self.generate_cache_key(intent)
        )

    def generate_semantic_steps(self, intent: QueryIntent, profile: DataProfile) -> List[PlanStep]:
        """Emit load, filter, aggregate, sort and limit steps, each depending on the previous one."""
        steps: List[PlanStep] = []

        def add_step(step_type: StepType, operation: str, params: Dict[str, Any]) -> None:
            depends_on = [steps[-1].id] if steps else []
            steps.append(PlanStep(
                id=f"step-{len(steps) + 1}",
                type=step_type,
                operation=operation,
                params=params,
                estimated_time_ms=STEP_TIMES_MS[step_type],
                depends_on=depends_on
            ))

        add_step(StepType.LOAD, "load_profile_data", {"profile_id": profile.id})

        for condition in intent.filters:
            add_step(StepType.FILTER, "apply_filter", condition.to_dict())

        if intent.measures:
            add_step(StepType.AGGREGATE, "compute_aggregation", {
                "measures": list(intent.measures),
                "dimensions": list(intent.dimensions),
                "aggregation_type": intent.type.value,
            })

        if intent.type == QueryType.RANKING or intent.sort_direction:
            add_step(StepType.SORT, "apply_sort", {
                "columns": list(intent.measures or intent.dimensions),
                "direction": intent.sort_direction or "desc",
            })

        if intent.limit:
            add_step(StepType.LIMIT, "apply_limit", {"limit": intent.limit})

        return steps

    def estimate_execution_time(self, steps: List[PlanStep], profile: DataProfile) -> int:
        complexity = math.log10(profile.metadata.row_count + 1)
        total = sum(step.estimated_time_ms * (1 + complexity * 0.1) for step in steps)
        return round(total)

    def estimate_query_cost(self, query_type: QueryType, confidence: float) -> int:
        base_cost = PLAN_BASE_COSTS.get(query_type, 5)
        return round(base_cost * (1 + (1 - confidence) * 0.5))

    def generate_cache_key(self, intent: QueryIntent) -> Optional[str]:
        """Deterministic key from the intent's semantic shape, or None when not cacheable."""
        if not self.is_cacheable(intent):
            return None

        key_parts = [
            intent.type.value,
            json.dumps(list(intent.measures)),
            json.dumps(list(intent.dimensions)),
            json.dumps([condition.to_dict() for condition in intent.filters], sort_keys=True),
        ]
        return "query_" + "_".join(key_parts)

    def is_cacheable(self, intent: QueryIntent) -> bool:
        return intent.type in CACHEABLE_TYPES and not intent.filters

    def identify_optimizations(self, intent: QueryIntent, profile: DataProfile) -> List[str]:
        optimizations = []

        if self.is_cacheable(intent):
            optimizations.append("cacheable")

        if intent.filters:
            optimizations.append("predicate_pushdown")

        if intent.measures and len(intent.measures) < profile.metadata.column_count:
            optimizations.append("column_pruning")

        if intent.dimensions:
            optimizations.append("index_usage")

        return optimizations

    def suggest_visualization(self, intent: QueryIntent) -> VisualizationConfig:
        measures, dimensions = intent.measures, intent.dimensions

        if intent.type == QueryType.RELATIONSHIP:
            return VisualizationConfig(
                type="scatter",
                x_axis=measures[0] if measures else None,
                y_axis=measures[1] if len(measures) > 1 else None
            )

        chart_type = _CHART_TYPES.get(intent.type)
        if chart_type is None:
            return VisualizationConfig(type="table")

        return VisualizationConfig(
            type=chart_type,
            x_axis=dimensions[0] if dimensions else None,
            y_axis=measures[0] if measures else None
        )


def _coerce_input(input_data: Any) -> Optional[QueryPlannerInput]:
    """Accept either a QueryPlannerInput or a ``{"query", "profile"}`` mapping."""
    if isinstance(input_data, QueryPlannerInput):
        return input_data
    if isinstance(input_data, dict) and "query" in input_data and "profile" in input_data:
        return QueryPlannerInput(query=input_data["query"], profile=input_data["profile"])
    return None
