"""
Agent adapters that run external collaborators inside the execution envelope.
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from ..models import (
    AgentExecutionContext,
    AgentType,
    DataProfile,
    ExecutionPlan,
    QueryIntent,
    SemanticExecutionResult,
    UploadedFile,
    VisualizationConfig,
)
from .base import BaseAgent
from .interfaces import ChartRenderer, Profiler, SecurityAssessor, SemanticExecutor


@dataclass(frozen=True)
class SemanticExecutorInput:
    intent: QueryIntent
    profile: DataProfile
    plan: ExecutionPlan


@dataclass(frozen=True)
class ChartInput:
    data: List[Dict[str, Any]]
    visualization: VisualizationConfig
    options: Dict[str, Any] = field(default_factory=dict)


class ProfilingAgent(BaseAgent):
    """Profiles an uploaded file through the profiling collaborator."""

    agent_type = AgentType.PROFILING
    name = "ProfilingAgent"

    def __init__(self, profiler: Profiler, **kwargs):
        super().__init__(**kwargs)
        self.profiler = profiler

    def validate_input(self, input_data: Any) -> bool:
        return isinstance(input_data, UploadedFile) and len(input_data.content) > 0

    def execute_internal(self, input_data: UploadedFile, context: AgentExecutionContext) -> DataProfile:
        self.logger.info(f"Profiling {input_data.name} ({input_data.size} bytes)")
        profile = self.profiler.profile(input_data)
        self.logger.info(
            f"Profiled {input_data.name}: {profile.metadata.row_count} rows, "
            f"{len(profile.schema.columns)} columns"
        )
        return profile


class SecurityAgent(BaseAgent):
    """Assesses a profile for sensitive data."""

    agent_type = AgentType.SECURITY
    name = "SecurityAgent"

    def __init__(self, assessor: SecurityAssessor, **kwargs):
        super().__init__(**kwargs)
        self.assessor = assessor

    def validate_input(self, input_data: Any) -> bool:
        return isinstance(input_data, DataProfile) and bool(input_data.id)

    def execute_internal(self, input_data: DataProfile, context: AgentExecutionContext) -> Dict[str, Any]:
        return self.assessor.assess(input_data)


class SemanticExecutorAgent(BaseAgent):
    """
    Executes a plan through the semantic executor collaborator.

    Results of plans carrying a cache key are memoised per cache key and
    profile id in a bounded LRU; a served entry is flagged as a cache hit.
    """

    agent_type = AgentType.SEMANTIC_EXECUTOR
    name = "SemanticExecutorAgent"

    def __init__(self, executor: SemanticExecutor, cache_size: int = 128, **kwargs):
        super().__init__(**kwargs)
        self.executor = executor
        self.cache_size = cache_size
        self._cache: "OrderedDict[tuple, SemanticExecutionResult]" = OrderedDict()
        self._cache_lock = threading.Lock()

    def validate_input(self, input_data: Any) -> bool:
        return (isinstance(input_data, SemanticExecutorInput)
                and input_data.profile is not None
                and input_data.plan is not None)

    def execute_internal(self, input_data: SemanticExecutorInput,
                         context: AgentExecutionContext) -> SemanticExecutionResult:
        key = self._cache_key(input_data)

        if key is not None:
            with self._cache_lock:
                cached = self._cache.get(key)
                if cached is not None:
                    self._cache.move_to_end(key)
            if cached is not None:
                self.logger.debug(f"Serving cached result for {key[0]}")
                return replace(cached, metadata={**cached.metadata, "cache_hit": True})

        result = self.executor.execute(input_data.intent, input_data.profile, input_data.plan)

        if key is not None and not result.requires_llm_processing:
            with self._cache_lock:
                self._cache[key] = result
                while len(self._cache) > self.cache_size:
                    self._cache.popitem(last=False)

        return result

    def was_cache_hit(self, data: Any) -> bool:
        return isinstance(data, SemanticExecutionResult) and bool(data.metadata.get("cache_hit"))

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def dispose(self) -> None:
        self.clear_cache()
        super().dispose()

    def _cache_key(self, input_data: SemanticExecutorInput) -> Optional[tuple]:
        if not input_data.plan.cache_key:
            return None
        return (input_data.plan.cache_key, input_data.profile.id)


class ChartAgent(BaseAgent):
    """Renders a chart for executed data; output is advisory."""

    agent_type = AgentType.CHART
    name = "ChartAgent"

    def __init__(self, renderer: ChartRenderer, **kwargs):
        super().__init__(**kwargs)
        self.renderer = renderer

    def validate_input(self, input_data: Any) -> bool:
        return isinstance(input_data, ChartInput) and input_data.visualization is not None

    def execute_internal(self, input_data: ChartInput, context: AgentExecutionContext) -> Any:
        return self.renderer.render(input_data.data, input_data.visualization)
