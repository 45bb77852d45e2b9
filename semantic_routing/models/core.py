"""
Core data models for query classification, planning, execution and routing.
"""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Any, Optional, List

from .enums import (
    AgentType,
    AnalysisType,
    ChunkType,
    EntityType,
    QueryType,
    RoutingStrategy,
    StepType,
)


# ---------------------------------------------------------------------------
# Agent execution envelope
# ---------------------------------------------------------------------------

class CancellationToken:
    """
    Shared between an agent's worker thread and its timeout timer.

    Whichever side claims the token first wins: once the timer has cancelled
    it, ``commit`` returns False and the worker must not publish any state;
    once the worker has committed, ``cancel`` returns False and the envelope
    waits for the result instead of reporting a timeout.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._state = "active"

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._state == "cancelled"

    def cancel(self) -> bool:
        with self._lock:
            if self._state == "committed":
                return False
            self._state = "cancelled"
            return True

    def commit(self) -> bool:
        with self._lock:
            if self._state == "cancelled":
                return False
            self._state = "committed"
            return True


@dataclass(frozen=True)
class AgentExecutionContext:
    """Per-invocation execution context passed into an agent envelope."""
    request_id: str
    start_time: datetime
    timeout_ms: int
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    # Set by the envelope for the duration of one execute_internal call
    cancellation: Optional[CancellationToken] = field(default=None, compare=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancellation is not None and self.cancellation.cancelled


def create_execution_context(request_id: str, timeout_ms: int = 30000,
                             user_id: Optional[str] = None,
                             session_id: Optional[str] = None) -> AgentExecutionContext:
    """Create an execution context starting now."""
    return AgentExecutionContext(
        request_id=request_id,
        start_time=datetime.now(),
        timeout_ms=timeout_ms,
        user_id=user_id,
        session_id=session_id,
    )


@dataclass(frozen=True)
class AgentMetrics:
    """Execution metrics recorded for one agent invocation."""
    execution_time_ms: float = 0.0
    memory_used_bytes: int = 0
    cache_hit: bool = False


@dataclass(frozen=True)
class AgentResult:
    """Outcome of a single agent execution."""
    success: bool
    data: Any = None
    error: Optional[Exception] = None
    metrics: AgentMetrics = field(default_factory=AgentMetrics)
    warnings: List[str] = field(default_factory=list)


@dataclass
class AgentHealthStatus:
    """Health snapshot computed from an agent's cumulative counters."""
    healthy: bool
    last_check: datetime
    uptime_ms: float
    total_executions: int
    successful_executions: int
    success_rate: float
    avg_execution_time_ms: float
    error_count: int
    errors: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Intent classification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QueryEntity:
    """A token extracted from a query, optionally resolved to a column."""
    type: EntityType
    value: str
    confidence: float
    column: Optional[str] = None
    operator: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type.value, "value": self.value, "confidence": self.confidence}
        if self.column is not None:
            data["column"] = self.column
        if self.operator is not None:
            data["operator"] = self.operator
        return data


@dataclass(frozen=True)
class QueryIntent:
    """Classified purpose of a query plus everything extracted from it."""
    type: QueryType
    confidence: float
    original_query: str
    entities: List[QueryEntity] = field(default_factory=list)
    measures: List[str] = field(default_factory=list)
    dimensions: List[str] = field(default_factory=list)
    filters: List[QueryEntity] = field(default_factory=list)
    time_column: Optional[str] = None
    limit: Optional[int] = None
    sort_direction: Optional[str] = None
    requires_llm: bool = False
    can_use_cache: bool = True
    estimated_cost: int = 1


@dataclass(frozen=True)
class PatternMatch:
    """One matched pattern from the ordered pattern list."""
    type: QueryType
    confidence: float
    reason: str


@dataclass(frozen=True)
class IntentClassificationResult:
    """Classifier output: winning intent and ranked pattern matches."""
    intent: QueryIntent
    alternatives: List[PatternMatch]
    ranked_matches: List[PatternMatch]
    processing_time_ms: float


# ---------------------------------------------------------------------------
# Query planning
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlanStep:
    """A single step of an execution plan DAG."""
    id: str
    type: StepType
    operation: str
    params: Dict[str, Any]
    estimated_time_ms: float
    depends_on: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered, cost-estimated steps for answering a classified query."""
    id: str
    steps: List[PlanStep]
    estimated_time_ms: float
    estimated_cost: int
    fallback_to_llm: bool
    optimizations: List[str] = field(default_factory=list)
    cache_key: Optional[str] = None


@dataclass(frozen=True)
class VisualizationConfig:
    """Advisory chart suggestion derived from the intent type."""
    type: str
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None


@dataclass(frozen=True)
class QueryPlannerResult:
    """Output of the query planner agent."""
    query_intent: QueryIntent
    execution_plan: ExecutionPlan
    visualization: Optional[VisualizationConfig] = None
    alternatives: List[PatternMatch] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Data profile contract
# ---------------------------------------------------------------------------

@dataclass
class ColumnProfile:
    """Column name and inferred type supplied by the profiler."""
    name: str
    type: str = "text"


@dataclass
class SchemaProfile:
    columns: List[ColumnProfile] = field(default_factory=list)


@dataclass
class FileMetadata:
    filename: str = ""
    size: int = 0
    row_count: int = 0
    column_count: int = 0


@dataclass
class DataProfile:
    """Profile of an uploaded dataset as produced by the profiling collaborator."""
    id: str
    metadata: FileMetadata = field(default_factory=FileMetadata)
    schema: SchemaProfile = field(default_factory=SchemaProfile)
    security: Optional[Dict[str, Any]] = None
    sample_data: List[Dict[str, Any]] = field(default_factory=list)

    def column_names(self) -> List[str]:
        return [column.name for column in self.schema.columns]


@dataclass(frozen=True)
class UploadedFile:
    """An uploaded file and its metadata."""
    content: bytes
    name: str
    mime_type: str
    size: int


# ---------------------------------------------------------------------------
# Execution and analysis results
# ---------------------------------------------------------------------------

@dataclass
class SemanticExecutionResult:
    """Result returned by the semantic executor collaborator."""
    data: List[Dict[str, Any]] = field(default_factory=list)
    insights: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    suggestions: List[str] = field(default_factory=list)
    requires_llm_processing: bool = False
    llm_fallback_reason: Optional[str] = None


@dataclass
class GeneratedInsight:
    type: str
    title: str
    description: str
    confidence: float
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AnalysisMetadata:
    execution_time_ms: float = 0.0
    data_points: int = 0
    cache_hit: bool = False
    agent_path: List[AgentType] = field(default_factory=list)


@dataclass
class AnalysisResult:
    """Final answer returned by the orchestrator's query pipeline."""
    id: str
    query: str
    intent: QueryIntent
    execution_plan: ExecutionPlan
    data: List[Dict[str, Any]] = field(default_factory=list)
    insights: List[GeneratedInsight] = field(default_factory=list)
    chart: Any = None
    metadata: AnalysisMetadata = field(default_factory=AnalysisMetadata)
    suggestions: List[str] = field(default_factory=list)
    response: Optional[str] = None


# ---------------------------------------------------------------------------
# Conversation state and routing
# ---------------------------------------------------------------------------

@dataclass
class ConversationTurn:
    """One user/agent exchange kept in a session's history."""
    id: str
    user_message: str
    agent_response: str
    agent_path: List[AgentType]
    confidence: float
    strategy: Optional[RoutingStrategy] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class AnalysisReference:
    """A compact reference to a prior analysis in the session."""
    id: str
    query: str
    result: Dict[str, Any]
    type: AnalysisType
    confidence: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class UserPreferences:
    preferred_chart_types: List[str] = field(default_factory=lambda: ["bar", "line", "pie"])
    detail_level: str = "detailed"
    include_insights: bool = True
    include_visualization: bool = True


@dataclass
class ConversationContext:
    """Per-session mutable conversation state."""
    session_id: str
    history: List[ConversationTurn] = field(default_factory=list)
    previous_analyses: List[AnalysisReference] = field(default_factory=list)
    current_data_profile: Optional[DataProfile] = None
    csv_content: Optional[str] = None
    user_preferences: UserPreferences = field(default_factory=UserPreferences)

    max_history: int = 10
    max_analyses: int = 5

    def has_data(self) -> bool:
        return bool(self.csv_content or self.current_data_profile)

    def add_turn(self, turn: ConversationTurn) -> None:
        self.history.append(turn)
        self.history = self.history[-self.max_history:]

    def add_analysis(self, reference: AnalysisReference) -> None:
        self.previous_analyses.append(reference)
        self.previous_analyses = self.previous_analyses[-self.max_analyses:]


@dataclass(frozen=True)
class ContextPatch:
    """The only conversation context fields a caller may override."""
    current_data_profile: Optional[DataProfile] = None
    csv_content: Optional[str] = None
    user_preferences: Optional[UserPreferences] = None


def apply_context_patch(context: ConversationContext, patch: Optional[ContextPatch]) -> ConversationContext:
    """Apply the non-empty fields of a patch onto a context in place."""
    if patch is None:
        return context
    if patch.current_data_profile is not None:
        context.current_data_profile = patch.current_data_profile
    if patch.csv_content is not None:
        context.csv_content = patch.csv_content
    if patch.user_preferences is not None:
        context.user_preferences = replace(patch.user_preferences)
    return context


@dataclass(frozen=True)
class ConversationInput:
    """Request handled by the conversation/routing agent."""
    session_id: str
    query: str
    file_id: Optional[str] = None
    context_patch: Optional[ContextPatch] = None
    prefer_semantic_layer: bool = False


@dataclass
class ConversationOutput:
    """Response produced by the conversation/routing agent."""
    response: str
    agent_path: List[AgentType]
    confidence: float
    used_semantic_layer: bool
    insights: List[GeneratedInsight] = field(default_factory=list)
    followup_suggestions: List[str] = field(default_factory=list)
    strategy: RoutingStrategy = RoutingStrategy.LLM_ONLY


@dataclass(frozen=True)
class RoutingDecision:
    """Strategy chosen for one query with the reasons behind it."""
    strategy: RoutingStrategy
    confidence: float
    reasons: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class StreamChunk:
    """A chunk emitted by an LLM conversation stream."""
    type: ChunkType
    data: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Resource reporting
# ---------------------------------------------------------------------------

@dataclass
class MemoryStatus:
    used: int = 0
    peak: int = 0
    percentage: float = 0.0


@dataclass
class CpuStatus:
    load: float = 0.0
    cores: int = 1


@dataclass
class AgentActivity:
    active: int = 0
    queued: int = 0
    failed: int = 0


@dataclass
class ResourceStatus:
    """Coarse resource snapshot for caller-side admission control."""
    memory: MemoryStatus = field(default_factory=MemoryStatus)
    cpu: CpuStatus = field(default_factory=CpuStatus)
    agents: AgentActivity = field(default_factory=AgentActivity)
