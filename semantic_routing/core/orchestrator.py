"""
Agent Orchestrator for the Semantic Routing System.
"""

import os
import threading
import tracemalloc
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime
from pathlib import PurePath
from typing import Any, Dict, List, Optional

from ..models import (
    AgentActivity,
    AgentExecutionContext,
    AgentHealthStatus,
    AgentType,
    AnalysisMetadata,
    AnalysisResult,
    ContextPatch,
    ConversationInput,
    ConversationOutput,
    CpuStatus,
    DataProfile,
    ExecutionPlan,
    GeneratedInsight,
    MemoryStatus,
    PlanStep,
    QueryIntent,
    QueryPlannerResult,
    QueryType,
    ResourceStatus,
    SemanticExecutionResult,
    StepType,
    SystemConfig,
    UploadedFile,
    VisualizationConfig,
    create_execution_context,
)
from ..utils import RoutingLogger, get_logger
from ..utils.error_handling import (
    AgentError,
    AgentNotFoundError,
    DuplicateAgentError,
    FileValidationError,
    handle_error,
)
from .agents import (
    ChartAgent,
    ChartInput,
    ProfilingAgent,
    SecurityAgent,
    SemanticExecutorAgent,
    SemanticExecutorInput,
)
from .base import BaseAgent, retry_execution
from .conversation import ConversationAgent, ConversationStore
from .interfaces import (
    ChartRenderer,
    FileStore,
    InMemoryProfileStore,
    LLMStream,
    ProfileStore,
    Profiler,
    SecurityAssessor,
    SemanticExecutor,
)
from .planner import LLM_FALLBACK_COST, LLM_FALLBACK_TIME_MS, QueryPlannerAgent, QueryPlannerInput


class AgentOrchestrator:
    """
    Central coordinator for agent registration and analysis pipelines.

    Holds one agent per AgentType and composes them into the upload pipeline
    (profile, then best-effort security) and the query pipeline (plan,
    execute, optional chart), falling back to the conversation agent when
    the semantic layer is unavailable or not confident enough.
    """

    def __init__(self, config: Optional[SystemConfig] = None,
                 profile_store: Optional[ProfileStore] = None):
        self.config = config or SystemConfig()
        self.logger = get_logger(__name__)
        self.routing_logger = RoutingLogger("orchestrator")
        self.profile_store = profile_store if profile_store is not None else InMemoryProfileStore()

        self._agents: Dict[AgentType, BaseAgent] = {}
        self._agents_lock = threading.Lock()

        self._failed_executions = 0
        self._failure_lock = threading.Lock()

        # Optional branches (chart rendering) run here and are joined with a bounded wait
        self._background: Optional[ThreadPoolExecutor] = None
        self._pending: List[Any] = []
        self._background_lock = threading.Lock()

        self.logger.info("AgentOrchestrator initialized")

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_agent(self, agent: BaseAgent) -> None:
        """
        Register an agent under its type.

        Raises:
            DuplicateAgentError: If an agent of the same type is already registered
        """
        with self._agents_lock:
            if agent.agent_type in self._agents:
                raise DuplicateAgentError(agent.agent_type)
            self._agents[agent.agent_type] = agent

        self.logger.info(f"Registered agent: {agent.agent_type.value} ({agent.name} v{agent.version})")

    def unregister_agent(self, agent_type: AgentType) -> bool:
        """Dispose and remove the agent of a type. Returns False if none was registered."""
        with self._agents_lock:
            agent = self._agents.pop(agent_type, None)

        if agent is None:
            return False

        agent.dispose()
        self.logger.info(f"Unregistered agent: {agent_type.value}")
        return True

    def get_agent(self, agent_type: AgentType) -> Optional[BaseAgent]:
        with self._agents_lock:
            return self._agents.get(agent_type)

    @property
    def agent_count(self) -> int:
        with self._agents_lock:
            return len(self._agents)

    def list_agents(self) -> List[Dict[str, str]]:
        with self._agents_lock:
            agents = list(self._agents.values())
        return [agent.describe() for agent in agents]

    # ------------------------------------------------------------------
    # Upload pipeline
    # ------------------------------------------------------------------

    def process_data_upload(self, file: UploadedFile) -> DataProfile:
        """
        Validate, profile and assess an uploaded file.

        Args:
            file: Uploaded file with content and metadata

        Returns:
            DataProfile with the security assessment merged in when available

        Raises:
            FileValidationError: If the file fails synchronous validation
            AgentNotFoundError: If no profiling agent is registered
            AgentError: If profiling fails after retries
        """
        context = create_execution_context(
            f"upload-{uuid.uuid4().hex[:12]}",
            timeout_ms=self.config.timeouts.upload_timeout_ms
        )

        # Step 1: Validate file
        self.validate_file(file)

        profiling_agent = self.get_agent(AgentType.PROFILING)
        if profiling_agent is None:
            raise AgentNotFoundError("Data profiling agent not available", AgentType.PROFILING)

        self.logger.info(f"Processing file upload: {file.name} ({file.size} bytes)")

        # Step 2: Profile with bounded retries
        result = retry_execution(
            profiling_agent, file, context,
            max_retries=self.config.retry.max_retries,
            backoff_ms=self.config.retry.backoff_ms
        )
        if not result.success:
            self._record_failure()
            raise result.error or AgentError("Profiling failed", AgentType.PROFILING)

        profile: DataProfile = result.data

        # Step 3: Best-effort security assessment
        security_agent = self.get_agent(AgentType.SECURITY)
        if security_agent is not None:
            security_result = security_agent.execute(profile, context)
            if security_result.success:
                profile.security = security_result.data
            else:
                self._record_failure()
                self.logger.warning(
                    f"Security analysis failed, continuing without it: {security_result.error}"
                )

        # Step 4: Keep the profile for later queries
        self.profile_store.save_profile(profile)

        self.logger.info(
            f"File processing complete: {profile.id} "
            f"({profile.metadata.row_count} rows, {profile.metadata.column_count} columns, "
            f"{result.metrics.execution_time_ms:.1f}ms)"
        )
        return profile

    def validate_file(self, file: UploadedFile) -> None:
        """
        Raises:
            FileValidationError: If the file is empty, too large or of a disallowed type
        """
        limits = self.config.upload_limits

        if not file.content:
            raise FileValidationError("File content is empty", filename=file.name)

        if file.size > limits.max_file_size_bytes:
            max_mb = limits.max_file_size_bytes // (1024 * 1024)
            raise FileValidationError(f"File size exceeds maximum limit of {max_mb}MB", filename=file.name)

        extension = PurePath(file.name.lower()).suffix
        if extension not in [allowed.lower() for allowed in limits.allowed_extensions]:
            raise FileValidationError(
                f"Only {', '.join(limits.allowed_extensions)} files are supported",
                filename=file.name
            )

    # ------------------------------------------------------------------
    # Query pipeline
    # ------------------------------------------------------------------

    def execute_query(self, query: str, profile_id: str) -> AnalysisResult:
        """
        Answer a query against a previously uploaded dataset.

        Args:
            query: Natural-language question
            profile_id: Id of a profile produced by ``process_data_upload``

        Returns:
            AnalysisResult from the semantic layer or the conversation fallback
        """
        context = create_execution_context(
            f"query-{uuid.uuid4().hex[:12]}",
            timeout_ms=self.config.timeouts.query_timeout_ms
        )
        self.logger.info(f"Executing query: \"{query}\" on profile {profile_id}")

        profile = self._load_profile(profile_id)

        # Step 1: Plan
        planner = self.get_agent(AgentType.QUERY_PLANNING)
        if planner is None:
            return self._execute_with_conversation_agent(query, profile, context, "planner_unavailable")

        planning = planner.execute(QueryPlannerInput(query, profile), context)
        if not planning.success:
            self._record_failure()
            return self._execute_with_conversation_agent(query, profile, context, "planning_failed")

        planned: QueryPlannerResult = planning.data
        if planned.query_intent.confidence < self.config.routing_thresholds.orchestrator_fallback_confidence:
            self.logger.info("Low confidence in query parsing, falling back to LLM")
            return self._execute_with_conversation_agent(query, profile, context, "low_confidence")

        # Step 2: Execute semantically
        executed = self._execute_semantic_query(query, planned, profile, context)
        if executed is None:
            return self._execute_with_conversation_agent(query, profile, context, "executor_requested_llm")

        # Step 3: Optional chart
        if planned.visualization is not None:
            chart = self._render_chart(executed.data, planned.visualization, context)
            if chart is not None:
                executed.chart = chart
                executed.metadata.agent_path.append(AgentType.CHART)

        return executed

    def _execute_semantic_query(self, query: str, planned: QueryPlannerResult, profile: DataProfile,
                                context: AgentExecutionContext) -> Optional[AnalysisResult]:
        """Run the semantic executor; None means it asked for LLM processing."""
        intent, plan = planned.query_intent, planned.execution_plan
        self.logger.info(
            f"Executing semantic query: \"{query}\" "
            f"(type: {intent.type.value}, confidence: {intent.confidence})"
        )

        executor = self.get_agent(AgentType.SEMANTIC_EXECUTOR)
        if executor is None:
            raise AgentNotFoundError("Semantic executor agent not available", AgentType.SEMANTIC_EXECUTOR)

        execution = executor.execute(SemanticExecutorInput(intent, profile, plan), context)
        if not execution.success:
            self._record_failure()
            raise execution.error or AgentError("Semantic execution failed", AgentType.SEMANTIC_EXECUTOR)

        result: SemanticExecutionResult = execution.data
        if result.requires_llm_processing:
            self.logger.info(f"Semantic executor requested LLM processing: {result.llm_fallback_reason}")
            return None

        analysis = AnalysisResult(
            id=f"analysis-{uuid.uuid4().hex[:12]}",
            query=query,
            intent=intent,
            execution_plan=plan,
            data=list(result.data),
            insights=_insights_from_semantic_result(result),
            metadata=AnalysisMetadata(
                execution_time_ms=result.metadata.get("execution_time_ms", execution.metrics.execution_time_ms),
                data_points=len(result.data) or len(profile.sample_data),
                cache_hit=execution.metrics.cache_hit,
                agent_path=[AgentType.QUERY_PLANNING, AgentType.SEMANTIC_EXECUTOR]
            ),
            suggestions=list(result.suggestions)
        )

        self.logger.info(
            f"Semantic query execution completed: {analysis.metadata.data_points} data points, "
            f"{len(analysis.insights)} insights"
        )
        return analysis

    def _render_chart(self, data: List[Dict[str, Any]], visualization: VisualizationConfig,
                      context: AgentExecutionContext) -> Any:
        """Run the chart agent on the background pool; any failure yields None."""
        chart_agent = self.get_agent(AgentType.CHART)
        if chart_agent is None:
            return None

        future = self._submit_background(chart_agent.execute, ChartInput(data, visualization), context)
        try:
            result = future.result(timeout=self.config.timeouts.chart_wait_ms / 1000.0)
        except FutureTimeoutError:
            self.logger.warning("Chart generation did not finish in time, returning result without chart")
            return None

        if not result.success:
            self._record_failure()
            self.logger.warning(f"Chart generation failed: {result.error}")
            return None
        return result.data

    def _execute_with_conversation_agent(self, query: str, profile: DataProfile,
                                         context: AgentExecutionContext, reason: str) -> AnalysisResult:
        conversation_agent = self.get_agent(AgentType.CONVERSATION)
        if conversation_agent is None:
            raise AgentNotFoundError(
                "No conversation agent available for complex query processing",
                AgentType.CONVERSATION
            )

        self.routing_logger.log_fallback("semantic-layer", AgentType.CONVERSATION.value, reason)

        # One-shot session, released as soon as the answer is in
        session_id = f"orchestrator-{uuid.uuid4().hex[:12]}"
        conversation_input = ConversationInput(
            session_id=session_id,
            query=query,
            context_patch=ContextPatch(current_data_profile=profile)
        )
        try:
            result = conversation_agent.execute(conversation_input, context)
        finally:
            end_session = getattr(conversation_agent, "end_session", None)
            if end_session is not None:
                end_session(session_id)
        if not result.success:
            self._record_failure()
            raise result.error or AgentError("Conversation agent failed", AgentType.CONVERSATION)

        output: ConversationOutput = result.data
        elapsed_ms = (datetime.now() - context.start_time).total_seconds() * 1000

        return AnalysisResult(
            id=f"analysis-{uuid.uuid4().hex[:12]}",
            query=query,
            intent=QueryIntent(
                type=QueryType.UNKNOWN,
                confidence=output.confidence,
                original_query=query,
                requires_llm=True,
                can_use_cache=False,
                estimated_cost=10
            ),
            execution_plan=ExecutionPlan(
                id=f"plan-{uuid.uuid4().hex[:12]}",
                steps=[PlanStep(
                    id="llm-fallback",
                    type=StepType.TRANSFORM,
                    operation="llm_analysis",
                    params={"query": query, "fallback_reason": reason},
                    estimated_time_ms=LLM_FALLBACK_TIME_MS
                )],
                estimated_time_ms=LLM_FALLBACK_TIME_MS,
                estimated_cost=LLM_FALLBACK_COST,
                fallback_to_llm=True
            ),
            insights=list(output.insights),
            metadata=AnalysisMetadata(
                execution_time_ms=elapsed_ms,
                data_points=0,
                cache_hit=False,
                agent_path=list(output.agent_path)
            ),
            suggestions=list(output.followup_suggestions),
            response=output.response
        )

    def _load_profile(self, profile_id: str) -> DataProfile:
        profile = self.profile_store.get_profile(profile_id)
        if profile is None:
            raise AgentError(f"Profile not found: {profile_id}", code="PROFILE_NOT_FOUND")
        return profile

    # ------------------------------------------------------------------
    # Health and resources
    # ------------------------------------------------------------------

    def handle_agent_failure(self, agent_type: AgentType, error: Exception) -> Optional[AgentHealthStatus]:
        """
        Record an out-of-band agent failure and report the agent's health.

        Restarting unhealthy agents is left to the deployment layer.
        """
        self._record_failure()
        failure_context = {"agent_type": agent_type.value}
        self.routing_logger.log_error(handle_error(error, context=failure_context), failure_context)

        agent = self.get_agent(agent_type)
        if agent is None:
            return None

        health = agent.get_health()
        if not health.healthy:
            self.logger.warning(
                f"Agent {agent_type.value} is unhealthy "
                f"(success rate {health.success_rate:.2f}, {health.error_count} errors)"
            )
        return health

    def check_resource_limits(self) -> ResourceStatus:
        """Coarse resource snapshot; limits are not enforced here."""
        if tracemalloc.is_tracing():
            used, peak = tracemalloc.get_traced_memory()
        else:
            used, peak = 0, 0

        total_memory = _physical_memory()
        percentage = (used / total_memory * 100) if total_memory else 0.0

        try:
            load = os.getloadavg()[0]
        except (AttributeError, OSError):
            load = 0.0

        with self._agents_lock:
            agents = list(self._agents.values())

        with self._failure_lock:
            failed = self._failed_executions

        return ResourceStatus(
            memory=MemoryStatus(used=used, peak=peak, percentage=percentage),
            cpu=CpuStatus(load=load, cores=os.cpu_count() or 1),
            agents=AgentActivity(
                active=sum(agent.active_executions for agent in agents),
                queued=self._pending_background(),
                failed=failed
            )
        )

    def get_system_health(self) -> Dict[AgentType, AgentHealthStatus]:
        with self._agents_lock:
            agents = list(self._agents.items())

        health_map = {}
        for agent_type, agent in agents:
            try:
                health_map[agent_type] = agent.get_health()
            except Exception as e:
                self.logger.error(f"Failed to get health for agent {agent_type.value}: {str(e)}")
                health_map[agent_type] = AgentHealthStatus(
                    healthy=False,
                    last_check=datetime.now(),
                    uptime_ms=0.0,
                    total_executions=0,
                    successful_executions=0,
                    success_rate=0.0,
                    avg_execution_time_ms=0.0,
                    error_count=1,
                    errors=[str(e)]
                )
        return health_map

    def is_healthy(self) -> bool:
        health = self.get_system_health()
        return bool(health) and all(status.healthy for status in health.values())

    def shutdown(self) -> None:
        """Wait for background work, dispose every agent and clear stores."""
        self.logger.info("Shutting down agent orchestrator")

        with self._background_lock:
            background, self._background = self._background, None
            self._pending = []
        if background is not None:
            background.shutdown(wait=True)

        with self._agents_lock:
            agents, self._agents = self._agents, {}

        for agent_type, agent in agents.items():
            try:
                agent.dispose()
                self.logger.info(f"Disposed agent: {agent_type.value}")
            except Exception as e:
                self.logger.error(f"Error disposing agent {agent_type.value}: {str(e)}")

        clear = getattr(self.profile_store, "clear", None)
        if callable(clear):
            clear()

    def _submit_background(self, fn, *args):
        with self._background_lock:
            if self._background is None:
                self._background = ThreadPoolExecutor(max_workers=4, thread_name_prefix="orchestrator")
            future = self._background.submit(fn, *args)
            self._pending = [pending for pending in self._pending if not pending.done()]
            self._pending.append(future)
        return future

    def _pending_background(self) -> int:
        with self._background_lock:
            return sum(1 for future in self._pending if not future.done())

    def _record_failure(self) -> None:
        with self._failure_lock:
            self._failed_executions += 1


def _insights_from_semantic_result(result: SemanticExecutionResult) -> List[GeneratedInsight]:
    insights = [
        GeneratedInsight(type="insight", title="Key finding", description=str(finding), confidence=0.9)
        for finding in result.insights.get("key_findings", [])
    ]
    for trend in result.insights.get("trends", []):
        insights.append(GeneratedInsight(
            type="trend",
            title=f"Trend in {trend.get('metric', 'value')}",
            description=(f"{trend.get('metric', 'value')} is {trend.get('direction', 'stable')} "
                         f"with {trend.get('change_percent', 0)}% change"),
            confidence=0.8,
            data=dict(trend)
        ))
    return insights


def _physical_memory() -> int:
    """Total physical memory in bytes, or 0 where the platform does not report it."""
    try:
        return os.sysconf("SC_PHYS_PAGES") * os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return 0


def build_orchestrator(profiler: Profiler, semantic_executor: SemanticExecutor, llm_stream: LLMStream,
                       config: Optional[SystemConfig] = None,
                       security_assessor: Optional[SecurityAssessor] = None,
                       chart_renderer: Optional[ChartRenderer] = None,
                       file_store: Optional[FileStore] = None,
                       profile_store: Optional[ProfileStore] = None) -> AgentOrchestrator:
    """
    Construct an orchestrator with every agent registered.

    Args:
        profiler: Profiling collaborator
        semantic_executor: Semantic executor collaborator
        llm_stream: LLM conversation stream used by the conversation agent
        config: System configuration (defaults apply when omitted)
        security_assessor: Optional security collaborator
        chart_renderer: Optional chart collaborator
        file_store: Optional store the conversation agent loads ``file_id`` uploads from
        profile_store: Store for uploaded profiles

    Returns:
        AgentOrchestrator ready to process uploads and queries
    """
    config = config or SystemConfig()
    health_policy = config.health_policy
    orchestrator = AgentOrchestrator(config, profile_store=profile_store)

    profiling_agent = ProfilingAgent(profiler, health_policy=health_policy)
    planner = QueryPlannerAgent(thresholds=config.routing_thresholds, health_policy=health_policy)
    executor = SemanticExecutorAgent(semantic_executor, health_policy=health_policy)

    orchestrator.register_agent(profiling_agent)
    orchestrator.register_agent(planner)
    orchestrator.register_agent(executor)
    orchestrator.register_agent(ConversationAgent(
        llm_stream,
        planner=planner,
        executor=executor,
        store=ConversationStore(),
        file_store=file_store,
        profiling_agent=profiling_agent,
        thresholds=config.routing_thresholds,
        timeouts=config.timeouts,
        health_policy=health_policy
    ))

    if security_assessor is not None:
        orchestrator.register_agent(SecurityAgent(security_assessor, health_policy=health_policy))
    if chart_renderer is not None:
        orchestrator.register_agent(ChartAgent(chart_renderer, health_policy=health_policy))

    return orchestrator
