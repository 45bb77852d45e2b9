"""
Conversation agent: routes each query between the semantic layer and the LLM.
"""

import threading
import uuid
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from ..models import (
    AgentExecutionContext,
    AgentType,
    AnalysisReference,
    AnalysisType,
    ChunkType,
    ConversationContext,
    ConversationInput,
    ConversationOutput,
    ConversationTurn,
    GeneratedInsight,
    QueryPlannerResult,
    QueryType,
    RoutingDecision,
    RoutingStrategy,
    RoutingThresholds,
    SemanticExecutionResult,
    TimeoutConfig,
    UploadedFile,
    apply_context_patch,
    create_execution_context,
)
from ..utils.error_handling import AgentError, AgentNotFoundError, FallbackError, LLMStreamError
from .agents import SemanticExecutorInput
from .base import BaseAgent
from .interfaces import FileStore, LLMStream
from .planner import QueryPlannerInput


EMPTY_LLM_RESPONSE = (
    "I analyzed your data, but could not generate a detailed summary. Please try "
    "rephrasing your question or ask for a specific insight."
)

GENERIC_FOLLOWUPS = [
    "Could you rephrase your question?",
    "Would you like to try a different analysis?",
    "Can you provide more specific details?",
]

_INTENT_GREETINGS = {
    QueryType.TREND: "I've analyzed the trends in your data.",
    QueryType.COMPARISON: "I've compared the values across your dataset.",
    QueryType.AGGREGATION: "I've calculated the aggregated values you requested.",
    QueryType.FILTER: "I've filtered your data based on your criteria.",
    QueryType.PROFILE: "I've profiled your dataset to understand its structure.",
}

_ENHANCEMENT_PROMPT = """Based on this semantic analysis result, provide additional context and insights:

Original Query: {query}
Semantic Analysis Result: {response}

Please enhance this with:
1. Additional context about what this means
2. Potential implications or next steps
3. Related questions the user might want to ask

Keep your response conversational and helpful."""


class ConversationStore:
    """Session id to ConversationContext map, owned by one conversation agent."""

    def __init__(self, max_history: int = 10, max_analyses: int = 5):
        self.max_history = max_history
        self.max_analyses = max_analyses
        self._contexts: Dict[str, ConversationContext] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Optional[ConversationContext]:
        with self._lock:
            return self._contexts.get(session_id)

    def checkout(self, session_id: str) -> ConversationContext:
        """
        Working copy of a session for one request.

        Changes made to the copy become visible only when it is passed to
        ``save``, so a request that never saves leaves the session untouched.
        """
        with self._lock:
            stored = self._contexts.get(session_id)
        if stored is None:
            return ConversationContext(
                session_id=session_id,
                max_history=self.max_history,
                max_analyses=self.max_analyses
            )
        return replace(
            stored,
            history=list(stored.history),
            previous_analyses=list(stored.previous_analyses),
            user_preferences=replace(stored.user_preferences)
        )

    def save(self, context: ConversationContext) -> None:
        with self._lock:
            self._contexts[context.session_id] = context

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._contexts.pop(session_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._contexts.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)


class ConversationAgent(BaseAgent):
    """
    Smart routing between the semantic layer and the LLM.

    For every query the agent checks whether data is available, asks the
    query planner how confident it is, and picks semantic-only, hybrid or
    LLM-only processing. Failures on the semantic side fall through to the
    LLM; only a failure of the last-resort LLM call is reported as an error.
    """

    agent_type = AgentType.CONVERSATION
    name = "ConversationAgent"

    def __init__(self, llm_stream: LLMStream,
                 planner: Optional[BaseAgent] = None,
                 executor: Optional[BaseAgent] = None,
                 store: Optional[ConversationStore] = None,
                 file_store: Optional[FileStore] = None,
                 profiling_agent: Optional[BaseAgent] = None,
                 thresholds: Optional[RoutingThresholds] = None,
                 timeouts: Optional[TimeoutConfig] = None,
                 **kwargs):
        super().__init__(**kwargs)
        self.llm_stream = llm_stream
        self.planner = planner
        self.executor = executor
        self.store = store or ConversationStore()
        self.file_store = file_store
        self.profiling_agent = profiling_agent
        self.thresholds = thresholds or RoutingThresholds()
        self.timeouts = timeouts or TimeoutConfig()

        # Routing decision log for audit trail
        self.routing_log: List[RoutingDecision] = []
        self._max_log_entries = 1000
        self._stats_lock = threading.Lock()
        self._routing_stats = {
            'total_requests': 0,
            'fallback_routes': 0,
            'failed_routes': 0,
            'strategy_usage': {strategy.value: 0 for strategy in RoutingStrategy}
        }

        self.logger.info("ConversationAgent initialized")

    def validate_input(self, input_data: Any) -> bool:
        return (isinstance(input_data, ConversationInput)
                and isinstance(input_data.session_id, str) and bool(input_data.session_id)
                and isinstance(input_data.query, str) and bool(input_data.query.strip()))

    def execute_internal(self, input_data: ConversationInput,
                         context: AgentExecutionContext) -> ConversationOutput:
        self.logger.info(
            f"Processing conversation request for session {input_data.session_id}: "
            f"{input_data.query[:100]}"
        )
        self._bump_stat('total_requests', context)

        try:
            # Step 1: Load or initialize conversation context
            conversation = self._load_context(input_data)

            # Step 2: Determine routing strategy
            decision, planned = self.determine_routing_strategy(
                input_data.query, conversation, input_data.prefer_semantic_layer
            )
            if not context.cancelled:
                self.log_routing_decision(decision)

            # Step 3: Route based on strategy
            if decision.strategy == RoutingStrategy.SEMANTIC_ONLY:
                output = self.process_semantic_query(input_data, conversation, context, planned)
            elif decision.strategy == RoutingStrategy.HYBRID:
                output = self.process_hybrid_query(input_data, conversation, context, planned)
            else:
                output = self.process_llm_query(input_data, conversation)

            # Step 4: Follow-ups and context bookkeeping
            output.followup_suggestions = self.generate_followup_suggestions(output, conversation)
            if not self._commit(context):
                self.logger.warning(
                    f"Request {context.request_id} timed out, discarding session update for {input_data.session_id}"
                )
                return output
            self.update_conversation_context(input_data, output, conversation)

            self.logger.info(
                f"Conversation processing completed via {output.strategy.value} "
                f"(confidence: {output.confidence:.2f})"
            )
            return output

        except Exception as e:
            self.logger.warning(f"Conversation processing failed, using LLM fallback: {str(e)}")
            return self.fallback_to_llm(input_data, context)

    def determine_routing_strategy(self, query: str, conversation: ConversationContext,
                                   prefer_semantic_layer: bool = False
                                   ) -> Tuple[RoutingDecision, Optional[QueryPlannerResult]]:
        """
        Decide how a query should be processed.

        Args:
            query: User query
            conversation: Session context, used for data availability
            prefer_semantic_layer: Caller preference for deterministic answers

        Returns:
            The routing decision and, when planning succeeded, the planner output
        """
        reasons: List[str] = []

        if not conversation.has_data():
            reasons.append("No CSV data available for semantic processing")
            return RoutingDecision(RoutingStrategy.LLM_ONLY, 0.9, reasons), None

        planned = self._plan(query, conversation)
        if planned is None:
            reasons.append("Query planning unavailable or failed")
            return RoutingDecision(RoutingStrategy.LLM_ONLY, 0.8, reasons), None

        confidence = planned.query_intent.confidence
        intent_type = planned.query_intent.type

        if prefer_semantic_layer and confidence > self.thresholds.low_confidence:
            reasons.append("User preference for semantic layer")
            return RoutingDecision(RoutingStrategy.SEMANTIC_ONLY, min(confidence + 0.1, 1.0), reasons), planned

        if confidence >= self.thresholds.semantic_confidence:
            reasons.append(f"High confidence semantic query ({confidence:.2f})")
            reasons.append(f"Intent type: {intent_type.value}")
            return RoutingDecision(RoutingStrategy.SEMANTIC_ONLY, confidence, reasons), planned

        if confidence >= self.thresholds.low_confidence:
            reasons.append(f"Medium confidence query ({confidence:.2f})")
            reasons.append("Using hybrid approach for best results")
            return RoutingDecision(RoutingStrategy.HYBRID, confidence, reasons), planned

        reasons.append(f"Low confidence semantic parsing ({confidence:.2f})")
        reasons.append("Complex query requires LLM processing")
        return RoutingDecision(RoutingStrategy.LLM_ONLY, 1.0 - confidence, reasons), planned

    def process_semantic_query(self, input_data: ConversationInput, conversation: ConversationContext,
                               context: AgentExecutionContext,
                               planned: Optional[QueryPlannerResult] = None) -> ConversationOutput:
        """Answer through the semantic layer, falling through to the LLM on any failure."""
        try:
            return self._run_semantic(input_data, conversation, context, planned)
        except Exception as e:
            self.routing_logger.log_fallback(RoutingStrategy.SEMANTIC_ONLY.value,
                                             RoutingStrategy.LLM_ONLY.value, str(e))
            self._bump_stat('fallback_routes', context)
            return self.process_llm_query(input_data, conversation)

    def process_hybrid_query(self, input_data: ConversationInput, conversation: ConversationContext,
                             context: AgentExecutionContext,
                             planned: Optional[QueryPlannerResult] = None) -> ConversationOutput:
        """Answer through the semantic layer and let the LLM add commentary on top."""
        try:
            semantic = self._run_semantic(input_data, conversation, context, planned)
        except Exception as e:
            self.routing_logger.log_fallback(RoutingStrategy.HYBRID.value,
                                             RoutingStrategy.LLM_ONLY.value, str(e))
            self._bump_stat('fallback_routes', context)
            return self.process_llm_query(input_data, conversation)

        semantic = replace(semantic, strategy=RoutingStrategy.HYBRID)
        if semantic.confidence <= self.thresholds.low_confidence:
            return self.process_llm_query(input_data, conversation)

        try:
            enhanced = self.enhance_semantic_with_llm(input_data.session_id, input_data.query, semantic.response)
        except Exception as e:
            self.logger.warning(f"LLM enhancement failed, returning semantic result: {str(e)}")
            return semantic

        return replace(
            semantic,
            response=enhanced,
            agent_path=semantic.agent_path + [AgentType.CONVERSATION],
            confidence=min(semantic.confidence + 0.1, 1.0)
        )

    def process_llm_query(self, input_data: ConversationInput,
                          conversation: ConversationContext) -> ConversationOutput:
        """
        Answer through the LLM stream.

        Raises:
            LLMStreamError: If the stream reports an error
        """
        self.logger.info(
            f"Processing LLM-only query (file: {input_data.file_id or 'none'}, "
            f"csv loaded: {bool(conversation.csv_content)})"
        )
        text, structured = self._consume_stream(input_data.session_id, input_data.query, input_data.file_id)
        insights = self.extract_insights_from_structured_output(structured) if structured else []

        return ConversationOutput(
            response=text.strip() or EMPTY_LLM_RESPONSE,
            agent_path=[AgentType.CONVERSATION],
            confidence=0.8,
            used_semantic_layer=False,
            insights=insights,
            strategy=RoutingStrategy.LLM_ONLY
        )

    def enhance_semantic_with_llm(self, session_id: str, query: str, semantic_response: str) -> str:
        prompt = _ENHANCEMENT_PROMPT.format(query=query, response=semantic_response)
        enhancement, _ = self._consume_stream(f"{session_id}-enhancement", prompt)
        if not enhancement.strip():
            raise LLMStreamError("LLM enhancement returned no content", backend=self._backend_name())
        return f"{semantic_response}\n\n{enhancement.strip()}"

    def fallback_to_llm(self, input_data: ConversationInput,
                        context: Optional[AgentExecutionContext] = None) -> ConversationOutput:
        """
        Last-resort plain LLM call.

        Raises:
            FallbackError: If the LLM stream itself fails
        """
        self.logger.warning("Using LLM fallback due to conversation processing failure")
        self._bump_stat('fallback_routes', context)

        try:
            text, _ = self._consume_stream(input_data.session_id, input_data.query, input_data.file_id)
        except Exception as e:
            self._bump_stat('failed_routes', context)
            raise FallbackError(
                f"Conversation processing completely failed: {str(e)}",
                attempted_strategies=[strategy.value for strategy in RoutingStrategy]
            ) from e

        return ConversationOutput(
            response=text or "I apologize, but I encountered an issue processing your request.",
            agent_path=[AgentType.CONVERSATION],
            confidence=0.5,
            used_semantic_layer=False,
            followup_suggestions=list(GENERIC_FOLLOWUPS),
            strategy=RoutingStrategy.LLM_ONLY
        )

    def generate_insights_from_semantic_result(self, result: SemanticExecutionResult) -> List[GeneratedInsight]:
        insights = [GeneratedInsight(
            type="summary",
            title="Data Summary",
            description=f"Found {len(result.data)} records matching your query criteria.",
            confidence=0.9,
            data={"record_count": len(result.data)}
        )]

        numeric_columns = _numeric_columns(result.data)
        if numeric_columns:
            insights.append(GeneratedInsight(
                type="trend",
                title="Numeric Analysis",
                description=(f"Analysis includes {len(numeric_columns)} numeric columns: "
                             f"{', '.join(numeric_columns)}."),
                confidence=0.8,
                data={"numeric_columns": numeric_columns}
            ))

        return insights

    def create_conversational_response(self, intent_type: QueryType, result: SemanticExecutionResult,
                                       insights: List[GeneratedInsight]) -> str:
        """Render a semantic result as readable text."""
        response = _INTENT_GREETINGS.get(intent_type, "I've analyzed your data.")
        response += f" I found {len(result.data)} records that match your criteria."

        if insights:
            response += "\n\nKey findings:\n"
            for index, insight in enumerate(insights, 1):
                response += f"{index}. {insight.description}\n"

        if result.data:
            response += "\n\nHere are some sample results:\n"
            for index, record in enumerate(result.data[:3], 1):
                summary = ", ".join(f"{key}: {value}" for key, value in list(record.items())[:3])
                response += f"{index}. {summary}\n"

        if len(response.strip()) < 50:
            response += "\n\nFor more detailed analysis, you may want to ask more specific questions about your data."

        return response.strip()

    def extract_insights_from_structured_output(self, structured: Dict[str, Any]) -> List[GeneratedInsight]:
        insights = []
        for item in structured.get("insights") or []:
            insights.append(GeneratedInsight(
                type=item.get("type", "summary"),
                title=item.get("title", "Insight"),
                description=item.get("description") or item.get("insight", ""),
                confidence=item.get("confidence", 0.7),
                data=item.get("data") or {}
            ))
        return insights

    def generate_followup_suggestions(self, output: ConversationOutput,
                                      conversation: ConversationContext) -> List[str]:
        """Up to three follow-up questions based on the answer and the loaded data."""
        suggestions = list(output.followup_suggestions)

        if output.used_semantic_layer:
            suggestions.extend([
                "Can you show me the data in a different chart type?",
                "What are the key trends in this data?",
                "Can you filter this data by a specific criteria?",
            ])

        profile = conversation.current_data_profile
        if profile is not None:
            columns = profile.column_names()
            if columns:
                suggestions.append(f"Tell me more about the {columns[0]} column")
            if len(columns) > 1:
                suggestions.append(f"Compare {columns[0]} and {columns[1]}")

        return suggestions[:3]

    def update_conversation_context(self, input_data: ConversationInput, output: ConversationOutput,
                                    conversation: ConversationContext) -> None:
        conversation.add_turn(ConversationTurn(
            id=f"turn-{uuid.uuid4().hex[:12]}",
            user_message=input_data.query,
            agent_response=output.response,
            agent_path=list(output.agent_path),
            confidence=output.confidence,
            strategy=output.strategy
        ))

        if output.used_semantic_layer or output.insights:
            conversation.add_analysis(AnalysisReference(
                id=f"analysis-{uuid.uuid4().hex[:12]}",
                query=input_data.query,
                result={
                    "response": output.response,
                    "confidence": output.confidence,
                    "used_semantic_layer": output.used_semantic_layer,
                    "agent_path": [agent.value for agent in output.agent_path],
                    "insights": [insight.title for insight in output.insights],
                    "followup_suggestions": list(output.followup_suggestions),
                },
                type=AnalysisType.SEMANTIC if output.used_semantic_layer else AnalysisType.LLM,
                confidence=output.confidence
            ))

        self.store.save(conversation)

    def log_routing_decision(self, decision: RoutingDecision) -> None:
        with self._stats_lock:
            self.routing_log.append(decision)
            if len(self.routing_log) > self._max_log_entries:
                self.routing_log = self.routing_log[-self._max_log_entries // 2:]  # Keep last half
            self._routing_stats['strategy_usage'][decision.strategy.value] += 1

        self.routing_logger.log_routing_decision({
            "strategy": decision.strategy.value,
            "confidence": decision.confidence,
            "reasons": decision.reasons,
        })

    def get_routing_statistics(self) -> Dict[str, Any]:
        """Get routing statistics for this agent."""
        with self._stats_lock:
            total_requests = self._routing_stats['total_requests']
            stats = {
                'total_requests': total_requests,
                'fallback_routes': self._routing_stats['fallback_routes'],
                'failed_routes': self._routing_stats['failed_routes'],
                'fallback_rate': (self._routing_stats['fallback_routes'] / total_requests * 100) if total_requests > 0 else 0,
                'strategy_usage': self._routing_stats['strategy_usage'].copy(),
                'recent_decisions': len(self.routing_log),
                'active_sessions': len(self.store)
            }
        return stats

    def get_recent_routing_decisions(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._stats_lock:
            recent = self.routing_log[-limit:]
        return [
            {
                'timestamp': decision.timestamp.isoformat(),
                'strategy': decision.strategy.value,
                'confidence': decision.confidence,
                'reasons': list(decision.reasons)
            }
            for decision in recent
        ]

    def end_session(self, session_id: str) -> None:
        """Forget a session here and in the LLM backend's chat history."""
        self.store.delete(session_id)
        reset_session = getattr(self.llm_stream, "reset_session", None)
        if reset_session is not None:
            reset_session(session_id)
            reset_session(f"{session_id}-enhancement")

    def dispose(self) -> None:
        self.store.clear()
        super().dispose()

    def _run_semantic(self, input_data: ConversationInput, conversation: ConversationContext,
                      context: AgentExecutionContext,
                      planned: Optional[QueryPlannerResult]) -> ConversationOutput:
        profile = conversation.current_data_profile
        if profile is None:
            raise AgentError("No data profile available for semantic processing", agent_type=self.agent_type)
        if self.executor is None:
            raise AgentNotFoundError("Semantic executor agent not available", AgentType.SEMANTIC_EXECUTOR)

        if planned is None:
            if self.planner is None:
                raise AgentNotFoundError("Query planning agent not available", AgentType.QUERY_PLANNING)
            planning = self.planner.execute(QueryPlannerInput(input_data.query, profile), context)
            if not planning.success:
                raise planning.error or AgentError("Query planning failed", AgentType.QUERY_PLANNING)
            planned = planning.data

        execution = self.executor.execute(
            SemanticExecutorInput(planned.query_intent, profile, planned.execution_plan), context
        )
        if not execution.success:
            raise execution.error or AgentError("Semantic execution failed", AgentType.SEMANTIC_EXECUTOR)

        result: SemanticExecutionResult = execution.data
        if result.requires_llm_processing:
            raise AgentError(
                f"Semantic executor requested LLM processing: {result.llm_fallback_reason or 'unspecified'}",
                agent_type=AgentType.SEMANTIC_EXECUTOR,
                code="LLM_REQUIRED"
            )

        insights = self.generate_insights_from_semantic_result(result)
        response = self.create_conversational_response(planned.query_intent.type, result, insights)
        if not response.strip():
            raise AgentError("Semantic processing returned an empty response", agent_type=self.agent_type)

        return ConversationOutput(
            response=response,
            agent_path=[AgentType.CONVERSATION, AgentType.QUERY_PLANNING, AgentType.SEMANTIC_EXECUTOR],
            confidence=planned.query_intent.confidence or 0.8,
            used_semantic_layer=True,
            insights=insights,
            strategy=RoutingStrategy.SEMANTIC_ONLY
        )

    def _plan(self, query: str, conversation: ConversationContext) -> Optional[QueryPlannerResult]:
        if self.planner is None or conversation.current_data_profile is None:
            return None

        routing_context = create_execution_context(
            f"routing-{uuid.uuid4().hex[:12]}",
            timeout_ms=self.timeouts.routing_timeout_ms,
            session_id=conversation.session_id
        )
        result = self.planner.execute(QueryPlannerInput(query, conversation.current_data_profile), routing_context)
        if not result.success or result.data is None:
            self.logger.warning(f"Query planning failed during routing: {result.error}")
            return None
        return result.data

    def _consume_stream(self, session_id: str, query: str,
                        file_id: Optional[str] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """Accumulate content deltas; a non-empty structured insight replaces the text."""
        text = ""
        structured: Optional[Dict[str, Any]] = None

        for chunk in self.llm_stream.stream(session_id, query, file_id):
            if chunk.type == ChunkType.CONTENT:
                text += chunk.data.get("delta") or ""
            elif chunk.type == ChunkType.STRUCTURED_OUTPUT:
                structured = chunk.data
                insight = structured.get("insight")
                if isinstance(insight, str) and insight.strip():
                    text = insight
            elif chunk.type == ChunkType.ERROR:
                message = chunk.data.get("error") or chunk.data.get("message") or "LLM stream error"
                raise LLMStreamError(message, backend=self._backend_name())

        return text, structured

    def _load_context(self, input_data: ConversationInput) -> ConversationContext:
        conversation = self.store.checkout(input_data.session_id)
        apply_context_patch(conversation, input_data.context_patch)

        if input_data.file_id:
            file = self._load_file(input_data.file_id)
            if file is not None:
                conversation.csv_content = file.content.decode("utf-8", errors="replace")
                if conversation.current_data_profile is None:
                    conversation.current_data_profile = self._profile_file(input_data.file_id, file)

        return conversation

    def _load_file(self, file_id: str) -> Optional[UploadedFile]:
        if self.file_store is None:
            return None
        try:
            return self.file_store.get_file(file_id)
        except Exception as e:
            self.logger.warning(f"Failed to load CSV content for {file_id}: {str(e)}")
            return None

    def _profile_file(self, file_id: str, file: UploadedFile):
        if self.profiling_agent is None:
            return None
        profile_context = create_execution_context(f"profile-{file_id}", timeout_ms=10000)
        result = self.profiling_agent.execute(file, profile_context)
        if not result.success:
            self.logger.warning(f"Failed to load data profile for {file_id}: {result.error}")
            return None
        return result.data

    def _bump_stat(self, key: str, context: Optional[AgentExecutionContext] = None) -> None:
        # Abandoned requests must not show up in the routing statistics
        if context is not None and context.cancelled:
            return
        with self._stats_lock:
            self._routing_stats[key] += 1

    def _commit(self, context: AgentExecutionContext) -> bool:
        """Claim the right to publish session state; False once the request timed out."""
        return context.cancellation is None or context.cancellation.commit()

    def _backend_name(self) -> Optional[str]:
        return getattr(self.llm_stream, "backend", None)


def _numeric_columns(data: List[Dict[str, Any]]) -> List[str]:
    """Columns of the first record whose value is a number or parses as one."""
    if not data:
        return []

    numeric = []
    for key, value in data[0].items():
        if isinstance(value, bool) or value is None or value == "":
            continue
        if isinstance(value, (int, float)):
            numeric.append(key)
            continue
        try:
            float(value)
        except (TypeError, ValueError):
            continue
        numeric.append(key)
    return numeric
