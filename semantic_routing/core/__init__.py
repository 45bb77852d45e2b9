"""
Core components of the Semantic Routing System.
"""

from .base import BaseAgent, retry_execution
from .classifier import IntentClassifier, QueryPattern, DEFAULT_PATTERNS
from .planner import QueryPlannerAgent, QueryPlannerInput
from .agents import (
    ProfilingAgent,
    SecurityAgent,
    SemanticExecutorAgent,
    SemanticExecutorInput,
    ChartAgent,
    ChartInput,
)
from .conversation import ConversationAgent, ConversationStore
from .orchestrator import AgentOrchestrator, build_orchestrator
from .interfaces import (
    OpenAIConversationStream,
    LocalLLMConversationStream,
    InMemoryProfileStore,
    InMemoryFileStore,
    create_llm_stream,
)

__all__ = [
    "BaseAgent",
    "retry_execution",
    "IntentClassifier",
    "QueryPattern",
    "DEFAULT_PATTERNS",
    "QueryPlannerAgent",
    "QueryPlannerInput",
    "ProfilingAgent",
    "SecurityAgent",
    "SemanticExecutorAgent",
    "SemanticExecutorInput",
    "ChartAgent",
    "ChartInput",
    "ConversationAgent",
    "ConversationStore",
    "AgentOrchestrator",
    "build_orchestrator",
    "OpenAIConversationStream",
    "LocalLLMConversationStream",
    "InMemoryProfileStore",
    "InMemoryFileStore",
    "create_llm_stream",
]
