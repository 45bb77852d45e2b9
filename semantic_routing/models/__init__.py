"""
Data models for the Semantic Routing System.
"""

from .core import (
    AgentExecutionContext,
    CancellationToken,
    AgentMetrics,
    AgentResult,
    AgentHealthStatus,
    QueryEntity,
    QueryIntent,
    PatternMatch,
    IntentClassificationResult,
    PlanStep,
    ExecutionPlan,
    VisualizationConfig,
    QueryPlannerResult,
    ColumnProfile,
    SchemaProfile,
    FileMetadata,
    DataProfile,
    UploadedFile,
    SemanticExecutionResult,
    GeneratedInsight,
    AnalysisMetadata,
    AnalysisResult,
    ConversationTurn,
    AnalysisReference,
    UserPreferences,
    ConversationContext,
    ContextPatch,
    ConversationInput,
    ConversationOutput,
    RoutingDecision,
    StreamChunk,
    MemoryStatus,
    CpuStatus,
    AgentActivity,
    ResourceStatus,
    apply_context_patch,
    create_execution_context,
)

from .config import (
    SystemConfig,
    RoutingThresholds,
    TimeoutConfig,
    RetryConfig,
    UploadLimits,
    HealthPolicy,
    OpenAIConfig,
    LocalLLMConfig,
    LoggingConfig,
)

from .enums import (
    AgentType,
    QueryType,
    EntityType,
    StepType,
    RoutingStrategy,
    ChunkType,
    AnalysisType,
)

__all__ = [
    # Envelope models
    "AgentExecutionContext",
    "CancellationToken",
    "AgentMetrics",
    "AgentResult",
    "AgentHealthStatus",
    "create_execution_context",
    # Classification and planning
    "QueryEntity",
    "QueryIntent",
    "PatternMatch",
    "IntentClassificationResult",
    "PlanStep",
    "ExecutionPlan",
    "VisualizationConfig",
    "QueryPlannerResult",
    # Data profile contract
    "ColumnProfile",
    "SchemaProfile",
    "FileMetadata",
    "DataProfile",
    "UploadedFile",
    # Results
    "SemanticExecutionResult",
    "GeneratedInsight",
    "AnalysisMetadata",
    "AnalysisResult",
    # Conversation and routing
    "ConversationTurn",
    "AnalysisReference",
    "UserPreferences",
    "ConversationContext",
    "ContextPatch",
    "ConversationInput",
    "ConversationOutput",
    "RoutingDecision",
    "StreamChunk",
    "apply_context_patch",
    # Resources
    "MemoryStatus",
    "CpuStatus",
    "AgentActivity",
    "ResourceStatus",
    # Configuration models
    "SystemConfig",
    "RoutingThresholds",
    "TimeoutConfig",
    "RetryConfig",
    "UploadLimits",
    "HealthPolicy",
    "OpenAIConfig",
    "LocalLLMConfig",
    "LoggingConfig",
    # Enums
    "AgentType",
    "QueryType",
    "EntityType",
    "StepType",
    "RoutingStrategy",
    "ChunkType",
    "AnalysisType",
]
