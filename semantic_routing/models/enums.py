"""
Enumerations for the Semantic Routing System.
"""

from enum import Enum


class AgentType(Enum):
    """Agent roles that can be registered with the orchestrator."""
    PROFILING = "profiling"
    QUERY_PLANNING = "query-planning"
    SECURITY = "security"
    CHART = "chart"
    CONVERSATION = "conversation"
    SEMANTIC_EXECUTOR = "semantic-executor"


class QueryType(Enum):
    """Intent types recognised by the classifier."""
    PROFILE = "profile"
    TREND = "trend"
    COMPARISON = "comparison"
    AGGREGATION = "aggregation"
    FILTER = "filter"
    RELATIONSHIP = "relationship"
    DISTRIBUTION = "distribution"
    RANKING = "ranking"
    UNKNOWN = "unknown"


class EntityType(Enum):
    """Kinds of entities extracted from a query."""
    MEASURE = "measure"
    DIMENSION = "dimension"
    FILTER = "filter"
    TIME = "time"
    LIMIT = "limit"


class StepType(Enum):
    """Execution plan step kinds."""
    LOAD = "load"
    FILTER = "filter"
    AGGREGATE = "aggregate"
    SORT = "sort"
    LIMIT = "limit"
    TRANSFORM = "transform"


class RoutingStrategy(Enum):
    """Strategies the conversation agent can pick for a query."""
    SEMANTIC_ONLY = "semantic_only"
    LLM_ONLY = "llm_only"
    HYBRID = "hybrid"


class ChunkType(Enum):
    """Chunk kinds emitted by an LLM conversation stream."""
    CONTENT = "content"
    STRUCTURED_OUTPUT = "structured_output"
    ERROR = "error"


class AnalysisType(Enum):
    """Origin of a stored analysis reference."""
    SEMANTIC = "semantic"
    LLM = "llm"
