"""
Semantic Routing System

Answers natural-language questions about uploaded CSV data, routing each
query between a deterministic semantic layer and a hosted or local LLM
based on how confidently the query can be classified and planned.
"""

__version__ = "0.1.0"
__author__ = "Semantic Routing System"

from .models import (
    QueryIntent,
    ExecutionPlan,
    AnalysisResult,
    ConversationInput,
    ConversationOutput,
    DataProfile,
    UploadedFile,
    SystemConfig,
)

__all__ = [
    "QueryIntent",
    "ExecutionPlan",
    "AnalysisResult",
    "ConversationInput",
    "ConversationOutput",
    "DataProfile",
    "UploadedFile",
    "SystemConfig",
]
