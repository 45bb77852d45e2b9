"""
Utility modules for the Semantic Routing System.
"""

from .logging import setup_logging, get_logger, RoutingLogger
from .config_manager import ConfigManager
from .error_handling import (
    SemanticRoutingError,
    ConfigurationError,
    AgentError,
    AgentValidationError,
    AgentTimeoutError,
    AgentNotFoundError,
    DuplicateAgentError,
    FileValidationError,
    ClassificationError,
    LLMStreamError,
    FallbackError,
    handle_error,
    retry_with_backoff,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "RoutingLogger",
    "ConfigManager",
    "SemanticRoutingError",
    "ConfigurationError",
    "AgentError",
    "AgentValidationError",
    "AgentTimeoutError",
    "AgentNotFoundError",
    "DuplicateAgentError",
    "FileValidationError",
    "ClassificationError",
    "LLMStreamError",
    "FallbackError",
    "handle_error",
    "retry_with_backoff",
]
