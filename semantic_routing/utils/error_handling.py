"""
Error handling utilities and custom exceptions for the Semantic Routing System.
"""

import random
import time
from functools import wraps
from typing import Optional, Dict, Any, Tuple, Type

from ..models.enums import AgentType


class SemanticRoutingError(Exception):
    """Base exception for all Semantic Routing System errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}


class ConfigurationError(SemanticRoutingError):
    """Raised when there are configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="CONFIG_ERROR", **kwargs)
        self.config_key = config_key


class AgentError(SemanticRoutingError):
    """Raised by or on behalf of a specific agent."""

    def __init__(self, message: str, agent_type: Optional[AgentType] = None,
                 code: str = "AGENT_ERROR", details: Any = None, **kwargs):
        super().__init__(message, error_code=code, **kwargs)
        self.agent_type = agent_type
        self.details = details

    @property
    def code(self) -> str:
        return self.error_code


class AgentValidationError(AgentError):
    """Raised when agent input fails validation. Never retried."""

    def __init__(self, message: str, agent_type: Optional[AgentType] = None, details: Any = None, **kwargs):
        super().__init__(message, agent_type=agent_type, code="INVALID_INPUT", details=details, **kwargs)


class AgentTimeoutError(AgentError):
    """Raised when an agent does not finish within its execution context timeout."""

    def __init__(self, agent_type: AgentType, timeout_ms: int, **kwargs):
        super().__init__(
            f"Agent {agent_type.value} timed out after {timeout_ms}ms",
            agent_type=agent_type,
            code="TIMEOUT",
            **kwargs
        )
        self.timeout_ms = timeout_ms


class AgentNotFoundError(AgentError):
    """Raised when a pipeline stage has no registered agent."""

    def __init__(self, message: str, agent_type: Optional[AgentType] = None, **kwargs):
        super().__init__(message, agent_type=agent_type, code="AGENT_NOT_FOUND", **kwargs)


class DuplicateAgentError(AgentError):
    """Raised when a second agent of an already registered type is registered."""

    def __init__(self, agent_type: AgentType, **kwargs):
        super().__init__(
            f"Agent of type {agent_type.value} is already registered",
            agent_type=agent_type,
            code="DUPLICATE_AGENT",
            **kwargs
        )


class FileValidationError(SemanticRoutingError):
    """Raised when an uploaded file fails synchronous validation."""

    def __init__(self, message: str, filename: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="FILE_VALIDATION", **kwargs)
        self.filename = filename


class ClassificationError(SemanticRoutingError):
    """Raised when intent classification fails."""

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="CLASSIFICATION_ERROR", **kwargs)
        self.query = query


class LLMStreamError(SemanticRoutingError):
    """Raised when the LLM conversation stream reports or hits an error."""

    def __init__(self, message: str, backend: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="LLM_ERROR", **kwargs)
        self.backend = backend


class FallbackError(SemanticRoutingError):
    """Raised when the LLM safety net itself fails."""

    def __init__(self, message: str, attempted_strategies: Optional[list] = None, **kwargs):
        super().__init__(message, error_code="FALLBACK_ERROR", **kwargs)
        self.attempted_strategies = attempted_strategies or []


def handle_error(error: Exception, logger=None, context: Optional[Dict[str, Any]] = None) -> SemanticRoutingError:
    """
    Convert generic exceptions to SemanticRoutingError instances.

    Args:
        error: The original exception
        logger: Optional RoutingLogger for error reporting
        context: Additional context information

    Returns:
        SemanticRoutingError instance
    """
    if isinstance(error, SemanticRoutingError):
        return error

    if isinstance(error, ValueError):
        routing_error = SemanticRoutingError(str(error), error_code="INVALID_VALUE", context=context)
    elif isinstance(error, ConnectionError):
        routing_error = LLMStreamError(str(error), context=context)
    elif isinstance(error, TimeoutError):
        routing_error = SemanticRoutingError(f"Operation timed out: {str(error)}", error_code="TIMEOUT", context=context)
    else:
        routing_error = SemanticRoutingError(str(error), error_code="EXECUTION_ERROR", context=context)

    if logger:
        logger.log_error(routing_error, context)

    return routing_error


def retry_with_backoff(max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 60.0,
                       retry_on: Tuple[Type[BaseException], ...] = (Exception,)):
    """
    Decorator for implementing retry logic with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        retry_on: Exception types that trigger another attempt
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e

                    if attempt == max_retries:
                        break

                    # Exponential backoff with jitter
                    delay = min(base_delay * (2 ** attempt), max_delay)
                    jitter = random.uniform(0.1, 0.3) * delay
                    time.sleep(delay + jitter)

            raise FallbackError(
                f"All retry attempts failed: {str(last_exception)}",
                context={"max_retries": max_retries, "last_error": str(last_exception)}
            ) from last_exception

        return wrapper

    return decorator
