"""
Configuration models for the Semantic Routing System.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
import logging


@dataclass
class RoutingThresholds:
    """Confidence thresholds used by the planner, orchestrator and router."""
    semantic_confidence: float = 0.7
    low_confidence: float = 0.3
    llm_required_confidence: float = 0.6
    orchestrator_fallback_confidence: float = 0.7
    planner_fallback_confidence: float = 0.7


@dataclass
class TimeoutConfig:
    """Per-pipeline agent timeouts in milliseconds."""
    upload_timeout_ms: int = 60000
    query_timeout_ms: int = 30000
    routing_timeout_ms: int = 5000
    chart_wait_ms: int = 10000


@dataclass
class RetryConfig:
    """Bounded retry policy for the profiling stage of the upload pipeline."""
    max_retries: int = 2
    backoff_ms: int = 1000


@dataclass
class UploadLimits:
    """Synchronous validation limits for uploaded files."""
    max_file_size_bytes: int = 500 * 1024 * 1024
    allowed_extensions: List[str] = field(default_factory=lambda: [".csv"])


@dataclass
class HealthPolicy:
    """Thresholds for an agent to report itself healthy."""
    min_success_rate: float = 0.95
    max_error_count: int = 10


@dataclass
class OpenAIConfig:
    """Configuration for the hosted LLM conversation stream."""
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int = 1500
    timeout_seconds: int = 60
    max_retries: int = 3
    max_history_messages: int = 20
    system_prompt: str = (
        "You are a data analyst. Answer questions about the user's uploaded CSV "
        "dataset clearly and concisely."
    )


@dataclass
class LocalLLMConfig:
    """Configuration for a local Ollama model used as the LLM backend."""
    model_path: str = "qwen2.5:7b"
    base_url: str = "http://localhost:11434"
    temperature: float = 0.2
    timeout_seconds: int = 60
    max_history_messages: int = 20


@dataclass
class LoggingConfig:
    """Configuration for system logging."""
    level: int = logging.INFO
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = "semantic_routing.log"
    max_file_size_mb: int = 100
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = True


@dataclass
class SystemConfig:
    """Main system configuration."""
    routing_thresholds: RoutingThresholds = field(default_factory=RoutingThresholds)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    upload_limits: UploadLimits = field(default_factory=UploadLimits)
    health_policy: HealthPolicy = field(default_factory=HealthPolicy)
    openai_config: OpenAIConfig = field(default_factory=OpenAIConfig)
    local_llm_config: LocalLLMConfig = field(default_factory=LocalLLMConfig)
    logging_config: LoggingConfig = field(default_factory=LoggingConfig)
    llm_backend: str = "openai"
    debug_mode: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
