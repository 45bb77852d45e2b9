"""
Agent execution envelope shared by every agent in the system.

Each agent subclasses BaseAgent and implements ``execute_internal``. The
envelope validates input, races the agent's work against the context timeout,
records metrics and keeps the health counters that orchestrator health checks
read.
"""

import threading
import time
import tracemalloc
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Optional

from ..models import (
    AgentExecutionContext,
    AgentHealthStatus,
    AgentMetrics,
    AgentResult,
    AgentType,
    CancellationToken,
    HealthPolicy,
)
from ..utils import RoutingLogger, get_logger
from ..utils.error_handling import AgentTimeoutError, AgentValidationError


def _memory_in_use() -> int:
    """Bytes currently traced by tracemalloc, or 0 when tracing is off."""
    if not tracemalloc.is_tracing():
        return 0
    current, _ = tracemalloc.get_traced_memory()
    return current


class BaseAgent(ABC):
    """
    Abstract base class providing the common agent execution envelope.

    Subclasses set ``agent_type`` and ``name`` and implement
    ``execute_internal``. ``execute`` never raises: every outcome is returned
    as an AgentResult.
    """

    agent_type: AgentType
    name: str = "BaseAgent"
    version: str = "1.0.0"

    def __init__(self, health_policy: Optional[HealthPolicy] = None):
        self.logger = get_logger(__name__)
        self.routing_logger = RoutingLogger("agents")
        self.health_policy = health_policy or HealthPolicy()

        self._started_at = datetime.now()
        self._metrics_lock = threading.Lock()
        self._total_executions = 0
        self._successful_executions = 0
        self._error_count = 0
        self._total_execution_time_ms = 0.0
        self._recent_errors = []
        self._max_recent_errors = 10

        self._active_lock = threading.Lock()
        self._active_executions = 0

    def execute(self, input_data: Any, context: AgentExecutionContext) -> AgentResult:
        """
        Execute the agent inside the envelope.

        Args:
            input_data: Agent specific input
            context: Per-invocation execution context

        Returns:
            AgentResult: success flag, data or error, and execution metrics
        """
        if not self._is_valid(input_data):
            error = AgentValidationError(
                f"Invalid input for agent {self.agent_type.value}",
                agent_type=self.agent_type,
                details=input_data
            )
            self._record_outcome(False, 0.0, error)
            self.logger.warning(f"[{self.agent_type.value}] rejected invalid input (request {context.request_id})")
            return AgentResult(success=False, error=error, metrics=AgentMetrics())

        start_time = time.perf_counter()
        start_memory = _memory_in_use()

        try:
            data = self._run_with_timeout(input_data, context)
        except Exception as e:
            execution_time_ms = (time.perf_counter() - start_time) * 1000
            self._record_outcome(False, execution_time_ms, e)
            self.routing_logger.log_agent_execution(
                self.agent_type.value, context.request_id, False, execution_time_ms
            )
            self.logger.error(f"Agent {self.agent_type.value} execution failed: {str(e)}")
            return AgentResult(
                success=False,
                error=e,
                metrics=AgentMetrics(
                    execution_time_ms=execution_time_ms,
                    memory_used_bytes=_memory_in_use() - start_memory,
                    cache_hit=False
                )
            )

        execution_time_ms = (time.perf_counter() - start_time) * 1000
        self._record_outcome(True, execution_time_ms)
        self.routing_logger.log_agent_execution(
            self.agent_type.value, context.request_id, True, execution_time_ms
        )

        return AgentResult(
            success=True,
            data=data,
            metrics=AgentMetrics(
                execution_time_ms=execution_time_ms,
                memory_used_bytes=_memory_in_use() - start_memory,
                cache_hit=self.was_cache_hit(data)
            )
        )

    @abstractmethod
    def execute_internal(self, input_data: Any, context: AgentExecutionContext) -> Any:
        """Agent specific work, run concurrently with the timeout timer."""

    def validate_input(self, input_data: Any) -> bool:
        """Default input validation - can be overridden."""
        return input_data is not None

    def was_cache_hit(self, data: Any) -> bool:
        """Whether the produced data was served from a cache."""
        return False

    def get_health(self) -> AgentHealthStatus:
        """Compute the agent's health from its cumulative counters."""
        with self._metrics_lock:
            total = self._total_executions
            successful = self._successful_executions
            errors = self._error_count
            total_time = self._total_execution_time_ms
            recent_errors = list(self._recent_errors)

        success_rate = successful / total if total > 0 else 1.0
        avg_execution_time = total_time / total if total > 0 else 0.0
        now = datetime.now()

        return AgentHealthStatus(
            healthy=(success_rate > self.health_policy.min_success_rate
                     and errors < self.health_policy.max_error_count),
            last_check=now,
            uptime_ms=(now - self._started_at).total_seconds() * 1000,
            total_executions=total,
            successful_executions=successful,
            success_rate=success_rate,
            avg_execution_time_ms=avg_execution_time,
            error_count=errors,
            errors=recent_errors
        )

    @property
    def active_executions(self) -> int:
        """Executions still running, including ones abandoned after a timeout."""
        with self._active_lock:
            return self._active_executions

    def dispose(self) -> None:
        """Clean up resources when shutting down."""
        self.logger.info(f"Disposing agent {self.agent_type.value}")

    def describe(self) -> Dict[str, str]:
        return {"type": self.agent_type.value, "name": self.name, "version": self.version}

    def _is_valid(self, input_data: Any) -> bool:
        try:
            return bool(self.validate_input(input_data))
        except (TypeError, ValueError, AttributeError) as e:
            self.logger.debug(f"[{self.agent_type.value}] input validation raised: {e}")
            return False

    def _run_with_timeout(self, input_data: Any, context: AgentExecutionContext) -> Any:
        """
        Race ``execute_internal`` against ``context.timeout_ms``.

        The work runs on a daemon thread with its own CancellationToken on the
        context. When the timer wins, the token is cancelled and the thread is
        left running; agents check the token before publishing shared state and
        whatever the thread eventually returns is discarded. If the worker has
        already committed its writes, the envelope waits for it to finish.
        """
        outcome: Dict[str, Any] = {}
        finished = threading.Event()
        token = CancellationToken()
        run_context = replace(context, cancellation=token)

        def worker():
            try:
                outcome["result"] = self.execute_internal(input_data, run_context)
            except Exception as e:
                outcome["error"] = e
            finally:
                with self._active_lock:
                    self._active_executions -= 1
                finished.set()

        with self._active_lock:
            self._active_executions += 1

        thread = threading.Thread(
            target=worker,
            name=f"{self.agent_type.value}-{context.request_id}",
            daemon=True
        )
        thread.start()

        if not finished.wait(context.timeout_ms / 1000.0):
            if token.cancel():
                raise AgentTimeoutError(self.agent_type, context.timeout_ms)
            finished.wait()

        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("result")

    def _record_outcome(self, success: bool, execution_time_ms: float,
                        error: Optional[Exception] = None) -> None:
        with self._metrics_lock:
            self._total_executions += 1
            self._total_execution_time_ms += execution_time_ms
            if success:
                self._successful_executions += 1
            else:
                self._error_count += 1
                if error is not None:
                    self._recent_errors.append(str(error))
                    self._recent_errors = self._recent_errors[-self._max_recent_errors:]


def retry_execution(agent: BaseAgent, input_data: Any, context: AgentExecutionContext,
                    max_retries: int = 3, backoff_ms: int = 1000) -> AgentResult:
    """
    Re-invoke ``agent.execute`` with exponential backoff until it succeeds.

    Args:
        agent: Agent to execute
        input_data: Agent input
        context: Execution context reused for every attempt
        max_retries: Retries after the first attempt
        backoff_ms: Base delay; attempt ``n`` waits ``backoff_ms * 2**n``

    Returns:
        The first successful AgentResult, or the last failure
    """
    logger = get_logger(__name__)
    last_result: Optional[AgentResult] = None

    for attempt in range(max_retries + 1):
        last_result = agent.execute(input_data, context)
        if last_result.success:
            return last_result

        if isinstance(last_result.error, AgentValidationError):
            break

        if attempt < max_retries:
            delay_ms = backoff_ms * (2 ** attempt)
            logger.info(
                f"Retrying {agent.agent_type.value} in {delay_ms}ms "
                f"(attempt {attempt + 1} of {max_retries}): {last_result.error}"
            )
            time.sleep(delay_ms / 1000.0)

    return last_result
