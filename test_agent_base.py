"""
Tests for the agent execution envelope and retry helper.
"""

import time

import pytest

from semantic_routing.models import AgentType, create_execution_context
from semantic_routing.core.base import retry_execution
from semantic_routing.utils.error_handling import AgentTimeoutError, AgentValidationError

from conftest import EchoAgent, SleepyAgent


class FlakyAgent(EchoAgent):
    def __init__(self, failures, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.attempts = 0

    def execute_internal(self, input_data, context):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RuntimeError(f"attempt {self.attempts} failed")
        return "ok"


def test_successful_execution_records_metrics(context):
    agent = EchoAgent()
    result = agent.execute({"value": 1}, context)

    assert result.success
    assert result.data == {"value": 1}
    assert result.error is None
    assert result.metrics.execution_time_ms >= 0
    assert result.metrics.cache_hit is False

    health = agent.get_health()
    assert health.total_executions == 1
    assert health.successful_executions == 1
    assert health.success_rate == 1.0
    assert health.healthy


def test_slow_agent_times_out_and_counts_once():
    agent = SleepyAgent(delay_s=0.3)
    context = create_execution_context("slow", timeout_ms=1)

    result = agent.execute("payload", context)

    assert not result.success
    assert isinstance(result.error, AgentTimeoutError)
    assert result.error.code == "TIMEOUT"
    assert result.error.agent_type == AgentType.CHART
    assert "1ms" in str(result.error)

    health = agent.get_health()
    assert health.total_executions == 1
    assert health.error_count == 1


class CommittingAgent(EchoAgent):
    """Claims the token, optionally after a delay, and reports whether it won."""

    def __init__(self, delay_before_s=0.0, delay_after_s=0.0, **kwargs):
        super().__init__(**kwargs)
        self.delay_before_s = delay_before_s
        self.delay_after_s = delay_after_s
        self.committed = []

    def execute_internal(self, input_data, context):
        time.sleep(self.delay_before_s)
        self.committed.append(context.cancellation.commit())
        time.sleep(self.delay_after_s)
        return input_data


def test_timer_cancels_work_that_has_not_committed():
    agent = CommittingAgent(delay_before_s=0.2)

    result = agent.execute("payload", create_execution_context("late", timeout_ms=50))
    time.sleep(0.4)

    assert isinstance(result.error, AgentTimeoutError)
    assert agent.committed == [False]


def test_committed_work_is_waited_for_past_the_timeout():
    agent = CommittingAgent(delay_after_s=0.2)

    result = agent.execute("payload", create_execution_context("committed", timeout_ms=50))

    assert result.success
    assert result.data == "payload"
    assert agent.committed == [True]


def test_each_execution_gets_a_fresh_token(context):
    agent = CommittingAgent()

    agent.execute("first", context)
    agent.execute("second", context)

    assert agent.committed == [True, True]
    assert context.cancellation is None


def test_invalid_input_is_rejected(context):
    agent = EchoAgent()
    result = agent.execute(None, context)

    assert not result.success
    assert isinstance(result.error, AgentValidationError)
    assert result.error.code == "INVALID_INPUT"
    assert agent.get_health().error_count == 1


def test_execution_error_is_returned_not_raised(context):
    agent = EchoAgent(fail=True)
    result = agent.execute("payload", context)

    assert not result.success
    assert isinstance(result.error, ValueError)
    assert agent.get_health().errors == ["echo failed"]


def test_health_with_no_executions():
    health = EchoAgent().get_health()

    assert health.total_executions == 0
    assert health.success_rate == 1.0
    assert health.avg_execution_time_ms == 0.0
    assert health.healthy


def test_health_is_false_at_ten_errors_despite_high_success_rate(context):
    agent = EchoAgent()
    for _ in range(300):
        agent.execute("ok", context)

    agent.fail = True
    for _ in range(10):
        agent.execute("boom", context)

    health = agent.get_health()
    assert health.success_rate > 0.95
    assert health.error_count == 10
    assert not health.healthy


def test_retry_returns_first_success_with_exponential_backoff(monkeypatch, context):
    delays = []
    monkeypatch.setattr("semantic_routing.core.base.time.sleep", delays.append)
    agent = FlakyAgent(failures=2)

    result = retry_execution(agent, "payload", context, max_retries=3, backoff_ms=100)

    assert result.success
    assert result.data == "ok"
    assert agent.attempts == 3
    assert delays == [0.1, 0.2]


def test_retry_returns_last_failure_when_exhausted(monkeypatch, context):
    monkeypatch.setattr("semantic_routing.core.base.time.sleep", lambda seconds: None)
    agent = FlakyAgent(failures=10)

    result = retry_execution(agent, "payload", context, max_retries=2, backoff_ms=1)

    assert not result.success
    assert agent.attempts == 3
    assert "attempt 3 failed" in str(result.error)


def test_retry_does_not_retry_invalid_input(monkeypatch, context):
    delays = []
    monkeypatch.setattr("semantic_routing.core.base.time.sleep", delays.append)
    agent = FlakyAgent(failures=0)

    result = retry_execution(agent, None, context, max_retries=3, backoff_ms=1)

    assert not result.success
    assert isinstance(result.error, AgentValidationError)
    assert agent.get_health().total_executions == 1
    assert delays == []


@pytest.mark.parametrize("timeout_ms", [50, 5000])
def test_active_executions_settle_after_completion(timeout_ms):
    agent = EchoAgent()
    agent.execute("payload", create_execution_context("settle", timeout_ms=timeout_ms))

    assert agent.active_executions == 0
