"""
Shared fakes and fixtures for the Semantic Routing System tests.
"""

import time
from typing import Any, Dict, Iterator, List, Optional

import pytest

from semantic_routing.models import (
    AgentType,
    ChunkType,
    ColumnProfile,
    DataProfile,
    FileMetadata,
    QueryIntent,
    QueryPlannerResult,
    QueryType,
    RetryConfig,
    SchemaProfile,
    SemanticExecutionResult,
    StreamChunk,
    SystemConfig,
    TimeoutConfig,
    UploadedFile,
    create_execution_context,
)
from semantic_routing.core.base import BaseAgent
from semantic_routing.core.planner import QueryPlannerAgent


def make_profile(columns=("sales", "region"), row_count=999, profile_id="profile-1") -> DataProfile:
    return DataProfile(
        id=profile_id,
        metadata=FileMetadata(filename="data.csv", size=1024, row_count=row_count, column_count=len(columns)),
        schema=SchemaProfile(columns=[ColumnProfile(name=name) for name in columns]),
        sample_data=[{"sales": 10.0, "region": "North"}]
    )


def make_csv_file(name="data.csv", content=b"sales,region\n10,North\n20,South\n") -> UploadedFile:
    return UploadedFile(content=content, name=name, mime_type="text/csv", size=len(content))


class FakeProfiler:
    def __init__(self, fail_times=0, columns=("sales", "region")):
        self.fail_times = fail_times
        self.columns = columns
        self.calls = 0

    def profile(self, file: UploadedFile) -> DataProfile:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise RuntimeError("profiler unavailable")
        return make_profile(self.columns)


class FakeAssessor:
    def __init__(self, fail=False):
        self.fail = fail

    def assess(self, profile: DataProfile) -> Dict[str, Any]:
        if self.fail:
            raise RuntimeError("assessment crashed")
        return {"pii_columns": [], "risk": "low"}


class FakeExecutor:
    def __init__(self, result: Optional[SemanticExecutionResult] = None, fail=False):
        self.result = result or SemanticExecutionResult(
            data=[{"region": "North", "sales": 30.0}, {"region": "South", "sales": 20.0}],
            insights={"key_findings": ["North leads sales"],
                      "trends": [{"metric": "sales", "direction": "increasing", "change_percent": 12}]},
            suggestions=["Break sales down by month"]
        )
        self.fail = fail
        self.calls = 0

    def execute(self, intent, profile, plan) -> SemanticExecutionResult:
        self.calls += 1
        if self.fail:
            raise RuntimeError("executor exploded")
        return self.result


class FakeChartRenderer:
    def __init__(self, fail=False):
        self.fail = fail

    def render(self, data, visualization):
        if self.fail:
            raise RuntimeError("renderer broke")
        return {"type": visualization.type, "points": len(data)}


class ScriptedStream:
    """
    LLM stream returning canned chunks.

    ``failing`` is a predicate over (session_id, call_number) deciding
    whether the call yields an error chunk instead of content.
    """

    backend = "scripted"

    def __init__(self, text="LLM answer", failing=None, structured=None):
        self.text = text
        self.failing = failing or (lambda session_id, call: False)
        self.structured = structured
        self.calls: List[Dict[str, Any]] = []

    def stream(self, session_id: str, query: str, file_id: Optional[str] = None) -> Iterator[StreamChunk]:
        self.calls.append({"session_id": session_id, "query": query, "file_id": file_id})
        if self.failing(session_id, len(self.calls)):
            yield StreamChunk(ChunkType.ERROR, {"error": "backend down"})
            return
        for word in self.text.split(" "):
            yield StreamChunk(ChunkType.CONTENT, {"delta": word + " "})
        if self.structured is not None:
            yield StreamChunk(ChunkType.STRUCTURED_OUTPUT, self.structured)


class StubPlanner(BaseAgent):
    """Planner returning a fixed confidence for whatever it is asked."""

    agent_type = AgentType.QUERY_PLANNING
    name = "StubPlanner"

    def __init__(self, confidence: float, query_type=QueryType.AGGREGATION):
        super().__init__()
        self.confidence = confidence
        self.query_type = query_type
        self._planner = QueryPlannerAgent()

    def execute_internal(self, input_data, context) -> QueryPlannerResult:
        real = self._planner.execute_internal(input_data, context)
        intent = QueryIntent(
            type=self.query_type,
            confidence=self.confidence,
            original_query=input_data.query,
            measures=["sales"]
        )
        return QueryPlannerResult(query_intent=intent, execution_plan=real.execution_plan)


class SleepyAgent(BaseAgent):
    agent_type = AgentType.CHART
    name = "SleepyAgent"

    def __init__(self, delay_s=0.2, **kwargs):
        super().__init__(**kwargs)
        self.delay_s = delay_s

    def execute_internal(self, input_data, context):
        time.sleep(self.delay_s)
        return input_data


class EchoAgent(BaseAgent):
    agent_type = AgentType.PROFILING
    name = "EchoAgent"

    def __init__(self, fail=False, **kwargs):
        super().__init__(**kwargs)
        self.fail = fail

    def execute_internal(self, input_data, context):
        if self.fail:
            raise ValueError("echo failed")
        return input_data


@pytest.fixture
def context():
    return create_execution_context("test-request", timeout_ms=5000)


@pytest.fixture
def fast_config():
    return SystemConfig(
        retry=RetryConfig(max_retries=2, backoff_ms=1),
        timeouts=TimeoutConfig(upload_timeout_ms=5000, query_timeout_ms=5000,
                               routing_timeout_ms=5000, chart_wait_ms=2000)
    )
