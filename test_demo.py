"""
End-to-end run of the demo collaborators through a real orchestrator.
"""

import pytest

from semantic_routing.models import AgentType, QueryType, UploadedFile
from semantic_routing.core import build_orchestrator
from semantic_routing.demo import SAMPLE_CSV, CannedLLMStream, CsvProfiler, InMemoryExecutor


@pytest.fixture
def demo(fast_config):
    profiler = CsvProfiler()
    orchestrator = build_orchestrator(profiler, InMemoryExecutor(profiler), CannedLLMStream(), config=fast_config)
    content = SAMPLE_CSV.encode("utf-8")
    profile = orchestrator.process_data_upload(
        UploadedFile(content=content, name="sales.csv", mime_type="text/csv", size=len(content))
    )
    yield orchestrator, profile
    orchestrator.shutdown()


def test_profiler_infers_column_types(demo):
    _, profile = demo

    types = {column.name: column.type for column in profile.schema.columns}
    assert types == {
        "date": "date", "region": "text", "category": "text", "sales": "number", "quantity": "number",
    }
    assert profile.metadata.row_count == 6
    assert len(profile.sample_data) == 5


def test_total_is_computed_semantically(demo):
    orchestrator, profile = demo

    result = orchestrator.execute_query("Sum of sales", profile.id)

    assert result.intent.type == QueryType.AGGREGATION
    assert result.data == [{"sales": 5551.49}]
    assert result.response is None


def test_ranking_sorts_and_limits(demo):
    orchestrator, profile = demo

    result = orchestrator.execute_query("Top 2 sales by region", profile.id)

    assert result.intent.type == QueryType.RANKING
    assert [row["region"] for row in result.data] == ["East", "North"]
    assert result.data[0]["sales"] == 2310.74


def test_open_question_goes_to_llm(demo):
    orchestrator, profile = demo

    result = orchestrator.execute_query("Why did customers in the north behave differently?", profile.id)

    assert result.metadata.agent_path == [AgentType.CONVERSATION]
    assert result.response.startswith("(offline)")
