"""
Demo script showing basic usage of the Semantic Routing System.
"""

import csv
import io
import uuid
from collections import defaultdict
from typing import Any, Dict, Iterator, List, Optional

from .models import (
    ChunkType,
    ColumnProfile,
    DataProfile,
    ExecutionPlan,
    FileMetadata,
    QueryIntent,
    SchemaProfile,
    SemanticExecutionResult,
    StepType,
    StreamChunk,
    UploadedFile,
)
from .utils import setup_logging, get_logger, ConfigManager
from .core import InMemoryFileStore, build_orchestrator, create_llm_stream


SAMPLE_CSV = """date,region,category,sales,quantity
2024-01-05,North,Hardware,1200.50,10
2024-01-12,South,Software,850.00,4
2024-02-03,North,Software,430.25,2
2024-02-19,East,Hardware,1999.99,15
2024-03-01,South,Hardware,760.00,6
2024-03-22,East,Software,310.75,3
"""


class CsvProfiler:
    """Minimal profiler: column names, inferred types and row counts."""

    def __init__(self):
        self.rows: Dict[str, List[Dict[str, Any]]] = {}

    def profile(self, file: UploadedFile) -> DataProfile:
        reader = csv.DictReader(io.StringIO(file.content.decode("utf-8")))
        rows = [_coerce_row(row) for row in reader]
        columns = [ColumnProfile(name=name, type=_infer_type(name, rows)) for name in reader.fieldnames or []]

        profile = DataProfile(
            id=f"profile-{uuid.uuid4().hex[:8]}",
            metadata=FileMetadata(
                filename=file.name,
                size=file.size,
                row_count=len(rows),
                column_count=len(columns)
            ),
            schema=SchemaProfile(columns=columns),
            sample_data=rows[:5]
        )
        self.rows[profile.id] = rows
        return profile


class InMemoryExecutor:
    """Executes aggregate, sort and limit steps over rows kept by the profiler."""

    def __init__(self, profiler: CsvProfiler):
        self.profiler = profiler

    def execute(self, intent: QueryIntent, profile: DataProfile, plan: ExecutionPlan) -> SemanticExecutionResult:
        rows = list(self.profiler.rows.get(profile.id, []))
        if plan.fallback_to_llm:
            return SemanticExecutionResult(requires_llm_processing=True, llm_fallback_reason="plan requires LLM")

        for step in plan.steps:
            if step.type == StepType.AGGREGATE:
                rows = _aggregate(rows, step.params["measures"], step.params["dimensions"])
            elif step.type == StepType.SORT and step.params["columns"]:
                column = step.params["columns"][0]
                rows.sort(key=lambda row: row.get(column) or 0, reverse=step.params["direction"] == "desc")
            elif step.type == StepType.LIMIT:
                rows = rows[:step.params["limit"]]

        findings = [f"{len(rows)} result rows for a {intent.type.value} query"]
        return SemanticExecutionResult(data=rows, insights={"key_findings": findings})


class CannedLLMStream:
    """Offline stand-in used when no LLM backend is configured."""

    backend = "canned"

    def stream(self, session_id: str, query: str, file_id: Optional[str] = None) -> Iterator[StreamChunk]:
        for word in f"(offline) I would need an LLM to fully answer: {query}".split(" "):
            yield StreamChunk(ChunkType.CONTENT, {"delta": word + " "})


def _coerce_row(row: Dict[str, str]) -> Dict[str, Any]:
    coerced = {}
    for key, value in row.items():
        try:
            coerced[key] = float(value)
        except (TypeError, ValueError):
            coerced[key] = value
    return coerced


def _infer_type(name: str, rows: List[Dict[str, Any]]) -> str:
    if "date" in name.lower():
        return "date"
    if rows and all(isinstance(row.get(name), float) for row in rows):
        return "number"
    return "text"


def _aggregate(rows: List[Dict[str, Any]], measures: List[str], dimensions: List[str]) -> List[Dict[str, Any]]:
    numeric = [m for m in measures if rows and isinstance(rows[0].get(m), float)]
    if not numeric:
        return rows

    groups: Dict[tuple, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
    for row in rows:
        key = tuple(row.get(d) for d in dimensions)
        for measure in numeric:
            groups[key][measure] += row[measure]

    return [
        {**dict(zip(dimensions, key)), **{m: round(v, 2) for m, v in totals.items()}}
        for key, totals in groups.items()
    ]


def main():
    """Demonstrate upload, semantic answers and LLM fallback."""
    config_manager = ConfigManager()
    config = config_manager.load_config()

    setup_logging(config.logging_config)
    logger = get_logger(__name__)
    logger.info("Semantic Routing System Demo Starting")

    file_store = InMemoryFileStore()
    profiler = CsvProfiler()
    has_backend = config.llm_backend == "local" or bool(config.openai_config.api_key)
    llm_stream = (create_llm_stream(config.llm_backend, config.openai_config, config.local_llm_config, file_store)
                  if has_backend else CannedLLMStream())

    orchestrator = build_orchestrator(
        profiler,
        InMemoryExecutor(profiler),
        llm_stream,
        config=config,
        file_store=file_store
    )

    content = SAMPLE_CSV.encode("utf-8")
    profile = orchestrator.process_data_upload(
        UploadedFile(content=content, name="sales.csv", mime_type="text/csv", size=len(content))
    )

    queries = [
        "Sum of sales",
        "Top 3 sales by region",
        "Give me an overview of the dataset",
        "Why did customers in the north behave differently?",
    ]

    for i, query in enumerate(queries, 1):
        result = orchestrator.execute_query(query, profile.id)
        print(f"\nQuery {i}: {query}")
        print(f"Intent: {result.intent.type.value} (confidence: {result.intent.confidence:.2f})")
        print(f"Path: {' -> '.join(agent.value for agent in result.metadata.agent_path)}")
        if result.response:
            print(f"Response: {result.response}")
        for row in result.data[:3]:
            print(f"  {row}")
        print("-" * 50)

    orchestrator.shutdown()
    logger.info("Demo completed successfully")


if __name__ == "__main__":
    main()
