"""
Tests for error conversion, retry decorator and logging setup.
"""

import logging

import pytest

from semantic_routing.models import LoggingConfig
from semantic_routing.utils import (
    FallbackError,
    LLMStreamError,
    SemanticRoutingError,
    get_logger,
    handle_error,
    retry_with_backoff,
    setup_logging,
)


@pytest.mark.parametrize("error, code", [
    (ValueError("bad"), "INVALID_VALUE"),
    (TimeoutError("slow"), "TIMEOUT"),
    (KeyError("missing"), "EXECUTION_ERROR"),
])
def test_handle_error_wraps_generic_exceptions(error, code):
    converted = handle_error(error, context={"step": "test"})

    assert isinstance(converted, SemanticRoutingError)
    assert converted.error_code == code
    assert converted.context == {"step": "test"}


def test_handle_error_maps_connection_errors_to_llm_errors():
    assert isinstance(handle_error(ConnectionError("refused")), LLMStreamError)


def test_handle_error_passes_routing_errors_through():
    error = FallbackError("gave up")
    assert handle_error(error) is error


def test_retry_with_backoff_retries_then_succeeds(monkeypatch):
    delays = []
    monkeypatch.setattr("semantic_routing.utils.error_handling.time.sleep", delays.append)
    attempts = []

    @retry_with_backoff(max_retries=3, base_delay=1.0)
    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("try again")
        return "done"

    assert flaky() == "done"
    assert len(delays) == 2
    assert 1.1 <= delays[0] <= 1.3
    assert 2.2 <= delays[1] <= 2.6


def test_retry_with_backoff_raises_fallback_error(monkeypatch):
    monkeypatch.setattr("semantic_routing.utils.error_handling.time.sleep", lambda seconds: None)

    @retry_with_backoff(max_retries=1)
    def broken():
        raise RuntimeError("still broken")

    with pytest.raises(FallbackError) as exc_info:
        broken()

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert exc_info.value.context["max_retries"] == 1


def test_retry_with_backoff_only_retries_listed_errors(monkeypatch):
    monkeypatch.setattr("semantic_routing.utils.error_handling.time.sleep", lambda seconds: None)

    @retry_with_backoff(max_retries=3, retry_on=(ConnectionError,))
    def wrong():
        raise KeyError("not retried")

    with pytest.raises(KeyError):
        wrong()


def test_get_logger_namespaces_under_package():
    assert get_logger("tests").name == "semantic_routing.tests"
    assert get_logger("semantic_routing.core").name == "semantic_routing.core"


def test_setup_logging_writes_rotating_file(tmp_path):
    log_file = tmp_path / "logs" / "routing.log"
    setup_logging(LoggingConfig(level=logging.DEBUG, file_path=str(log_file), enable_console=False))

    get_logger("tests").info("hello from tests")
    for handler in logging.getLogger("semantic_routing").handlers:
        handler.flush()

    assert "hello from tests" in log_file.read_text(encoding="utf-8")

    root = logging.getLogger("semantic_routing")
    for handler in list(root.handlers):
        handler.close()
    root.handlers.clear()
    root.propagate = True
