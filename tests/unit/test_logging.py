"""Unit tests for structured logging."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator

import pytest

from stepflow.engine.logging import JsonFormatter, configure_logging


@pytest.fixture
def root_logger() -> Iterator[logging.Logger]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("stepflow.test", logging.INFO, __file__, 1, msg, None, None)
    record.__dict__.update(extra)
    return record


def test_formatter_emits_extra_fields() -> None:
    line = JsonFormatter().format(_record("Step failed", error="busy", attempts=2))
    payload = json.loads(line)

    assert payload["level"] == "INFO"
    assert payload["logger"] == "stepflow.test"
    assert payload["message"] == "Step failed"
    assert payload["extra"] == {"error": "busy", "attempts": 2}
    assert "exception" not in payload


def test_formatter_handles_unserializable_values() -> None:
    payload = json.loads(JsonFormatter().format(_record("x", value=object())))
    assert payload["extra"]["value"].startswith("<object object")


def test_configure_logging_writes_json_lines(root_logger: logging.Logger) -> None:
    stream = io.StringIO()
    configure_logging("debug", stream=stream)

    logging.getLogger("stepflow.engine").debug("Run data points initialized", extra={"context": 3})
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logging.getLogger("stepflow.engine").exception("Workflow run aborted")

    first, second = (json.loads(line) for line in stream.getvalue().splitlines())
    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert first["extra"] == {"context": 3}
    assert second["level"] == "ERROR"
    assert "RuntimeError: boom" in second["exception"]


def test_run_and_step_ids_are_top_level() -> None:
    record = _record(
        "Step succeeded", workflow_id="wf_1", step_id="step_2", kind="task", attempts=1
    )
    payload = json.loads(JsonFormatter().format(record))

    assert payload["workflow_id"] == "wf_1"
    assert payload["step_id"] == "step_2"
    assert payload["kind"] == "task"
    assert payload["extra"] == {"attempts": 1}


def test_context_only_record_has_no_extra_block() -> None:
    payload = json.loads(JsonFormatter().format(_record("Workflow run started", workflow_id="wf_1")))

    assert payload["workflow_id"] == "wf_1"
    assert "extra" not in payload
