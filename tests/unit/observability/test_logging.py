"""
movesmith — unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with redaction, correlation metadata, and queue-backed reliability.

What this test file should cover
- JSON line validity and redaction guarantees.
- Correlation field propagation (session and execution ids).
- structlog events routed into the JSON sink.
- Multi-threaded logging stability and queue drain on close.

Functional requirements
- Offline operation.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from movesmith.observability.logging import (
    REDACTED,
    LoggingConfig,
    SecretScrubber,
    correlation_scope,
    get_correlation_context,
    redact_text,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _logger_name() -> str:
    return f"movesmith.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_logging_redacts_secrets_and_preserves_correlation_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    session = setup_structured_logging(
        LoggingConfig(session_id="sess-redaction", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(execution_id="exec-123", stage="generating"):
        logger.info(
            "fetched with token=ghp_FAKEFAKEFAKEFAKEFAKE1234 and api_key=sk-FAKE123456789012345",
            extra={"nested": {"password": "hunter2", "safe": "ok"}},
        )

    shutdown_logging(session)

    assert session.log_path == tmp_path / "sess-redaction" / "movesmith.jsonl"
    parsed = _read_json_lines(session.log_path)
    assert len(parsed) == 1
    first = parsed[0]
    assert first["session_id"] == "sess-redaction"
    assert first["execution_id"] == "exec-123"
    assert first["stage"] == "generating"
    assert first["fields"] == {"nested": {"password": "***REDACTED***", "safe": "ok"}}

    line = session.log_path.read_text(encoding="utf-8")
    assert "ghp_FAKE" not in line
    assert "sk-FAKE" not in line
    assert "hunter2" not in line


def test_setup_logging_routes_structlog_events(tmp_path: Path) -> None:
    session = setup_logging(
        {"log_level": "INFO", "log_dir": str(tmp_path), "redact_secrets": True},
        session_id="sess-structlog",
    )
    log = structlog.get_logger("movesmith.tests")

    log.info("candidate_store_seeded", count=3, authorization="token abc")
    log.debug("below_threshold")
    shutdown_logging(session)

    parsed = _read_json_lines(tmp_path / "sess-structlog" / "movesmith.jsonl")
    assert [item["event"] for item in parsed] == ["candidate_store_seeded"]
    assert parsed[0]["logger"] == "movesmith.tests"
    assert parsed[0]["fields"] == {"count": 3, "authorization": "***REDACTED***"}


def test_redaction_can_be_disabled(tmp_path: Path) -> None:
    session = setup_logging(
        {"log_level": "DEBUG", "log_dir": str(tmp_path), "redact_secrets": False},
        session_id="sess-plain",
    )
    structlog.get_logger("movesmith.tests").debug("plain", password="visible")
    shutdown_logging(session)

    parsed = _read_json_lines(tmp_path / "sess-plain" / "movesmith.jsonl")
    assert parsed[0]["fields"] == {"password": "visible"}


def test_correlation_scope_nests_and_resets() -> None:
    with correlation_scope(session_id="s1"):
        with correlation_scope(execution_id="e1"):
            assert get_correlation_context() == {"session_id": "s1", "execution_id": "e1"}
        assert get_correlation_context() == {"session_id": "s1"}
    assert get_correlation_context() == {}


def test_redact_text_masks_token_shapes() -> None:
    assert redact_text("sent Bearer abc.def") == "sent Bearer ***REDACTED***"
    assert redact_text("password=hunter2, ok") == "password=***REDACTED***, ok"
    assert "ghp_" not in redact_text("using ghp_abcdefghijklmnopqrstuvwxyz")
    assert redact_text("nothing secret here") == "nothing secret here"


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    logger_name = _logger_name()
    session = setup_structured_logging(
        LoggingConfig(
            session_id="sess-threaded",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=4096,
        )
    )
    logger = logging.getLogger(logger_name)

    total_threads = 8
    per_thread = 40

    def worker(thread_idx: int) -> None:
        for i in range(per_thread):
            logger.info(
                f"thread={thread_idx} index={i} token=tok-secret-{thread_idx}-{i}",
                extra={"api_key": f"sk-FAKE-{thread_idx}-{i}"},
            )

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(session)

    lines = session.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == total_threads * per_thread
    for line in lines:
        parsed = json.loads(line)
        assert isinstance(parsed, dict)
        assert "event" in parsed
        assert "tok-secret" not in line
        assert "sk-FAKE" not in line


def test_queue_handler_non_blocking_and_shutdown_flushes(tmp_path: Path) -> None:
    logger_name = _logger_name()
    session = setup_structured_logging(
        LoggingConfig(
            session_id="sess-flush",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=10_000,
        )
    )
    logger = logging.getLogger(logger_name)

    queue_handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.QueueHandler)]
    assert queue_handlers, "expected queue-backed non-blocking logging"

    expected = 300
    for i in range(expected):
        logger.info("message %s", i)

    shutdown_logging(session)

    lines = session.log_path.read_text(encoding="utf-8").splitlines()
    assert session.dropped_records == 0
    assert len(lines) == expected
    assert session.closed


@pytest.mark.parametrize(
    "overrides",
    [{"session_id": " "}, {"queue_size": 0}, {"log_filename": "nested/file.jsonl"}, {"level": "LOUD"}],
)
def test_invalid_logging_config_is_rejected(tmp_path: Path, overrides: dict[str, object]) -> None:
    payload: dict[str, object] = {"session_id": "sess-bad", "base_log_dir": tmp_path}
    payload.update(overrides)
    with pytest.raises(ValueError):
        setup_structured_logging(LoggingConfig(**payload))  # type: ignore[arg-type]


def test_scrubber_masks_sensitive_keys_at_any_depth() -> None:
    scrubber = SecretScrubber()

    scrubbed = scrubber.scrub(
        {"remote": {"Authorization": "token abc", "owner": "aptos-labs"}, "tokens": [1, 2]}
    )

    assert scrubbed == {
        "remote": {"Authorization": REDACTED, "owner": "aptos-labs"},
        "tokens": REDACTED,
    }
    assert scrubber.scrub(["password=x"]) == [f"password={REDACTED}"]


def test_correlation_scope_rejects_blank_values_and_unbinds_none() -> None:
    with pytest.raises(ValueError, match="execution_id"):
        with correlation_scope(execution_id="  "):
            pass

    with correlation_scope(session_id="s1", stage="generating"):
        with correlation_scope(stage=None):
            assert get_correlation_context() == {"session_id": "s1"}


def test_closing_a_session_twice_is_a_noop(tmp_path: Path) -> None:
    session = setup_structured_logging(
        LoggingConfig(session_id="sess-close", base_log_dir=tmp_path, logger_name=_logger_name())
    )

    session.close()
    session.close()
    shutdown_logging(session)

    assert session.closed
    assert session.logger.handlers == []
