from __future__ import annotations

from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
import logging
from pathlib import Path
import sys

import pytest

from ozymandias import observability
from ozymandias.observability import configure_logging, log_event, logging_pr_context


@pytest.fixture(autouse=True)
def restore_ozymandias_logger_state() -> Iterator[None]:
    logger = logging.getLogger("ozymandias")
    original_handlers = list(logger.handlers)
    original_level = logger.level
    original_propagate = logger.propagate
    try:
        yield
    finally:
        for handler in logger.handlers:
            if handler not in original_handlers:
                handler.close()
        logger.handlers.clear()
        for handler in original_handlers:
            logger.addHandler(handler)
        logger.setLevel(original_level)
        logger.propagate = original_propagate


def test_configure_logging_quiet_mode_is_idempotent() -> None:
    configure_logging(verbose=False)
    logger = logging.getLogger("ozymandias")
    assert logger.propagate is False
    assert logger.level > logging.CRITICAL
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], logging.NullHandler)

    configure_logging(verbose=None)
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], logging.NullHandler)


def test_configure_logging_verbose_mode_is_idempotent() -> None:
    configure_logging(verbose=True)
    logger = logging.getLogger("ozymandias")
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    handler = logger.handlers[0]
    assert isinstance(handler, logging.StreamHandler)
    assert handler.stream is sys.stderr
    assert handler.formatter is not None
    assert "%(threadName)s" in handler.formatter._fmt  # type: ignore[operator]
    assert "%(pr_ref)s" in handler.formatter._fmt  # type: ignore[operator]

    configure_logging(verbose=True)
    assert len(logger.handlers) == 1


def test_pr_context_is_applied_to_output(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose=True)
    logger = logging.getLogger("ozymandias.tests.pr")
    with logging_pr_context("acme/app#7"):
        logger.info("event=merge_submitted pr_number=7")
    logger.info("event=poll_started")

    lines = capsys.readouterr().err.splitlines()
    assert "pr=acme/app#7 event=merge_submitted pr_number=7" in lines[0]
    assert "pr=- event=poll_started" in lines[1]


def test_pr_context_is_isolated_per_thread() -> None:
    def resolve(pr_ref: str) -> str:
        with logging_pr_context(pr_ref):
            return observability._current_pr_ref()

    with ThreadPoolExecutor(max_workers=2) as pool:
        first = pool.submit(resolve, "acme/app#1")
        second = pool.submit(resolve, "acme/app#2")

    assert first.result() == "acme/app#1"
    assert second.result() == "acme/app#2"
    assert observability._current_pr_ref() == "-"


def test_pr_context_restores_outer_value() -> None:
    with logging_pr_context("acme/app#1"):
        with logging_pr_context("acme/app#2"):
            assert observability._current_pr_ref() == "acme/app#2"
        assert observability._current_pr_ref() == "acme/app#1"


def test_low_mode_keeps_merge_decisions_and_warnings(
    capsys: pytest.CaptureFixture[str],
) -> None:
    configure_logging(verbose="low")
    logger = logging.getLogger("ozymandias.tests.low")

    logger.info("event=poll_started once=true")
    logger.info("event=merge_submitted pr_number=7")
    logger.info("plain_message=ignored")
    logger.info("event=")
    logger.error("event=command_failed command=gh api")

    stderr = capsys.readouterr().err
    assert "event=poll_started" not in stderr
    assert "event=merge_submitted pr_number=7" in stderr
    assert "plain_message=ignored" not in stderr
    assert all(not line.endswith("event=") for line in stderr.splitlines())
    assert "event=command_failed command=gh api" in stderr


def test_configure_logging_writes_utc_daily_file(tmp_path: Path) -> None:
    configure_logging(verbose="high", log_dir=tmp_path)
    logger = logging.getLogger("ozymandias.tests.file")
    logger.info("event=job_dispatched job_name=lint")

    date_key = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    log_path = tmp_path / f"{date_key}.log"
    assert log_path.exists()
    assert "event=job_dispatched job_name=lint" in log_path.read_text(encoding="utf-8")


def test_configure_logging_rejects_unknown_mode() -> None:
    with pytest.raises(ValueError, match="Unsupported verbose mode"):
        configure_logging(verbose="chatty")


def test_log_event_normalizes_fields(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose=True)
    logger = logging.getLogger("ozymandias.tests.fields")

    log_event(
        logger,
        "merge_rejected",
        reason="checks failed",
        pr_number=7,
        merged=False,
        sha=None,
        empty="  ",
        payload={"x": 1},
        long="y" * 200,
    )

    stderr = capsys.readouterr().err
    assert "event=merge_rejected " in stderr
    assert "empty=<empty>" in stderr
    assert "merged=false" in stderr
    assert "payload=<dict>" in stderr
    assert "pr_number=7" in stderr
    assert 'reason="checks failed"' in stderr
    assert "sha=null" in stderr
    assert f"long={'y' * 120}..." in stderr
