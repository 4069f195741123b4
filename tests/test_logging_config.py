"""Tests for sinkmorph.logging_config: JsonFormatter, log_context, setup_logging."""
import json
import logging

from sinkmorph.logging_config import JsonFormatter, log_context, setup_logging

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_record(msg: str = "hello", level: int = logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test.logger",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def _format(record: logging.LogRecord) -> dict:
    return json.loads(JsonFormatter().format(record))


# ---------------------------------------------------------------------------
# JsonFormatter
# ---------------------------------------------------------------------------

class TestJsonFormatter:
    def test_includes_required_fields(self):
        parsed = _format(_make_record("test message", level=logging.WARNING))
        assert parsed["msg"] == "test message"
        assert parsed["level"] == "WARNING"
        assert parsed["logger"] == "test.logger"
        assert "T" in parsed["ts"]

    def test_solver_extras_promoted(self):
        parsed = _format(_make_record("x", iterations=120, residual=3e-7, mode="direct", epsilon=0.05))
        assert parsed["iterations"] == 120
        assert parsed["residual"] == 3e-7
        assert parsed["mode"] == "direct"
        assert parsed["epsilon"] == 0.05

    def test_unknown_extra_keys_not_included(self):
        parsed = _format(_make_record("x", random_key="val"))
        assert "random_key" not in parsed

    def test_non_finite_residual_serialises(self):
        line = JsonFormatter().format(_make_record("x", residual=float("inf")))
        assert "residual" in line

    def test_exception_included(self):
        try:
            raise RuntimeError("kaboom")
        except RuntimeError:
            import sys
            record = _make_record("failed")
            record.exc_info = sys.exc_info()
        parsed = _format(record)
        assert "kaboom" in parsed["exc"]


# ---------------------------------------------------------------------------
# log_context
# ---------------------------------------------------------------------------

class TestLogContext:
    def test_injects_context_fields(self):
        with log_context(job_id="3f2a", mode="log_domain"):
            parsed = _format(_make_record("inside context"))
        assert parsed["job_id"] == "3f2a"
        assert parsed["mode"] == "log_domain"

    def test_restores_previous_context_on_exit(self):
        with log_context(job_id="a"):
            with log_context(job_id="b"):
                assert _format(_make_record("inner"))["job_id"] == "b"
            assert _format(_make_record("outer"))["job_id"] == "a"
        assert "job_id" not in _format(_make_record("after"))

    def test_none_values_filtered(self):
        with log_context(job_id=None, request_id="r1"):
            parsed = _format(_make_record("x"))
        assert "job_id" not in parsed
        assert parsed["request_id"] == "r1"


# ---------------------------------------------------------------------------
# setup_logging
# ---------------------------------------------------------------------------

class TestSetupLogging:
    def test_setup_json_mode(self):
        setup_logging(level="DEBUG", use_json=True)
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_setup_text_mode(self):
        setup_logging(level="INFO", use_json=False)
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert not isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_unknown_level_falls_back_to_info(self):
        setup_logging(level="CHATTY", use_json=True)
        assert logging.getLogger().level == logging.INFO

    def test_suppresses_noisy_loggers(self):
        setup_logging(level="DEBUG", use_json=True)
        assert logging.getLogger("uvicorn.access").level >= logging.WARNING
