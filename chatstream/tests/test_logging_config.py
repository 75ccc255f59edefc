"""Tests for core/logging_config: redaction, StructuredFormatter, setup_logging."""

import json
import logging

from chatstream.core.logging_config import StructuredFormatter, _redact, setup_logging

GOOGLE_KEY = "AIza" + "x" * 35
OPENAI_KEY = "sk-" + "a" * 24


def _record(msg, level=logging.INFO, args=(), **extra):
    record = logging.LogRecord(
        name="test",
        level=level,
        pathname="",
        lineno=0,
        msg=msg,
        args=args,
        exc_info=None,
    )
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_redact_string_with_token():
    assert _redact("bearer abc123") == "[REDACTED]"
    assert _redact("token=xyz") == "[REDACTED]"
    assert _redact("hello") == "hello"


def test_redact_key_shapes():
    assert _redact(f"key {GOOGLE_KEY} used") == "key [REDACTED] used"
    assert OPENAI_KEY not in _redact(OPENAI_KEY)


def test_redact_dict_and_list():
    assert _redact({"k": "token: x"}) == {"k": "[REDACTED]"}
    assert _redact({"a": "normal", "n": 3}) == {"a": "normal", "n": 3}
    assert _redact(["bearer x", "ok"]) == ["[REDACTED]", "ok"]


def test_structured_formatter_json():
    fmt = StructuredFormatter(use_json=True)
    out = fmt.format(_record("hello", model="m1", attempt=2))
    data = json.loads(out)
    assert data["message"] == "hello"
    assert data["level"] == "INFO"
    assert data["model"] == "m1"
    assert data["attempt"] == 2


def test_structured_formatter_redacts_message():
    fmt = StructuredFormatter(use_json=True)
    data = json.loads(fmt.format(_record("failed with %s", args=(OPENAI_KEY,))))
    assert OPENAI_KEY not in data["message"]
    assert "[REDACTED]" in data["message"]


def test_structured_formatter_key_value():
    fmt = StructuredFormatter(use_json=False)
    out = fmt.format(_record("warn", level=logging.WARNING))
    assert "level='WARNING'" in out
    assert "message='warn'" in out


def test_setup_logging_quiets_http_loggers():
    root = logging.getLogger()
    saved = list(root.handlers)
    root.handlers.clear()
    try:
        setup_logging("DEBUG", use_json=False)
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("openai").level == logging.WARNING
    finally:
        root.handlers[:] = saved
