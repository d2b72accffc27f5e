from __future__ import annotations

import logging

import orjson

from oca.core.logging import ContextFormatter, JsonFormatter, log_context


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("oca.chat", logging.INFO, __file__, 1, "Interaction %s archived", ("42",), None)
    record.__dict__.update(extra)
    return record


def test_log_context_prefixes_and_skips_none() -> None:
    assert log_context(session_id="abc", mode=None, chunks=3) == {"ctx_session_id": "abc", "ctx_chunks": 3}


def test_json_formatter_includes_context() -> None:
    payload = orjson.loads(JsonFormatter().format(_record(**log_context(session_id="abc"))))
    assert payload["message"] == "Interaction 42 archived"
    assert payload["level"] == "INFO"
    assert payload["session_id"] == "abc"


def test_context_formatter_appends_pairs() -> None:
    line = ContextFormatter().format(_record(**log_context(session_id="abc", mode="tutoring")))
    assert line.endswith("oca.chat: Interaction 42 archived [session_id=abc mode=tutoring]")
    assert "[" not in ContextFormatter().format(_record())
