import json
import logging

from toolroom.core.logging import JsonLogFormatter
from toolroom.middlewares import request_id_ctx_var


def _record(**extra):
    record = logging.LogRecord("toolroom.ledger", logging.INFO, __file__, 1, "ledger.append_failed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_context_and_extra_data():
    token = request_id_ctx_var.set("req-42")
    try:
        line = JsonLogFormatter().format(_record(extra_data={"tool_id": "tool-1", "attempts": 3}))
    finally:
        request_id_ctx_var.reset(token)

    payload = json.loads(line)
    assert payload["event"] == "ledger.append_failed"
    assert payload["logger"] == "toolroom.ledger"
    assert payload["request_id"] == "req-42"
    assert payload["tool_id"] == "tool-1" and payload["attempts"] == 3
    assert payload["ts"].endswith("Z")
    assert payload["local_ts"][-6:] in ("-05:00", "-06:00")
    assert "principal" not in payload
