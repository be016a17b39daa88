from __future__ import annotations

import io
import json
import logging

from flask import Flask, g

from lemon.logging_config import JsonFormatter, RequestContextFilter


def _record(msg="hello", **extra):
    record = logging.LogRecord("lemon.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_audit_payload():
    record = _record("login ok", audit={"event": "login", "success": True, "user_id": "u1"})
    payload = json.loads(JsonFormatter().format(record))
    assert payload["logger"] == "lemon.test"
    assert payload["message"] == "login ok"
    assert payload["audit"]["event"] == "login"
    assert "request_id" not in payload


def test_request_context_filter_outside_request():
    record = _record()
    assert RequestContextFilter().filter(record) is True
    assert record.request_id is None
    assert record.path is None


def test_request_context_filter_inside_request():
    app = Flask(__name__)
    with app.test_request_context("/api/media", headers={"X-Forwarded-For": "203.0.113.7"}):
        g.request_id = "req_12345678"
        record = _record()
        RequestContextFilter().filter(record)

    payload = json.loads(JsonFormatter().format(record))
    assert payload["request_id"] == "req_12345678"
    assert payload["remote_addr"] == "203.0.113.7"
    assert payload["method"] == "GET"
    assert payload["path"] == "/api/media"
    assert "user_id" not in payload


def test_audit_events_never_carry_raw_secrets(client, make_user, caplog):
    user, upload_key = make_user("alice")
    with caplog.at_level(logging.INFO, logger="lemon.audit"):
        client.post(
            "/api/upload",
            headers={"X-Upload-Key": upload_key + "x"},
            data={"file": (io.BytesIO(b"data"), "a.txt")},
            content_type="multipart/form-data",
        )
    audit = [r for r in caplog.records if r.name == "lemon.audit"]
    assert audit and audit[0].audit["event"] == "upload_key"
    assert audit[0].audit["success"] is False
    assert all(upload_key not in json.dumps(r.audit) for r in audit)
