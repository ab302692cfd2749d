"""Tests for structured logging helpers."""
import json
import logging

from derm_service.structured_logging import (
    JSONFormatter,
    _mask_ip,
    get_request_id,
    log_medical_event,
    log_request,
    set_request_id,
)


class TestJSONFormatter:

    def test_includes_request_id_and_data(self):
        set_request_id("abc123")
        record = logging.LogRecord("derm", logging.INFO, __file__, 1, "hello", None, None)
        record.extra_data = {"latency_ms": 12}
        data = json.loads(JSONFormatter().format(record))
        assert data["message"] == "hello"
        assert data["request_id"] == "abc123"
        assert data["data"] == {"latency_ms": 12}
        assert data["service"] == "derm-service"


class TestRequestId:

    def test_generated_when_missing(self):
        request_id = set_request_id()
        assert len(request_id) == 8
        assert get_request_id() == request_id


class TestMaskIp:

    def test_ipv4(self):
        assert _mask_ip("192.168.10.20") == "192.168.xxx.xxx"

    def test_other(self):
        assert _mask_ip("::1") == "xxx"


def test_log_medical_event(caplog):
    with caplog.at_level(logging.INFO, logger="medical_events"):
        log_medical_event("DIAGNOSIS_GENERATED", "c1", "d1", model="gemini-2.5-flash")
    record = caplog.records[-1]
    assert "DIAGNOSIS_GENERATED" in record.getMessage()
    assert record.extra_data["consultation_id"] == "c1"
    assert record.extra_data["model"] == "gemini-2.5-flash"


def test_log_request_level_follows_status(caplog):
    with caplog.at_level(logging.INFO, logger="http"):
        log_request("GET", "/diagnosis", 200, 12.5, client_ip="10.0.0.7")
        log_request("POST", "/diagnosis", 500, 3.0)
    ok, failed = caplog.records[-2:]
    assert ok.levelno == logging.INFO
    assert ok.extra_data == {
        "method": "GET", "path": "/diagnosis", "status_code": 200,
        "duration_ms": 12.5, "client_ip": "10.0.xxx.xxx",
    }
    assert failed.levelno == logging.ERROR
