"""
Unit Tests for Configuration, Logging and Error Tracking

Tests:
- Settings validation and CORS defaults
- Structured JSON log records with request context
- Sentry event redaction
- Structured 400 bodies for malformed requests

Run with: pytest tests/test_infrastructure.py -v
"""

import json
import logging
import sys

import pytest

from config import Settings
from logging_config import (
    GateContextFilter,
    JSONFormatter,
    clear_request_context,
    set_gate_context,
    set_request_context,
)
from sentry_integration import capture_exception, filter_sensitive_data, redact_dict
from utils.validation_errors import VALIDATION_STATUS_CODE, build_request_validation_error


class TestSettings:
    """Test configuration validation."""

    def test_defaults_are_valid(self):
        settings = Settings(ENVIRONMENT="development")

        assert settings.validate_config() == []
        assert settings.GATE_POLICY_VERSION == "v1"
        assert settings.AUTHORITY_TIMEOUT_SECONDS == 15.0

    def test_unknown_policy_version_reported(self):
        errors = Settings(GATE_POLICY_VERSION="v7").validate_config()

        assert any("GATE_POLICY_VERSION" in e for e in errors)

    def test_non_positive_timeouts_reported(self):
        errors = Settings(AUTHORITY_TIMEOUT_SECONDS=0, FORWARD_TIMEOUT_SECONDS=-1).validate_config()

        assert "AUTHORITY_TIMEOUT_SECONDS must be positive" in errors
        assert "FORWARD_TIMEOUT_SECONDS must be positive" in errors

    def test_disabled_features_warned(self):
        warnings = Settings(FORWARD_URL="", SENTRY_DSN="").config_warnings()

        assert any(w.startswith("FORWARD_URL") for w in warnings)
        assert any(w.startswith("SENTRY_DSN") for w in warnings)

    def test_unsigned_forwarding_warned(self):
        warnings = Settings(FORWARD_URL="http://sink.test", FORWARD_SECRET="").config_warnings()

        assert any(w.startswith("FORWARD_SECRET") for w in warnings)

    def test_production_rejects_wildcard_cors(self):
        errors = Settings(ENVIRONMENT="production", CORS_ORIGINS="*").validate_config()

        assert "CORS_ORIGINS cannot be '*' in production" in errors

    def test_production_origins_exclude_localhost(self):
        settings = Settings(ENVIRONMENT="production", CORS_ORIGINS="https://gate.example.com")

        assert settings.cors_origins_list == ["https://gate.example.com"]

    def test_development_origins_include_localhost(self):
        settings = Settings(ENVIRONMENT="development", CORS_ORIGINS="")

        assert "http://localhost:3000" in settings.cors_origins_list


class TestStructuredLogging:
    """Test JSON log formatting."""

    def make_record(self, message="Permit PMA1001 -> MATCHED"):
        return logging.LogRecord(
            name="gate.engine", level=logging.INFO, pathname=__file__, lineno=1,
            msg=message, args=(), exc_info=None
        )

    def test_json_formatter_fields(self):
        output = json.loads(JSONFormatter(service_name="gate-validator").format(self.make_record()))

        assert output["service"] == "gate-validator"
        assert output["level"] == "INFO"
        assert output["logger"] == "gate.engine"
        assert output["msg"] == "Permit PMA1001 -> MATCHED"
        assert "request_id" not in output

    def test_transaction_context_attached(self):
        record = self.make_record()
        set_request_context("req-123")
        set_gate_context("PMA1001", "GATE_IN")
        try:
            GateContextFilter().filter(record)
        finally:
            clear_request_context()

        output = json.loads(JSONFormatter().format(record))
        assert output["request_id"] == "req-123"
        assert output["permit_number"] == "PMA1001"
        assert output["gate_type"] == "GATE_IN"
        assert "extra" not in output

    def test_context_cleared(self):
        set_gate_context("PMA1001", "GATE_IN")
        clear_request_context()
        record = self.make_record()

        GateContextFilter().filter(record)

        assert record.permit_number == "-"
        assert record.request_id == "-"

    def test_caller_extras_kept(self):
        record = self.make_record()
        record.duration_ms = 12

        output = json.loads(JSONFormatter().format(record))
        assert output["extra"] == {"duration_ms": 12}

    def test_exception_info_serialised(self):
        try:
            raise RuntimeError("authority down")
        except RuntimeError:
            record = logging.LogRecord(
                name="gate", level=logging.ERROR, pathname=__file__, lineno=1,
                msg="failed", args=(), exc_info=sys.exc_info()
            )

        output = json.loads(JSONFormatter().format(record))
        assert output["error"]["type"] == "RuntimeError"
        assert output["error"]["message"] == "authority down"
        assert "RuntimeError: authority down" in output["error"]["stack"]


class TestSentryRedaction:
    """Test redaction of operational identifiers."""

    def test_redact_nested_identifiers(self):
        redacted = redact_dict({
            "permitNumber": "PMA1001",
            "client": {"vehicleNumber": "MH12AB1234", "gateType": "GATE_IN"},
            "items": [{"containerNumber": "TCLU1234567"}]
        })

        assert redacted["permitNumber"] == "[REDACTED]"
        assert redacted["client"]["vehicleNumber"] == "[REDACTED]"
        assert redacted["client"]["gateType"] == "GATE_IN"
        assert redacted["items"][0]["containerNumber"] == "[REDACTED]"

    def test_filter_request_data_and_headers(self):
        event = {
            "request": {
                "headers": {"X-Gate-Signature": "sha256=abc", "Accept": "application/json"},
                "data": {"permitNumber": "PMA1001"}
            }
        }

        filtered = filter_sensitive_data(event, {})

        assert filtered["request"]["headers"]["X-Gate-Signature"] == "[REDACTED]"
        assert filtered["request"]["headers"]["Accept"] == "application/json"
        assert filtered["request"]["data"]["permitNumber"] == "[REDACTED]"

    def test_capture_without_dsn_is_noop(self):
        assert capture_exception(RuntimeError("x"), gate_type="GATE_IN") is None


class TestValidationErrors:
    """Test structured request validation bodies."""

    def test_status_code_is_400(self):
        assert VALIDATION_STATUS_CODE == 400

    def test_single_missing_field(self):
        body = build_request_validation_error([
            {"type": "missing", "loc": ("body", "permitNumber"), "msg": "Field required"}
        ])

        assert body == {
            "success": False,
            "error": "missing_parameter",
            "parameter": "permitNumber",
            "message": "permitNumber is required"
        }

    def test_single_invalid_field_strips_prefix(self):
        body = build_request_validation_error([{
            "type": "value_error",
            "loc": ("body", "gateType"),
            "msg": "Value error, Invalid gate type 'X'",
            "input": "X"
        }])

        assert body["error"] == "invalid_parameter"
        assert body["message"] == "Invalid gate type 'X'"
        assert body["received_value"] == "X"

    def test_multiple_errors_grouped(self):
        body = build_request_validation_error([
            {"type": "missing", "loc": ("body", "permitNumber"), "msg": "Field required"},
            {"type": "missing", "loc": ("body", "gateType"), "msg": "Field required"},
        ])

        assert body["error"] == "validation_error"
        assert [d["parameter"] for d in body["details"]] == ["permitNumber", "gateType"]

    @pytest.mark.parametrize("loc", [("body",), ()])
    def test_whole_body_error(self, loc):
        body = build_request_validation_error([{"type": "json_invalid", "loc": loc, "msg": "JSON decode error"}])

        assert body["error"] == "validation_error"
