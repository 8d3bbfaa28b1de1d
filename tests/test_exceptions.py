#!/usr/bin/env python3
"""Tests for the NetGate exception hierarchy."""
import pytest

from src.netgate.api.exceptions import (
    CommandTimeout,
    CommandValidationError,
    ConfigurationError,
    ConnectionError,
    CorrelationMiss,
    DatabaseError,
    DuplicateConfirmation,
    EnforcementFailure,
    IntegrityError,
    NetGateError,
    NetworkError,
    PaymentError,
    PaymentGatewayError,
)


class TestHierarchy:
    @pytest.mark.parametrize("error,parents", [
        (ConnectionError(), (NetworkError, NetGateError)),
        (CommandTimeout(), (NetworkError, NetGateError)),
        (CorrelationMiss("ws_CO_1"), (PaymentError, NetGateError)),
        (DuplicateConfirmation("NLJ7RT61SV"), (PaymentError, NetGateError)),
        (PaymentGatewayError("rejected"), (PaymentError, NetGateError)),
        (IntegrityError(), (DatabaseError, NetGateError)),
    ])
    def test_parents(self, error, parents):
        for parent in parents:
            assert isinstance(error, parent)

    def test_recoverability(self):
        assert ConnectionError().recoverable
        assert CommandTimeout().recoverable
        assert not ConfigurationError("missing").recoverable
        assert not CommandValidationError("bad").recoverable
        assert not CorrelationMiss("ws_CO_1").recoverable
        assert not IntegrityError().recoverable

    def test_gateway_error_recoverable_only_for_server_side(self):
        assert PaymentGatewayError("down", status_code=503).recoverable
        assert not PaymentGatewayError("bad request", status_code=400).recoverable
        assert PaymentGatewayError("timeout").recoverable


class TestDetails:
    def test_enforcement_failure(self):
        error = EnforcementFailure(
            subscriber_id="SUB-001",
            address="10.0.0.5",
            action="unblock",
            exit_status=1,
            output="x" * 500,
        )
        assert error.action == "unblock"
        assert error.exit_status == 1
        assert error.details["address"] == "10.0.0.5"
        assert len(error.details["output"]) == 200
        assert "unblock 10.0.0.5" in error.message

    def test_enforcement_failure_keeps_cause(self):
        cause = CommandTimeout(timeout_seconds=15)
        error = EnforcementFailure(subscriber_id="SUB-001", address="10.0.0.5", action="block", cause=cause)
        assert error.__cause__ is cause
        assert error.exit_status is None

    def test_correlation_miss_reason(self):
        assert CorrelationMiss("ws_CO_1").details["reason"] == "unknown"
        assert CorrelationMiss("ws_CO_1", expired=True).details["reason"] == "expired"

    def test_validation_error_truncates_value(self):
        error = CommandValidationError("bad", field="address", value="1" * 100)
        assert error.details["field"] == "address"
        assert len(error.details["value"]) < 100

    def test_to_dict(self):
        data = ConnectionError(host="gw").to_dict()
        assert data["error_type"] == "ConnectionError"
        assert data["code"] == "CONNECTION_ERROR"
        assert data["details"] == {"host": "gw"}
        assert data["recoverable"] is True

    def test_str_includes_code_and_details(self):
        text = str(CommandTimeout(timeout_seconds=25, host="gw"))
        assert text.startswith("[COMMAND_TIMEOUT]")
        assert "timeout_seconds=25" in text
