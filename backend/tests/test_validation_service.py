"""
Unit Tests for the Gate Validation Service

Tests the full transaction flow with in-memory collaborators:
- incoming recorded before reconciliation
- decision recorded, broadcast and (if matched) forwarded
- authority and unclassified failures recorded under "error"

Run with: pytest tests/test_validation_service.py -v
"""

from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from conftest import FIXED_NOW, StubAuthority
from gate.engine import ReconciliationEngine
from gate.errors import AuthorityUnavailable, GateProcessingError
from gate.models import DecisionOutcome
from gate.policy_registry import POLICY_V1
from gate.services.validation_service import GateValidationService
from services.audit import AuditCategory, InMemoryAuditLog


def build_service(authority, audit_log=None, fixed_clock=None):
    audit_log = audit_log or InMemoryAuditLog()
    notifier = AsyncMock()
    forwarder = AsyncMock()
    engine = ReconciliationEngine(authority, POLICY_V1, clock=fixed_clock)
    return GateValidationService(engine, audit_log, notifier, forwarder)


class TestProcess:
    """Test the happy paths for each outcome."""

    @pytest.mark.asyncio
    async def test_matched_is_recorded_broadcast_and_forwarded(self, gate_in_request, valid_record, fixed_clock):
        service = build_service(StubAuthority(valid_record), fixed_clock=fixed_clock)

        decision = await service.process(gate_in_request)

        assert decision.outcome == DecisionOutcome.MATCHED
        incoming = await service.audit_log.query(AuditCategory.INCOMING)
        matched = await service.audit_log.query(AuditCategory.MATCHED)
        assert incoming[0].payload == {"body": gate_in_request.to_dict()}
        assert matched[0].payload == decision.to_payload()
        service.notifier.publish.assert_awaited_once_with("gate:matched", decision.to_payload())
        service.forwarder.forward.assert_awaited_once_with(decision.to_payload())

    @pytest.mark.asyncio
    async def test_mismatch_is_not_forwarded(self, gate_in_request, valid_record, fixed_clock):
        record = replace(valid_record, container_number="OTHER0000001")
        service = build_service(StubAuthority(record), fixed_clock=fixed_clock)

        decision = await service.process(gate_in_request)

        assert decision.outcome == DecisionOutcome.MISMATCHED
        assert len(await service.audit_log.query(AuditCategory.MISMATCH)) == 1
        service.notifier.publish.assert_awaited_once()
        assert service.notifier.publish.await_args.args[0] == "gate:mismatch"
        service.forwarder.forward.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_recorded_as_invalid(self, gate_in_request, valid_record, fixed_clock):
        record = replace(valid_record, valid_till=FIXED_NOW - timedelta(minutes=5))
        service = build_service(StubAuthority(record), fixed_clock=fixed_clock)

        decision = await service.process(gate_in_request)

        assert decision.is_expired
        invalid = await service.audit_log.query(AuditCategory.INVALID)
        assert invalid[0].payload["reason"] == "PERMIT_EXPIRED"
        assert service.notifier.publish.await_args.args[0] == "gate:invalid"
        service.forwarder.forward.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_history_shape(self, gate_in_request, valid_record, fixed_clock):
        service = build_service(StubAuthority(valid_record), fixed_clock=fixed_clock)
        await service.process(gate_in_request)
        await service.process(gate_in_request)

        history = await service.history(AuditCategory.MATCHED)

        assert history["success"] is True
        assert history["count"] == 2
        assert [item["sequence"] for item in history["data"]] == [1, 2]


class TestFailures:
    """Test failures while handling a transaction."""

    @pytest.mark.asyncio
    async def test_authority_failure_recorded_and_raised(self, gate_in_request, fixed_clock):
        service = build_service(
            StubAuthority(error=AuthorityUnavailable("Permit authority timed out", "PMA1001")),
            fixed_clock=fixed_clock
        )

        with patch("gate.services.validation_service.capture_exception") as capture:
            with pytest.raises(AuthorityUnavailable):
                await service.process(gate_in_request)

        capture.assert_called_once()
        errors = await service.audit_log.query(AuditCategory.ERROR)
        assert errors[0].payload["errorType"] == "AuthorityUnavailable"
        assert errors[0].payload["permitNumber"] == "PMA1001"
        assert len(await service.audit_log.query(AuditCategory.INCOMING)) == 1
        service.notifier.publish.assert_not_awaited()
        service.forwarder.forward.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_failure_wrapped(self, gate_in_request, fixed_clock):
        service = build_service(StubAuthority(error=KeyError("PermitDTLS")), fixed_clock=fixed_clock)

        with pytest.raises(GateProcessingError) as exc_info:
            await service.process(gate_in_request)

        assert isinstance(exc_info.value.__cause__, KeyError)
        errors = await service.audit_log.query(AuditCategory.ERROR)
        assert errors[0].payload["errorType"] == "KeyError"

    @pytest.mark.asyncio
    async def test_error_audit_failure_still_raises_original(self, gate_in_request, fixed_clock):
        audit_log = AsyncMock()
        audit_log.append.side_effect = OSError("read-only filesystem")
        service = build_service(StubAuthority(), audit_log=audit_log, fixed_clock=fixed_clock)

        with pytest.raises(GateProcessingError) as exc_info:
            await service.process(gate_in_request)

        assert "read-only filesystem" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_outcome_audit_failure_recorded_and_wrapped(self, gate_in_request, valid_record, fixed_clock):
        audit_log = InMemoryAuditLog()
        store = audit_log.append

        async def append(category, payload):
            if category == AuditCategory.MATCHED:
                raise OSError("disk full")
            return await store(category, payload)

        service = build_service(StubAuthority(valid_record), audit_log=audit_log, fixed_clock=fixed_clock)

        with patch.object(audit_log, "append", side_effect=append):
            with patch("gate.services.validation_service.capture_exception") as capture:
                with pytest.raises(GateProcessingError) as exc_info:
                    await service.process(gate_in_request)

        assert isinstance(exc_info.value.__cause__, OSError)
        capture.assert_called_once()
        errors = await audit_log.query(AuditCategory.ERROR)
        assert len(errors) == 1
        assert errors[0].payload["errorType"] == "OSError"
        service.notifier.publish.assert_not_awaited()
        service.forwarder.forward.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publish_failure_recorded_and_wrapped(self, gate_in_request, valid_record, fixed_clock):
        service = build_service(StubAuthority(valid_record), fixed_clock=fixed_clock)
        service.notifier.publish.side_effect = RuntimeError("event loop closed")

        with pytest.raises(GateProcessingError):
            await service.process(gate_in_request)

        assert len(await service.audit_log.query(AuditCategory.MATCHED)) == 1
        errors = await service.audit_log.query(AuditCategory.ERROR)
        assert errors[0].payload["errorType"] == "RuntimeError"
        service.forwarder.forward.assert_not_awaited()
