"""
Gate Validation Service

Drives one gate transaction end to end:
1. Record the raw request under "incoming"
2. Reconcile it (manual override / expiry / field checks)
3. Record the decision under matched / mismatch / invalid
4. Publish the matching live event
5. Forward matched decisions downstream (best effort)

Failures that prevent a decision are recorded under "error" and raised
to the caller. Nothing is retried; recovery is manual replay from the
audit history.
"""

import logging
from typing import Any, Dict

from gate.engine import ReconciliationEngine
from gate.errors import AuthorityError, GateProcessingError
from gate.models import Decision, DecisionOutcome, GateEntryRequest
from logging_config import set_gate_context
from sentry_integration import capture_exception
from services.audit import AuditCategory, AuditLog
from services.event_notifier import EventNotifier, GateEvent
from services.forwarding import ForwardingClient

logger = logging.getLogger(__name__)


OUTCOME_ROUTING = {
    DecisionOutcome.MATCHED: (AuditCategory.MATCHED, GateEvent.MATCHED),
    DecisionOutcome.MISMATCHED: (AuditCategory.MISMATCH, GateEvent.MISMATCH),
    DecisionOutcome.EXPIRED: (AuditCategory.INVALID, GateEvent.INVALID),
}


class GateValidationService:
    """
    Orchestrates reconciliation and its downstream side effects.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        audit_log: AuditLog,
        notifier: EventNotifier,
        forwarder: ForwardingClient
    ):
        self.engine = engine
        self.audit_log = audit_log
        self.notifier = notifier
        self.forwarder = forwarder

    @property
    def policy(self):
        return self.engine.policy

    async def process(self, request: GateEntryRequest) -> Decision:
        """
        Validate one gate transaction.

        Raises:
            AuthorityError: the permit authority failed or answered garbage
            GateProcessingError: any other failure while handling the transaction
        """
        set_gate_context(request.permit_number, request.gate_type.value)

        try:
            await self.audit_log.append(AuditCategory.INCOMING, {"body": request.to_dict()})
            decision = await self.engine.reconcile(request)

            category, event = OUTCOME_ROUTING[decision.outcome]
            payload = decision.to_payload()

            await self.audit_log.append(category, payload)
            await self.notifier.publish(event.value, payload)

            if decision.is_matched:
                await self.forwarder.forward(payload)
        except AuthorityError as e:
            await self._record_error(request, e)
            raise
        except Exception as e:
            await self._record_error(request, e)
            raise GateProcessingError(str(e)) from e

        return decision

    async def history(self, category: AuditCategory) -> Dict[str, Any]:
        """Full ordered history of a category in the query-endpoint shape."""
        entries = await self.audit_log.query(category)
        return {
            "success": True,
            "count": len(entries),
            "data": [entry.model_dump() for entry in entries]
        }

    async def _record_error(self, request: GateEntryRequest, exc: Exception):
        logger.error(f"Gate validation failed for {request.permit_number}: {type(exc).__name__}: {exc}")
        capture_exception(
            exc,
            permit_prefix=request.permit_number[:3],
            gate_type=request.gate_type.value
        )
        try:
            await self.audit_log.append(AuditCategory.ERROR, {
                "error": str(exc),
                "errorType": type(exc).__name__,
                "permitNumber": request.permit_number
            })
        except Exception as audit_error:
            logger.error(f"Failed to record gate error in audit log: {audit_error}")
