"""
Gate Reconciliation Engine

Three short-circuiting stages, evaluated in order:
1. Manual override (when the policy allows it): matched, no lookup
2. Expiry check against the authority record
3. Field reconciliation under the policy's field-check rules

Authority failures propagate to the caller unchanged; the engine never
classifies them as a business outcome and never retries.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from gate.matching_rules.permit_rules import evaluate
from gate.models import AuthorityRecord, Decision, GateEntryRequest, MatchSource
from gate.policy_registry import GatePolicy

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    """
    Reconciles operator-submitted gate data with the permit authority.

    The authority is any object with an async lookup(permit_number)
    returning an AuthorityRecord; the clock is injectable so decisions
    are reproducible in tests.
    """

    def __init__(
        self,
        authority,
        policy: GatePolicy,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.authority = authority
        self.policy = policy
        self.clock = clock or utc_now

    async def reconcile(self, request: GateEntryRequest) -> Decision:
        if self.policy.manual_override_enabled and request.confirmed_by_user:
            logger.info(f"Permit {request.permit_number} manually confirmed, skipping authority lookup")
            return Decision.matched(
                request, None, MatchSource.MANUAL, self.policy.version, created_at=self.clock()
            )

        if request.confirmed_by_user:
            logger.info(
                f"Manual confirmation ignored for {request.permit_number}: "
                f"policy {self.policy.version} disables override"
            )

        record: AuthorityRecord = await self.authority.lookup(request.permit_number)
        decision = evaluate(request, record, self.policy, self.clock())

        logger.info(
            f"Permit {request.permit_number} ({request.gate_type.value}) -> {decision.outcome.value}"
            f"{f' [{len(decision.mismatches)} mismatch(es)]' if decision.mismatches else ''}"
        )
        return decision
