"""
Gate Validation Module

Validates gate-entry transactions against the legacy permit authority:
- Versioned field-check policies (v1 manual-confirm, v2 strict)
- Reconciliation engine: manual override, expiry, field checks
- Auditable decisions: matched, mismatched, expired
"""

from gate.errors import (
    AuthorityError,
    AuthorityMalformedResponse,
    AuthorityUnavailable,
    GateProcessingError,
    GateValidationError,
    UnknownPolicyVersion
)
from gate.models import (
    AuthorityRecord,
    Decision,
    DecisionOutcome,
    GateDirection,
    GateEntryRequest,
    MatchSource,
    MismatchDetail,
    MismatchReason
)
from gate.policy_registry import (
    GatePolicy,
    PolicyRegistry,
    POLICY_V1,
    POLICY_V2,
    policy_registry
)
from gate.engine import ReconciliationEngine

__all__ = [
    # Errors
    'AuthorityError',
    'AuthorityMalformedResponse',
    'AuthorityUnavailable',
    'GateProcessingError',
    'GateValidationError',
    'UnknownPolicyVersion',
    # Models
    'AuthorityRecord',
    'Decision',
    'DecisionOutcome',
    'GateDirection',
    'GateEntryRequest',
    'MatchSource',
    'MismatchDetail',
    'MismatchReason',
    # Policy
    'GatePolicy',
    'PolicyRegistry',
    'POLICY_V1',
    'POLICY_V2',
    'policy_registry',
    # Engine
    'ReconciliationEngine',
]
