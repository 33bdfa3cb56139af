"""
Gate Validation Models

Domain objects for a gate-entry transaction:
- GateEntryRequest: what the operator submitted
- AuthorityRecord: canonical permit record from the legacy authority
- MismatchDetail: one disagreement between the two
- Decision: the auditable outcome of reconciliation

All objects are immutable once built. The to_dict() methods produce the
camelCase wire shape shared by the API, the audit trail, live events and
the forwarding sink.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


# ==================== ENUMS ====================

class GateDirection(str, Enum):
    """Whether cargo is entering or leaving the terminal."""
    GATE_IN = "GATE_IN"
    GATE_OUT = "GATE_OUT"

    @classmethod
    def parse(cls, value: str) -> "GateDirection":
        """Accept IN/OUT and GATE_IN/GATE_OUT in any case."""
        normalized = str(value).strip().upper().replace("-", "_")
        if normalized in ("IN", "GATE_IN"):
            return cls.GATE_IN
        if normalized in ("OUT", "GATE_OUT"):
            return cls.GATE_OUT
        raise ValueError(f"Invalid gate type '{value}'. Valid values: IN, OUT, GATE_IN, GATE_OUT")


class DecisionOutcome(str, Enum):
    """Terminal classification of a transaction."""
    MATCHED = "MATCHED"
    MISMATCHED = "MISMATCHED"
    EXPIRED = "EXPIRED"


class MatchSource(str, Enum):
    """Who vouched for a matched transaction."""
    MANUAL = "manual"
    AUTHORITY = "authority"


class MismatchReason(str, Enum):
    """Why a field was reported without a value comparison."""
    MISSING_SUBMITTED = "MISSING_SUBMITTED"


EXPIRED_REASON = "PERMIT_EXPIRED"


def _clean(value: Any) -> Optional[str]:
    """Blank and missing values are both absent."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ==================== DATA CLASSES ====================

@dataclass(frozen=True)
class GateEntryRequest:
    """
    Operator-submitted gate transaction.

    Created once per incoming request and never mutated.
    """
    permit_number: str
    gate_type: GateDirection
    vehicle_number: Optional[str] = None
    container_number: Optional[str] = None
    container_size: Optional[str] = None
    container_type: Optional[str] = None
    confirmed_by_user: bool = False

    @classmethod
    def create(
        cls,
        permit_number: str,
        gate_type: Any,
        vehicle_number: Optional[str] = None,
        container_number: Optional[str] = None,
        container_size: Optional[str] = None,
        container_type: Optional[str] = None,
        confirmed_by_user: bool = False
    ) -> "GateEntryRequest":
        """Build a request, normalising blanks and the gate direction."""
        permit = _clean(permit_number)
        if not permit:
            raise ValueError("permitNumber is required")
        direction = gate_type if isinstance(gate_type, GateDirection) else GateDirection.parse(gate_type)
        return cls(
            permit_number=permit,
            gate_type=direction,
            vehicle_number=_clean(vehicle_number),
            container_number=_clean(container_number),
            container_size=_clean(container_size),
            container_type=_clean(container_type),
            confirmed_by_user=bool(confirmed_by_user)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "permitNumber": self.permit_number,
            "gateType": self.gate_type.value,
            "vehicleNumber": self.vehicle_number,
            "containerNumber": self.container_number,
            "containerSize": self.container_size,
            "containerType": self.container_type,
            "confirmedByUser": self.confirmed_by_user
        }


@dataclass(frozen=True)
class AuthorityRecord:
    """
    Canonical permit record normalised from an authority response.

    Validity is carried either as an explicit expiry timestamp
    (valid_till) or as a boolean flag (valid), depending on which
    response shape the authority returned.
    """
    permit_number: Optional[str] = None
    container_number: Optional[str] = None
    container_size: Optional[str] = None
    container_type: Optional[str] = None
    container_status: Optional[str] = None
    vehicle_number: Optional[str] = None
    line_code: Optional[str] = None
    ldd_mt_flag: Optional[str] = None
    valid_till: Optional[datetime] = None
    valid: Optional[bool] = None
    response_shape: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "permitNumber": self.permit_number,
            "containerNumber": self.container_number,
            "containerSize": self.container_size,
            "containerType": self.container_type,
            "containerStatus": self.container_status,
            "vehicleNumber": self.vehicle_number,
            "lineCode": self.line_code,
            "lddMtFlag": self.ldd_mt_flag,
            "validTill": _iso(self.valid_till),
            "valid": self.valid,
            "responseShape": self.response_shape
        }


@dataclass(frozen=True)
class MismatchDetail:
    """One disagreement between submitted and authoritative data."""
    field: str
    submitted: Optional[str]
    authoritative: Optional[str]
    reason: Optional[MismatchReason] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "client": self.submitted,
            "soap": self.authoritative,
            "reason": self.reason.value if self.reason else None
        }


@dataclass(frozen=True)
class Decision:
    """
    Outcome of reconciling one gate transaction.

    Invariant: outcome is MATCHED iff mismatches is empty and the permit
    was not expired. Use the matched()/mismatched()/expired() constructors.
    """
    outcome: DecisionOutcome
    request: GateEntryRequest
    authority_record: Optional[AuthorityRecord]
    policy_version: str
    source: Optional[MatchSource] = None
    mismatches: Tuple[MismatchDetail, ...] = ()
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def matched(
        cls,
        request: GateEntryRequest,
        record: Optional[AuthorityRecord],
        source: MatchSource,
        policy_version: str,
        created_at: Optional[datetime] = None
    ) -> "Decision":
        return cls(
            outcome=DecisionOutcome.MATCHED,
            request=request,
            authority_record=record,
            policy_version=policy_version,
            source=source,
            created_at=created_at or datetime.now(timezone.utc)
        )

    @classmethod
    def mismatched(
        cls,
        request: GateEntryRequest,
        record: AuthorityRecord,
        mismatches: Tuple[MismatchDetail, ...],
        policy_version: str,
        created_at: Optional[datetime] = None
    ) -> "Decision":
        if not mismatches:
            raise ValueError("A mismatched decision needs at least one mismatch")
        return cls(
            outcome=DecisionOutcome.MISMATCHED,
            request=request,
            authority_record=record,
            policy_version=policy_version,
            mismatches=tuple(mismatches),
            created_at=created_at or datetime.now(timezone.utc)
        )

    @classmethod
    def expired(
        cls,
        request: GateEntryRequest,
        record: AuthorityRecord,
        policy_version: str,
        created_at: Optional[datetime] = None
    ) -> "Decision":
        return cls(
            outcome=DecisionOutcome.EXPIRED,
            request=request,
            authority_record=record,
            policy_version=policy_version,
            created_at=created_at or datetime.now(timezone.utc)
        )

    @property
    def is_matched(self) -> bool:
        return self.outcome == DecisionOutcome.MATCHED

    @property
    def is_expired(self) -> bool:
        return self.outcome == DecisionOutcome.EXPIRED

    def to_payload(self) -> Dict[str, Any]:
        """Payload shared by the audit trail, live events and forwarding."""
        return {
            "outcome": self.outcome.value,
            "source": self.source.value if self.source else None,
            "client": self.request.to_dict(),
            "soapData": self.authority_record.to_dict() if self.authority_record else None,
            "mismatches": [m.to_dict() for m in self.mismatches],
            "reason": EXPIRED_REASON if self.is_expired else None,
            "policyVersion": self.policy_version,
            "timestamp": self.created_at.isoformat()
        }
