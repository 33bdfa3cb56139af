"""
Permit Matching Rules

Pure decision logic for gate reconciliation: no I/O, no clock.

Expiry:
- An explicit expiry timestamp wins: expired iff it is before decision time
- Otherwise a boolean validity flag: expired iff the flag is false
- A record with neither indicator is expired

Field reconciliation:
- Permit number is compared whenever the authority reports one
- Mandatory fields are mismatches when absent on the submitted side
- Container number is compared only when the policy requires it for the
  gate direction and permit class, and only when both sides have a value
- Other compared fields are checked only when both sides have a value
"""

from datetime import datetime
from typing import List, Optional, Tuple

from gate.models import (
    AuthorityRecord,
    Decision,
    GateEntryRequest,
    MatchSource,
    MismatchDetail,
    MismatchReason,
)
from gate.policy_registry import (
    CONTAINER_NUMBER,
    CONTAINER_SIZE,
    CONTAINER_TYPE,
    PERMIT_NUMBER,
    VEHICLE_NUMBER,
    GatePolicy,
)


# wire field name -> (request attribute, record attribute)
FIELD_ATTRIBUTES = {
    PERMIT_NUMBER: ("permit_number", "permit_number"),
    VEHICLE_NUMBER: ("vehicle_number", "vehicle_number"),
    CONTAINER_NUMBER: ("container_number", "container_number"),
    CONTAINER_SIZE: ("container_size", "container_size"),
    CONTAINER_TYPE: ("container_type", "container_type"),
}


def canonical_value(value: Optional[str]) -> Optional[str]:
    """Trim and upper-case for comparison; blank is absent."""
    if value is None:
        return None
    text = str(value).strip().upper()
    return text or None


def is_permit_expired(record: AuthorityRecord, now: datetime) -> bool:
    """Apply the validity indicator carried by the authority record."""
    if record.valid_till is not None:
        return record.valid_till < now
    if record.valid is not None:
        return not record.valid
    return True


def _values(field_name: str, request: GateEntryRequest, record: AuthorityRecord) -> Tuple[Optional[str], Optional[str]]:
    request_attr, record_attr = FIELD_ATTRIBUTES[field_name]
    return getattr(request, request_attr), getattr(record, record_attr)


def _compare_if_both_present(
    field_name: str,
    request: GateEntryRequest,
    record: AuthorityRecord
) -> Optional[MismatchDetail]:
    submitted, authoritative = _values(field_name, request, record)
    if canonical_value(submitted) is None or canonical_value(authoritative) is None:
        return None
    if canonical_value(submitted) != canonical_value(authoritative):
        return MismatchDetail(field=field_name, submitted=submitted, authoritative=authoritative)
    return None


def find_mismatches(
    request: GateEntryRequest,
    record: AuthorityRecord,
    policy: GatePolicy
) -> List[MismatchDetail]:
    """
    Compare submitted data against the authority record under a policy.

    Each field is reported at most once, in a stable order: permit number,
    mandatory fields, container number, then the remaining compared fields.
    """
    mismatches: List[MismatchDetail] = []
    reported = set()

    def report(detail: Optional[MismatchDetail]):
        if detail is not None and detail.field not in reported:
            reported.add(detail.field)
            mismatches.append(detail)

    # Permit number: authority's value is authoritative whenever present
    if canonical_value(record.permit_number) is not None:
        if canonical_value(request.permit_number) != canonical_value(record.permit_number):
            report(MismatchDetail(
                field=PERMIT_NUMBER,
                submitted=request.permit_number,
                authoritative=record.permit_number
            ))

    for field_name in sorted(policy.mandatory_fields):
        submitted, authoritative = _values(field_name, request, record)
        if canonical_value(submitted) is None:
            report(MismatchDetail(
                field=field_name,
                submitted=None,
                authoritative=authoritative,
                reason=MismatchReason.MISSING_SUBMITTED
            ))

    if policy.requires_container_check(request.gate_type, request.permit_number):
        report(_compare_if_both_present(CONTAINER_NUMBER, request, record))

    for field_name in policy.compared_fields:
        if field_name in reported:
            continue
        report(_compare_if_both_present(field_name, request, record))

    return mismatches


def evaluate(
    request: GateEntryRequest,
    record: AuthorityRecord,
    policy: GatePolicy,
    now: datetime
) -> Decision:
    """
    Classify a transaction against an authority record.

    Expiry short-circuits field reconciliation; the record is still
    attached to the decision for audit purposes.
    """
    if is_permit_expired(record, now):
        return Decision.expired(request, record, policy.version, created_at=now)

    mismatches = find_mismatches(request, record, policy)
    if mismatches:
        return Decision.mismatched(request, record, tuple(mismatches), policy.version, created_at=now)

    return Decision.matched(request, record, MatchSource.AUTHORITY, policy.version, created_at=now)


__all__ = [
    "CONTAINER_NUMBER",
    "CONTAINER_SIZE",
    "CONTAINER_TYPE",
    "FIELD_ATTRIBUTES",
    "PERMIT_NUMBER",
    "VEHICLE_NUMBER",
    "canonical_value",
    "evaluate",
    "find_mismatches",
    "is_permit_expired",
]
