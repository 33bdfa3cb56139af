"""
Gate Policy Registry

Versioned field-check policies for gate reconciliation.

Two deployments of the gate validator have run with different rules,
and both remain valid configurations:

- v1: Manual-confirm deployment. Operators may confirm a transaction by
      hand, the container number is cross-checked on every gate, and no
      field beyond the permit number is mandatory.
- v2: Strict deployment. No manual override, the vehicle number is
      mandatory, and the container number is only cross-checked for the
      permit classes and gate directions listed in its rules.

The active policy is chosen per deployment (GATE_POLICY_VERSION) and is
never edited at runtime.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from gate.errors import UnknownPolicyVersion
from gate.models import GateDirection


# Wire field names understood by the matching rules
PERMIT_NUMBER = "permitNumber"
VEHICLE_NUMBER = "vehicleNumber"
CONTAINER_NUMBER = "containerNumber"
CONTAINER_SIZE = "containerSize"
CONTAINER_TYPE = "containerType"

COMPARABLE_FIELDS = (VEHICLE_NUMBER, CONTAINER_SIZE, CONTAINER_TYPE)


@dataclass(frozen=True)
class GatePolicy:
    """
    Field-check policy for one deployment.

    container_check_rules maps a permit-number prefix to the gate
    directions on which the container number must be cross-checked.
    Permits matching no rule fall back to container_check_default.
    """
    version: str
    description: str
    manual_override_enabled: bool
    mandatory_fields: FrozenSet[str] = frozenset()
    compared_fields: Tuple[str, ...] = ()
    container_check_default: bool = False
    container_check_rules: Mapping[str, FrozenSet[GateDirection]] = field(default_factory=dict)

    def __post_init__(self):
        unknown = (set(self.mandatory_fields) | set(self.compared_fields)) - set(COMPARABLE_FIELDS)
        if unknown:
            raise ValueError(f"Policy {self.version} references unsupported fields: {sorted(unknown)}")

    def matching_prefix(self, permit_number: str) -> Optional[str]:
        """Longest configured prefix the permit number starts with."""
        permit = (permit_number or "").strip().upper()
        candidates = [p for p in self.container_check_rules if permit.startswith(p.upper())]
        if not candidates:
            return None
        return max(candidates, key=len)

    def requires_container_check(self, direction: GateDirection, permit_number: str) -> bool:
        """Whether the container number must be cross-checked for this transaction."""
        prefix = self.matching_prefix(permit_number)
        if prefix is None:
            return self.container_check_default
        return direction in self.container_check_rules[prefix]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "description": self.description,
            "manual_override_enabled": self.manual_override_enabled,
            "mandatory_fields": sorted(self.mandatory_fields),
            "compared_fields": list(self.compared_fields),
            "container_check_default": self.container_check_default,
            "container_check_rules": {
                prefix: sorted(d.value for d in directions)
                for prefix, directions in self.container_check_rules.items()
            }
        }


# The manual-confirm deployment never checked the vehicle number, so v1
# leaves it optional and uncompared. Vehicle rules start with v2.
POLICY_V1 = GatePolicy(
    version="v1",
    description="Manual-confirm deployment: container checked on every gate",
    manual_override_enabled=True,
    container_check_default=True
)

POLICY_V2 = GatePolicy(
    version="v2",
    description="Strict deployment: vehicle mandatory, container checked by permit class",
    manual_override_enabled=False,
    mandatory_fields=frozenset({VEHICLE_NUMBER}),
    compared_fields=(VEHICLE_NUMBER, CONTAINER_SIZE, CONTAINER_TYPE),
    container_check_default=False,
    container_check_rules={
        "PMD": frozenset({GateDirection.GATE_OUT}),
        "PME": frozenset({GateDirection.GATE_IN, GateDirection.GATE_OUT}),
    }
)


class PolicyRegistry:
    """
    Registry of known gate policies, keyed by version.
    """

    _default_policies: Dict[str, GatePolicy] = {
        POLICY_V1.version: POLICY_V1,
        POLICY_V2.version: POLICY_V2,
    }

    def __init__(self):
        self._policies = dict(self._default_policies)

    def get(self, version: str) -> GatePolicy:
        """Get a policy by version, raising UnknownPolicyVersion if absent."""
        policy = self._policies.get((version or "").strip().lower())
        if policy is None:
            raise UnknownPolicyVersion(
                f"Unknown gate policy version '{version}'. Valid versions: {self.versions()}"
            )
        return policy

    def versions(self) -> List[str]:
        return sorted(self._policies)

    def is_registered(self, version: str) -> bool:
        return (version or "").strip().lower() in self._policies

    def to_dict(self) -> Dict[str, Any]:
        return {version: policy.to_dict() for version, policy in self._policies.items()}


# Global registry instance
policy_registry = PolicyRegistry()
