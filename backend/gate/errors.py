"""
Gate Validation Errors

Exception taxonomy for the gate validation pipeline.

Permit expiry and field mismatches are NOT exceptions: they are
Decision outcomes (see gate.models). Only failures that prevent a
decision from being reached are raised.
"""

from typing import Optional


class GateValidationError(Exception):
    """Base class for all gate validation failures."""


class AuthorityError(GateValidationError):
    """The permit authority could not produce a usable record."""

    def __init__(self, message: str, permit_number: Optional[str] = None):
        super().__init__(message)
        self.permit_number = permit_number


class AuthorityUnavailable(AuthorityError):
    """Transport failure, timeout, HTTP error status or SOAP Fault."""


class AuthorityMalformedResponse(AuthorityError):
    """Response is missing the structural elements needed to build a record."""


class GateProcessingError(GateValidationError):
    """Unclassified failure caught at the transaction boundary."""


class UnknownPolicyVersion(GateValidationError):
    """Requested policy version is not registered."""
