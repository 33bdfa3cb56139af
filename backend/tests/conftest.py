"""
Shared fixtures for the gate validator tests.

The environment is pinned before any application module is imported so
that the cached settings never point at a real authority, sink or log
directory.
"""

import os
import tempfile
from datetime import datetime, timezone

import pytest

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("GATE_LOG_DIR", tempfile.mkdtemp(prefix="gate-audit-"))
os.environ.setdefault("FORWARD_URL", "")
os.environ.setdefault("SENTRY_DSN", "")

from gate.models import AuthorityRecord, GateDirection, GateEntryRequest  # noqa: E402


FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class StubAuthority:
    """Authority double returning a fixed record (or raising) and counting lookups."""

    def __init__(self, record=None, error=None):
        self.record = record
        self.error = error
        self.calls = []

    async def lookup(self, permit_number):
        self.calls.append(permit_number)
        if self.error is not None:
            raise self.error
        return self.record


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def valid_record():
    """Authority record valid until 2025-12-31."""
    return AuthorityRecord(
        permit_number="PMA1001",
        container_number="TCLU1234567",
        container_size="20",
        container_type="GP",
        vehicle_number="MH12AB1234",
        valid_till=datetime(2025, 12, 31, tzinfo=timezone.utc),
        response_shape="empty_trailer_output"
    )


@pytest.fixture
def gate_in_request():
    return GateEntryRequest.create(
        permit_number="PMA1001",
        gate_type=GateDirection.GATE_IN,
        vehicle_number="MH12AB1234",
        container_number="TCLU1234567",
        container_size="20",
        container_type="GP"
    )
