"""
Matched Decision Forwarding

Delivers matched gate decisions to the configured downstream sink.

Features:
- Verbatim JSON payload, bounded timeout
- Optional HMAC-SHA256 signature for payload authentication
- Successful deliveries recorded under "forwarded"
- Failures captured under "forward-error" with the original payload

No retry queue: a failed forward is replayed manually from the
forward-error history. forward() never raises to its caller.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from services.audit import AuditCategory, AuditLog

logger = logging.getLogger(__name__)


FORWARD_EVENT = "gate.matched"
DEFAULT_TIMEOUT = 5.0  # seconds


@dataclass
class DeliveryResult:
    """Result of a forwarding attempt."""
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def canonical_body(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, default=str).encode("utf-8")


def sign_payload(secret: str, payload: Dict[str, Any]) -> str:
    """HMAC-SHA256 over the canonical (sorted-key) JSON body."""
    return hmac.new(secret.encode("utf-8"), canonical_body(payload), hashlib.sha256).hexdigest()


class ForwardingClient:
    """
    Best-effort delivery of matched decisions to a downstream HTTP sink.
    """

    def __init__(
        self,
        url: Optional[str],
        audit_log: AuditLog,
        timeout: float = DEFAULT_TIMEOUT,
        secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = url
        self.audit_log = audit_log
        self.timeout = timeout
        self.secret = secret
        self._transport = transport

    @classmethod
    def from_settings(cls, settings, audit_log: AuditLog) -> "ForwardingClient":
        return cls(
            url=settings.FORWARD_URL or None,
            audit_log=audit_log,
            timeout=settings.FORWARD_TIMEOUT_SECONDS,
            secret=settings.FORWARD_SECRET or None
        )

    async def forward(self, payload: Dict[str, Any]) -> DeliveryResult:
        """Deliver a payload and record the outcome. Never raises."""
        if not self.url:
            result = DeliveryResult(success=False, error="forwarding not configured")
        else:
            result = await self._deliver(payload)

        try:
            if result.success:
                await self.audit_log.append(AuditCategory.FORWARDED, {
                    "payload": payload,
                    "statusCode": result.status_code,
                    "durationMs": result.duration_ms
                })
                logger.info(f"Forwarded matched decision ({result.status_code}, {result.duration_ms}ms)")
            else:
                await self.audit_log.append(AuditCategory.FORWARD_ERROR, {
                    "error": result.error,
                    "statusCode": result.status_code,
                    "payload": payload
                })
                logger.warning(f"Forwarding failed: {result.error}")
        except Exception as e:
            logger.error(f"Failed to record forwarding result: {e}")

        return result

    async def _deliver(self, payload: Dict[str, Any]) -> DeliveryResult:
        start_time = datetime.now(timezone.utc)

        try:
            headers = {
                "Content-Type": "application/json",
                "X-Gate-Event": FORWARD_EVENT,
                "X-Gate-Timestamp": str(payload.get("timestamp", "")),
            }
            if self.secret:
                headers["X-Gate-Signature"] = f"sha256={sign_payload(self.secret, payload)}"

            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, content=canonical_body(payload), headers=headers)

            duration = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)

            if 200 <= response.status_code < 300:
                return DeliveryResult(
                    success=True,
                    status_code=response.status_code,
                    duration_ms=duration
                )
            return DeliveryResult(
                success=False,
                status_code=response.status_code,
                error=f"HTTP {response.status_code}: {response.text[:200]}",
                duration_ms=duration
            )

        except httpx.TimeoutException:
            return DeliveryResult(success=False, error="Connection timeout")
        except httpx.ConnectError as e:
            return DeliveryResult(success=False, error=f"Connection failed: {str(e)[:100]}")
        except Exception as e:
            return DeliveryResult(success=False, error=f"Delivery error: {str(e)[:100]}")
