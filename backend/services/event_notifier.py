"""
Gate Event Notifier

Best-effort broadcast of gate decisions to live dashboards over WebSocket.

- No acknowledgement, no queueing, no replay
- Subscribers that connect after an event never see it
- A subscriber whose send fails is dropped; publish never raises

The audit log holds the durable copy of every published payload.
"""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class GateEvent(str, Enum):
    """Real-time event names, one per terminal decision."""
    MATCHED = "gate:matched"
    MISMATCH = "gate:mismatch"
    INVALID = "gate:invalid"


class EventNotifier:
    """Registry of connected dashboard sockets."""

    def __init__(self):
        self._connections: Dict[str, WebSocket] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> str:
        """Accept and register a subscriber, returning its connection id."""
        await websocket.accept()
        conn_id = str(uuid.uuid4())
        self._connections[conn_id] = websocket
        logger.info(f"Dashboard socket connected ({self.subscriber_count} active)")
        return conn_id

    def disconnect(self, conn_id: str):
        if self._connections.pop(conn_id, None) is not None:
            logger.info(f"Dashboard socket disconnected ({self.subscriber_count} active)")

    async def publish(self, event_name: str, payload: Dict[str, Any]) -> int:
        """
        Send an event to every current subscriber.

        Returns the number of subscribers that received it.
        """
        name = event_name.value if isinstance(event_name, GateEvent) else event_name
        message = {
            "event": name,
            "data": payload,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        delivered = 0
        for conn_id, websocket in list(self._connections.items()):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping dashboard socket {conn_id[:8]} after send failure: {e}")
                self._connections.pop(conn_id, None)

        logger.debug(f"Published {name} to {delivered} subscriber(s)")
        return delivered
