"""
Gate Validation API Endpoints

REST and WebSocket API for gate-entry validation:
- POST /api/gate/validate - Validate a gate transaction
- GET /api/gate/matched - Matched history
- GET /api/gate/mismatch - Mismatch history
- GET /api/gate/invalid - Expired-permit history
- GET /api/gate/forward-errors - Failed forwards, for manual replay
- GET /api/gate/policy - Active field-check policy
- WS  /api/gate/events - Live gate:matched / gate:mismatch / gate:invalid events

Validate responses:
- 200 matched, 409 field mismatch, 422 permit expired, 500 failure
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import get_settings
from gate.errors import AuthorityError, GateProcessingError
from gate.models import Decision, DecisionOutcome, GateDirection, GateEntryRequest, MatchSource
from gate.services.validation_service import GateValidationService
from services.audit import AuditCategory
from services.event_notifier import EventNotifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gate", tags=["Gate Validation"])


# ==================== Request/Response Models ====================

class GateValidateRequest(BaseModel):
    """Operator-submitted gate transaction."""
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "permitNumber": "PMA1001",
                "gateType": "GATE_IN",
                "vehicleNumber": "MH12AB1234",
                "containerNumber": "TCLU1234567",
                "containerSize": "20",
                "containerType": "GP",
                "confirmedByUser": False
            }
        }
    )

    permit_number: str = Field(..., alias="permitNumber", description="Permit number")
    gate_type: GateDirection = Field(..., alias="gateType", description="IN, OUT, GATE_IN or GATE_OUT")
    vehicle_number: Optional[str] = Field(default=None, alias="vehicleNumber")
    container_number: Optional[str] = Field(default=None, alias="containerNumber")
    container_size: Optional[str] = Field(default=None, alias="containerSize")
    container_type: Optional[str] = Field(default=None, alias="containerType")
    confirmed_by_user: bool = Field(default=False, alias="confirmedByUser", description="Manual override")

    @field_validator("permit_number")
    @classmethod
    def permit_number_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("permitNumber is required")
        return value.strip()

    @field_validator("gate_type", mode="before")
    @classmethod
    def parse_gate_type(cls, value):
        if isinstance(value, GateDirection):
            return value
        return GateDirection.parse(value)

    @field_validator("confirmed_by_user", mode="before")
    @classmethod
    def null_means_unconfirmed(cls, value):
        return False if value is None else value

    def to_entry_request(self) -> GateEntryRequest:
        return GateEntryRequest.create(
            permit_number=self.permit_number,
            gate_type=self.gate_type,
            vehicle_number=self.vehicle_number,
            container_number=self.container_number,
            container_size=self.container_size,
            container_type=self.container_type,
            confirmed_by_user=self.confirmed_by_user
        )


class HistoryResponse(BaseModel):
    """Full ordered history of one audit category."""
    success: bool
    count: int
    data: list


# ==================== Dependencies ====================

def get_gate_service(request: Request) -> GateValidationService:
    """Gate validation service built at application startup."""
    return request.app.state.gate_service


def get_event_notifier(websocket: WebSocket) -> EventNotifier:
    return websocket.app.state.gate_service.notifier


# ==================== Helpers ====================

def decision_response(decision: Decision) -> JSONResponse:
    """Map a decision to its HTTP response."""
    soap_data = decision.authority_record.to_dict() if decision.authority_record else None

    if decision.outcome == DecisionOutcome.MATCHED:
        manual = decision.source == MatchSource.MANUAL
        return JSONResponse(status_code=status.HTTP_200_OK, content={
            "success": True,
            "source": decision.source.value,
            "message": "Manually confirmed & sent" if manual else "Permit validated",
            "soapData": soap_data,
            "decision": decision.to_payload()
        })

    if decision.outcome == DecisionOutcome.MISMATCHED:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={
            "success": False,
            "type": "FIELD_MISMATCH",
            "mismatches": [m.to_dict() for m in decision.mismatches],
            "soapData": soap_data
        })

    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={
        "success": False,
        "type": "PERMIT_EXPIRED",
        "message": "Permit is expired",
        "soapData": soap_data
    })


# ==================== Endpoints ====================

@router.post("/validate", summary="Validate a gate transaction")
async def validate_gate_entry(
    body: GateValidateRequest,
    service: GateValidationService = Depends(get_gate_service)
):
    """
    Validate a gate transaction against the permit authority.

    This will:
    1. Record the request in the incoming history
    2. Honour a manual confirmation if the deployment policy allows it
    3. Otherwise look up the permit and check expiry and fields
    4. Record and broadcast the decision
    5. Forward matched decisions downstream
    """
    try:
        decision = await service.process(body.to_entry_request())
    except AuthorityError as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(e)}
        )
    except GateProcessingError as e:
        message = "Internal server error" if get_settings().is_production else str(e)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": message}
        )

    return decision_response(decision)


@router.get("/matched", response_model=HistoryResponse, summary="Matched history")
async def get_matched(service: GateValidationService = Depends(get_gate_service)):
    return await service.history(AuditCategory.MATCHED)


@router.get("/mismatch", response_model=HistoryResponse, summary="Mismatch history")
async def get_mismatch(service: GateValidationService = Depends(get_gate_service)):
    return await service.history(AuditCategory.MISMATCH)


@router.get("/invalid", response_model=HistoryResponse, summary="Expired-permit history")
async def get_invalid(service: GateValidationService = Depends(get_gate_service)):
    return await service.history(AuditCategory.INVALID)


@router.get("/forward-errors", response_model=HistoryResponse, summary="Failed forwards")
async def get_forward_errors(service: GateValidationService = Depends(get_gate_service)):
    """Matched decisions that could not be delivered downstream, for manual replay."""
    return await service.history(AuditCategory.FORWARD_ERROR)


@router.get("/policy", summary="Active gate policy")
async def get_policy(service: GateValidationService = Depends(get_gate_service)):
    return service.policy.to_dict()


@router.websocket("/events")
async def gate_events(websocket: WebSocket, notifier: EventNotifier = Depends(get_event_notifier)):
    """Live gate decisions for dashboards. Incoming messages are ignored."""
    conn_id = await notifier.connect(websocket)
    try:
        await websocket.send_json({
            "event": "connected",
            "data": {"connectionId": conn_id, "policyVersion": websocket.app.state.gate_service.policy.version},
            "timestamp": datetime.now(timezone.utc).isoformat()
        })
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        notifier.disconnect(conn_id)
