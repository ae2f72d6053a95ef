# app/api/routes_protocol.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from app.agent.graph import IntakeStatus
from app.api.deps import get_container
from app.core.container import ServiceContainer
from app.schemas.extraction import extraction_json_schema
from app.schemas.models import CamelModel, ProtocolSource

router = APIRouter(prefix="/protocol", tags=["protocol"])


class IntakeRequest(CamelModel):
    cycle_id: str
    source: ProtocolSource = "INTAKE"
    extraction: Dict[str, Any]


class ContinueRequest(CamelModel):
    intake_id: str
    extraction: Dict[str, Any]


class ApproveRequest(CamelModel):
    intake_id: str
    approved: bool = True
    time_overrides: Optional[Dict[str, str]] = None


@router.post("/intake", response_model=IntakeStatus)
def protocol_intake(req: IntakeRequest, container: ServiceContainer = Depends(get_container)):
    return container.intake.start(req.cycle_id, req.extraction, source=req.source)


@router.post("/continue", response_model=IntakeStatus)
def protocol_continue(req: ContinueRequest, container: ServiceContainer = Depends(get_container)):
    return container.intake.continue_with(req.intake_id, req.extraction)


@router.post("/approve", response_model=IntakeStatus)
def protocol_approve(req: ApproveRequest, container: ServiceContainer = Depends(get_container)):
    return container.intake.approve(req.intake_id, req.approved, req.time_overrides)


@router.get("/audit")
def protocol_audit(intake_id: str, container: ServiceContainer = Depends(get_container)):
    return {"intakeId": intake_id, "audit": container.intake.audit(intake_id)}


@router.get("/schema")
def protocol_schema():
    return extraction_json_schema()
