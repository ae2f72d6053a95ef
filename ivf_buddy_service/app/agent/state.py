from typing import Any, Dict, List, TypedDict


class IntakeState(TypedDict, total=False):
    # identity (intake_id doubles as LangGraph thread_id)
    intake_id: str
    cycle_id: str
    source: str  # UPLOAD | INTAKE

    # inputs
    extraction: Dict[str, Any]  # camelCase ProtocolExtraction payload

    # normalize
    needs_info: bool
    questions: List[str]
    errors: List[str]
    protocol_plan_id: str

    # review
    approval: Dict[str, Any]  # {"approved": bool, "timeOverrides": {medication_id: "HH:MM"}}
    review_errors: List[str]

    # outputs
    plan_result: Dict[str, Any]
    next_step: str  # NEED_INFO | NEED_APPROVAL | DONE | REJECTED
    audit: List[Dict[str, Any]]
