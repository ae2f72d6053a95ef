# app/agent/nodes.py
from typing import Any, Dict, List, Optional

from langgraph.types import interrupt
from pydantic import ValidationError

from app.agent.state import IntakeState
from app.core.config import Settings
from app.core.errors import ProtocolNotFoundError
from app.db.store import Store
from app.schemas.extraction import ProtocolExtraction
from app.services.planning import regenerate_for_cycle
from app.services.protocol_intake import (
    MISSING_FIELD_QUESTIONS,
    activate_protocol,
    apply_time_overrides,
    questions_for_missing_fields,
    save_protocol_draft,
    summarize_protocol,
    time_override_errors,
)


def _audit(state: IntakeState, event: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    audit = list(state.get("audit") or [])
    audit.append({"event": event, **(extra or {})})
    return {"audit": audit}


def _error_lines(e: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]


class IntakeNodes:
    """
    Graph nodes bound to a store. Nodes that interrupt are re-run from the top
    on resume, so everything before ``interrupt()`` only reads.
    """

    def __init__(self, store: Store, settings: Settings):
        self.store = store
        self.settings = settings

    def normalize(self, state: IntakeState) -> Dict[str, Any]:
        try:
            extraction = ProtocolExtraction.model_validate(state.get("extraction") or {})
        except ValidationError as e:
            errors = _error_lines(e)
            return {
                "needs_info": True,
                "questions": [MISSING_FIELD_QUESTIONS["validation_failed"]],
                "errors": errors,
                "next_step": "NEED_INFO",
                **_audit(state, "normalize.invalid", {"errors": len(errors)}),
            }

        questions = questions_for_missing_fields(extraction)
        if not extraction.medications:
            return {
                "needs_info": True,
                "questions": questions,
                "errors": [],
                "next_step": "NEED_INFO",
                **_audit(state, "normalize.need_info", {"missing": list(extraction.missing_fields)}),
            }

        draft = save_protocol_draft(self.store, state["cycle_id"], state.get("source") or "INTAKE", extraction)
        return {
            "needs_info": False,
            "questions": questions,
            "errors": [],
            "protocol_plan_id": draft.id,
            "next_step": "NEED_APPROVAL",
            **_audit(state, "normalize.draft_saved", {
                "protocol_plan_id": draft.id,
                "medications": len(draft.medications),
                "appointments": len(draft.appointments),
            }),
        }

    def need_info(self, state: IntakeState) -> Dict[str, Any]:
        """
        Interrupt to collect a corrected extraction.
        Resume payload expected: {"extraction": {...}}.
        """
        payload = {
            "type": "NEED_INFO",
            "intake_id": state["intake_id"],
            "questions": state.get("questions", []),
            "errors": state.get("errors", []),
            "current_extraction": state.get("extraction") or {},
        }

        resume = interrupt(payload)

        updates: Dict[str, Any] = {}
        if isinstance(resume, dict) and resume.get("extraction"):
            updates["extraction"] = resume["extraction"]

        updates.update(_audit(state, "need_info.resumed", {"has_extraction": "extraction" in updates}))
        return updates

    def review(self, state: IntakeState) -> Dict[str, Any]:
        protocol = self.store.get_protocol(state["protocol_plan_id"])
        if protocol is None:
            raise ProtocolNotFoundError(f"Draft protocol disappeared: {state['protocol_plan_id']}")

        payload = {
            "type": "APPROVAL_REQUIRED",
            "intake_id": state["intake_id"],
            "draft": summarize_protocol(protocol),
            "questions": state.get("questions", []),
            "errors": state.get("review_errors", []),
            "instructions": "Review the plan, optionally set exact medication times, then approve.",
        }

        resume = interrupt(payload)
        resume = resume if isinstance(resume, dict) else {}

        approved = bool(resume.get("approved"))
        overrides = dict(resume.get("timeOverrides") or {})
        errors = time_override_errors(protocol, overrides) if approved else []

        return {
            "approval": {"approved": approved, "timeOverrides": overrides},
            "review_errors": errors,
            **_audit(state, "review.resumed", {"approved": approved, "overrides": len(overrides), "errors": len(errors)}),
        }

    def activate(self, state: IntakeState) -> Dict[str, Any]:
        protocol_plan_id = state["protocol_plan_id"]
        overrides = (state.get("approval") or {}).get("timeOverrides") or {}

        applied = apply_time_overrides(self.store, protocol_plan_id, overrides) if overrides else 0
        # plan first: a failed regeneration leaves the protocol in DRAFT
        result = regenerate_for_cycle(self.store, self.settings, state["cycle_id"], protocol_plan_id)
        activate_protocol(self.store, protocol_plan_id)

        return {
            "plan_result": result.model_dump(by_alias=True),
            "next_step": "DONE",
            **_audit(state, "activate.done", {
                "overrides_applied": applied,
                "plan_days": result.plan_days_created,
                "tasks": result.tasks_created,
            }),
        }

    def reject(self, state: IntakeState) -> Dict[str, Any]:
        # draft stays in place for a later intake
        return {"next_step": "REJECTED", **_audit(state, "review.rejected")}


def route_after_normalize(state: IntakeState) -> str:
    return "need_info" if state.get("needs_info") else "review"


def route_after_review(state: IntakeState) -> str:
    if state.get("review_errors"):
        return "review"
    return "activate" if (state.get("approval") or {}).get("approved") else "reject"
