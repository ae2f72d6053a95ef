# app/agent/graph.py
"""
Protocol intake as a LangGraph workflow:

    normalize -> need_info -> normalize ...
              -> review -> activate -> END
                        -> reject -> END

need_info and review pause on ``interrupt()``; state is checkpointed per
intake thread so a draft can be reviewed across requests.
"""
import logging
from typing import Any, Dict, List, Optional

from langgraph.checkpoint.memory import InMemorySaver
from langgraph.checkpoint.sqlite import SqliteSaver
from langgraph.graph import END, START, StateGraph
from langgraph.types import Command
from pydantic import Field

from app.agent.nodes import IntakeNodes, route_after_normalize, route_after_review
from app.agent.state import IntakeState
from app.core.config import Settings
from app.core.errors import CycleNotFoundError, IntakeNotFoundError, IntakeStateError
from app.db.db_config import get_checkpoint_connection
from app.db.store import Store, new_id
from app.schemas.models import CamelModel

logger = logging.getLogger(__name__)


class IntakeStatus(CamelModel):
    intake_id: str
    cycle_id: str
    next_step: Optional[str] = None
    questions: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    protocol_plan_id: Optional[str] = None
    draft: Optional[Dict[str, Any]] = None
    plan_result: Optional[Dict[str, Any]] = None


def build_checkpointer(db_path: str):
    if db_path == ":memory:":
        return InMemorySaver()
    return SqliteSaver(get_checkpoint_connection(db_path))


def build_intake_graph(store: Store, settings: Settings, checkpointer=None):
    nodes = IntakeNodes(store, settings)
    builder = StateGraph(IntakeState)

    builder.add_node("normalize", nodes.normalize)
    builder.add_node("need_info", nodes.need_info)
    builder.add_node("review", nodes.review)
    builder.add_node("activate", nodes.activate)
    builder.add_node("reject", nodes.reject)

    builder.add_edge(START, "normalize")
    builder.add_conditional_edges("normalize", route_after_normalize, {
        "need_info": "need_info",
        "review": "review",
    })
    builder.add_edge("need_info", "normalize")
    builder.add_conditional_edges("review", route_after_review, {
        "review": "review",
        "activate": "activate",
        "reject": "reject",
    })
    builder.add_edge("activate", END)
    builder.add_edge("reject", END)

    if checkpointer is None:
        checkpointer = build_checkpointer(settings.checkpoint_db_path)
    return builder.compile(checkpointer=checkpointer)


def _config(intake_id: str) -> Dict[str, Any]:
    return {"configurable": {"thread_id": intake_id}}


def _pending_interrupt(snap) -> Optional[Dict[str, Any]]:
    interrupts = getattr(snap, "interrupts", None) or ()
    if not interrupts:
        for task in getattr(snap, "tasks", None) or ():
            interrupts = tuple(interrupts) + tuple(getattr(task, "interrupts", None) or ())
    if not interrupts:
        return None
    payload = interrupts[-1].value
    return payload if isinstance(payload, dict) else None


class IntakeWorkflow:
    """Request-level operations over the compiled intake graph."""

    def __init__(self, store: Store, settings: Settings, checkpointer=None):
        self.store = store
        self.graph = build_intake_graph(store, settings, checkpointer)

    def _snapshot(self, intake_id: str):
        snap = self.graph.get_state(_config(intake_id))
        if not snap.values:
            raise IntakeNotFoundError(f"Intake not found: {intake_id}")
        return snap

    def _status(self, intake_id: str) -> IntakeStatus:
        snap = self._snapshot(intake_id)
        state = snap.values
        pending = _pending_interrupt(snap)

        status = IntakeStatus(
            intake_id=intake_id,
            cycle_id=state["cycle_id"],
            questions=state.get("questions", []),
            errors=state.get("errors", []),
            protocol_plan_id=state.get("protocol_plan_id"),
            plan_result=state.get("plan_result"),
        )
        if pending is None:
            status.next_step = state.get("next_step")
        elif pending.get("type") == "NEED_INFO":
            status.next_step = "NEED_INFO"
        else:
            status.next_step = "NEED_APPROVAL"
            status.draft = pending.get("draft")
            status.errors = pending.get("errors", [])
        return status

    def _pending_type(self, intake_id: str) -> Optional[str]:
        pending = _pending_interrupt(self._snapshot(intake_id))
        return pending.get("type") if pending else None

    def start(self, cycle_id: str, extraction: Dict[str, Any], source: str = "INTAKE") -> IntakeStatus:
        if self.store.get_cycle(cycle_id) is None:
            raise CycleNotFoundError(f"Cycle not found: {cycle_id}")

        intake_id = new_id("intake")
        initial_state: IntakeState = {
            "intake_id": intake_id,
            "cycle_id": cycle_id,
            "source": source,
            "extraction": extraction,
            "audit": [],
        }
        self.graph.invoke(initial_state, config=_config(intake_id))
        logger.info("intake %s started for cycle=%s", intake_id, cycle_id)
        return self._status(intake_id)

    def continue_with(self, intake_id: str, extraction: Dict[str, Any]) -> IntakeStatus:
        itype = self._pending_type(intake_id)
        if itype != "NEED_INFO":
            # waiting for approval or finished; nothing to resume here
            return self._status(intake_id)

        self.graph.invoke(Command(resume={"extraction": extraction}), config=_config(intake_id))
        return self._status(intake_id)

    def approve(
        self,
        intake_id: str,
        approved: bool,
        time_overrides: Optional[Dict[str, str]] = None,
    ) -> IntakeStatus:
        itype = self._pending_type(intake_id)
        if itype != "APPROVAL_REQUIRED":
            raise IntakeStateError(f"Intake not waiting for approval. interrupt_type={itype}")

        resume = {"approved": approved, "timeOverrides": time_overrides or {}}
        self.graph.invoke(Command(resume=resume), config=_config(intake_id))
        status = self._status(intake_id)
        logger.info("intake %s reviewed approved=%s next_step=%s", intake_id, approved, status.next_step)
        return status

    def audit(self, intake_id: str) -> List[Dict[str, Any]]:
        return list(self._snapshot(intake_id).values.get("audit", []))
