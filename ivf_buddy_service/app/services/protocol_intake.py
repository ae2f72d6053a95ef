# app/services/protocol_intake.py
"""
Persisting a protocol extraction as the cycle's DRAFT plan, reviewer edits,
and activation. Activation alone does not generate tasks; the intake workflow
runs the plan generator right after it.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional

from app.core.errors import CycleNotFoundError, ProtocolNotFoundError, ProtocolValidationError
from app.db.store import Store, new_id
from app.schemas.extraction import ProtocolExtraction
from app.schemas.models import Appointment, Medication, Milestone, ProtocolPlan, ProtocolSource
from app.utils.local_time import is_valid_hhmm, local_today, utc_now

logger = logging.getLogger(__name__)

# extraction missingFields -> question for the user
MISSING_FIELD_QUESTIONS: Dict[str, str] = {
    "cycleStartDate": "What date does your cycle start (day 1)?",
    "medications": "Which medications did your clinic prescribe, and from which cycle day?",
    "appointments": "Do you have any monitoring or retrieval appointments scheduled yet?",
    "exactTime": "Is there an exact time your clinic gave for the trigger shot or procedures?",
    "no_data_found": "I couldn't find protocol details. Can you list your medications and appointments?",
    "validation_failed": "Some details didn't look right. Can you double-check the doses and day numbers?",
    "extraction_failed": "I couldn't read the protocol. Can you enter the medications manually?",
}


def questions_for_missing_fields(extraction: ProtocolExtraction) -> List[str]:
    missing = list(extraction.missing_fields)
    if not extraction.medications and "medications" not in missing:
        missing.append("medications")

    questions: List[str] = []
    for field in missing:
        q = MISSING_FIELD_QUESTIONS.get(field, f"Can you confirm: {field}?")
        if q not in questions:
            questions.append(q)
    return questions


def _build_plan(plan_id: str, cycle_id: str, source: ProtocolSource, start: date, ex: ProtocolExtraction) -> ProtocolPlan:
    return ProtocolPlan(
        id=plan_id,
        cycle_id=cycle_id,
        status="DRAFT",
        source=source,
        cycle_start_date=start,
        notes=ex.notes,
        medications=[
            Medication(id=new_id("med"), protocol_plan_id=plan_id, **m.model_dump())
            for m in ex.medications
        ],
        appointments=[
            Appointment(id=new_id("apt"), protocol_plan_id=plan_id, **a.model_dump())
            for a in ex.appointments
        ],
        milestones=[
            Milestone(id=new_id("ms"), protocol_plan_id=plan_id, **ms.model_dump())
            for ms in ex.milestones
        ],
    )


def save_protocol_draft(
    store: Store,
    cycle_id: str,
    source: ProtocolSource,
    extraction: ProtocolExtraction,
    now: Optional[datetime] = None,
) -> ProtocolPlan:
    """Replace the cycle's protocol (and its children) with a new DRAFT."""
    cycle = store.get_cycle(cycle_id)
    if cycle is None:
        raise CycleNotFoundError(f"Cycle not found: {cycle_id}")

    start = extraction.cycle_start_date
    if start is None:
        user = store.get_user(cycle.user_id)
        tz = user.timezone if user else "UTC"
        start = local_today(now or utc_now(), tz)

    plan = _build_plan(new_id("proto"), cycle_id, source, start, extraction)
    saved = store.replace_protocol(plan, structured_data=extraction.model_dump(mode="json", by_alias=True))
    store.set_cycle_start(cycle_id, start)

    logger.info(
        "saved draft protocol %s for cycle=%s (%d meds, %d appointments, %d milestones)",
        saved.id, cycle_id, len(saved.medications), len(saved.appointments), len(saved.milestones),
    )
    return saved


def time_override_errors(protocol: ProtocolPlan, overrides: Mapping[str, str]) -> List[str]:
    known = {m.id for m in protocol.medications}
    errors: List[str] = []
    for med_id, hhmm in overrides.items():
        if med_id not in known:
            errors.append(f"Unknown medication: {med_id}")
        elif not isinstance(hhmm, str) or not is_valid_hhmm(hhmm):
            errors.append(f"Invalid time for {med_id}: {hhmm!r} (expected HH:MM)")
    return errors


def apply_time_overrides(store: Store, protocol_plan_id: str, overrides: Mapping[str, str]) -> int:
    """Set reviewer-chosen exact times on medications. All-or-nothing on validation."""
    protocol = store.get_protocol(protocol_plan_id)
    if protocol is None:
        raise ProtocolNotFoundError(f"Protocol not found: {protocol_plan_id}")

    errors = time_override_errors(protocol, overrides)
    if errors:
        raise ProtocolValidationError("; ".join(errors))

    applied = 0
    for med_id, hhmm in overrides.items():
        if store.set_medication_exact_time(protocol_plan_id, med_id, hhmm):
            applied += 1
    return applied


def activate_protocol(store: Store, protocol_plan_id: str) -> ProtocolPlan:
    protocol = store.get_protocol(protocol_plan_id)
    if protocol is None:
        raise ProtocolNotFoundError(f"Protocol not found: {protocol_plan_id}")
    if protocol.status != "ACTIVE":
        store.set_protocol_status(protocol_plan_id, "ACTIVE")
        logger.info("activated protocol %s for cycle=%s", protocol_plan_id, protocol.cycle_id)
    return store.get_protocol(protocol_plan_id)  # type: ignore[return-value]


def summarize_protocol(protocol: ProtocolPlan) -> Dict[str, Any]:
    """Reviewer-facing view of a draft."""
    return {
        "protocolPlanId": protocol.id,
        "status": protocol.status,
        "cycleStartDate": protocol.cycle_start_date.isoformat(),
        "medications": [
            {
                "id": m.id,
                "label": m.label(),
                "days": f"{m.start_day_offset}-{m.end_day_offset}",
                "timeOfDay": m.time_of_day,
                "exactTime": m.exact_time,
            }
            for m in protocol.medications
        ],
        "appointments": [
            {
                "id": a.id,
                "type": a.type,
                "dayOffset": a.day_offset,
                "exactTime": a.exact_time,
                "fasting": a.fasting,
                "critical": a.critical,
            }
            for a in protocol.appointments
        ],
        "milestones": [{"id": ms.id, "type": ms.type, "dayOffset": ms.day_offset} for ms in protocol.milestones],
        "notes": protocol.notes,
    }
