# app/services/checkins.py
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.core.errors import CycleNotFoundError
from app.db.store import Store, new_id
from app.schemas.models import CamelModel, CheckIn, CheckInSource
from app.services.buddy import OPT_OUT_CONFIRMATION, BuddyService
from app.services.inbound_parser import parse_inbound_message
from app.services.sms import SmsService
from app.utils.local_time import utc_now

logger = logging.getLogger(__name__)

NO_CYCLE_SMS = "Hi! Please complete your profile in the IVF Buddy app first 💛"


class InboundSmsResult(CamelModel):
    user_id: Optional[str] = None
    opted_out: bool = False
    check_in_id: Optional[str] = None
    reply_text: Optional[str] = None
    escalation: bool = False
    symptoms: List[str] = Field(default_factory=list)


def create_check_in(
    store: Store,
    user_id: str,
    cycle_id: str,
    mood: Optional[int] = None,
    symptoms: Optional[List[str]] = None,
    note: Optional[str] = None,
    source: CheckInSource = "APP",
    now: Optional[datetime] = None,
) -> CheckIn:
    cycle = store.get_cycle(cycle_id)
    if cycle is None or cycle.user_id != user_id:
        raise CycleNotFoundError(f"Cycle not found: {cycle_id}")

    check_in = CheckIn(
        id=new_id("chk"),
        user_id=user_id,
        cycle_id=cycle_id,
        mood=mood,
        symptoms=list(symptoms or []),
        note=note or None,
        source=source,
        created_at=now or utc_now(),
    )
    return store.create_check_in(check_in)


def handle_inbound_sms(
    store: Store,
    sms: SmsService,
    buddy: BuddyService,
    from_number: str,
    body: str,
    provider_message_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> InboundSmsResult:
    """
    One inbound text: audit it, honour STOP, record a check-in and answer with
    a buddy reply over SMS. Unknown numbers are ignored.
    """
    now = now or utc_now()
    user = store.get_user_by_phone(from_number)
    if user is None:
        logger.warning("inbound sms from unknown number")
        return InboundSmsResult()

    sms.log_inbound(user.id, from_number, body, provider_message_id)
    parsed = parse_inbound_message(body)

    if parsed.is_opt_out:
        store.set_sms_consent(user.id, False)
        # confirmation goes out regardless of the consent just cleared
        sms.send(user.id, from_number, OPT_OUT_CONFIRMATION)
        logger.info("user=%s opted out of sms", user.id)
        return InboundSmsResult(user_id=user.id, opted_out=True, reply_text=OPT_OUT_CONFIRMATION)

    cycles = store.get_cycles_for_user(user.id)
    if not cycles:
        sms.send(user.id, from_number, NO_CYCLE_SMS)
        return InboundSmsResult(user_id=user.id, reply_text=NO_CYCLE_SMS)
    cycle = cycles[0]

    check_in = create_check_in(
        store,
        user.id,
        cycle.id,
        mood=parsed.mood,
        symptoms=parsed.symptoms,
        note=parsed.note,
        source="SMS",
        now=now,
    )

    reply = buddy.generate_reply(user.id, cycle.id, body, user.timezone, mood=parsed.mood, now=now)
    sms.send(user.id, from_number, reply.message_text)

    return InboundSmsResult(
        user_id=user.id,
        check_in_id=check_in.id,
        reply_text=reply.message_text,
        escalation=reply.escalation,
        symptoms=parsed.symptoms,
    )

