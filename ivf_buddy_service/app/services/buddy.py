# app/services/buddy.py
"""
Conversational replies for IVF Buddy.

Severe-symptom messages never reach the model: they get the fixed escalation
response. Everything else goes to the configured provider with a compact
context of the cycle, and any provider failure turns into a fixed reply keyed
by the user's mood so the chat turn always gets an answer.
"""
import logging
from datetime import datetime
from typing import List, Optional

from app.core.config import Settings
from app.core.errors import IvfBuddyError
from app.db.store import Store
from app.schemas.models import ConversationState
from app.services.daily_context import get_daily_context
from app.services.escalation import ESCALATION_RESPONSE, ESCALATION_TAGS, contains_severe_keyword
from app.services.llm.buddy import ChatJsonFn, llm_buddy_reply, provider_chat_json
from app.services.llm.prompts import BUDDY_CONTEXT_TEMPLATE
from app.services.llm.sanitize import BuddyReply
from app.utils.local_time import utc_now

logger = logging.getLogger(__name__)

OPT_OUT_CONFIRMATION = (
    "You've been unsubscribed from IVF Buddy SMS. You can re-enable notifications "
    "anytime in the app. Take care 💛"
)


def fallback_reply(mood: Optional[int]) -> BuddyReply:
    if mood is None:
        return BuddyReply(
            message_text=(
                "Thanks for reaching out 💛 I'm here if you need anything. "
                "How are you feeling today on a scale of 1-5?"
            ),
            tags=["general", "check-in"],
        )
    if mood <= 2:
        return BuddyReply(
            message_text=(
                "Hey 💛 I'm here. That sounds like a heavy day. "
                "Want one tiny grounding tip or just a little encouragement?"
            ),
            tags=["low-mood", "supportive"],
        )
    if mood == 3:
        return BuddyReply(
            message_text=(
                "Thanks for checking in 💛 Middle-of-the-road days happen. "
                "Just keep doing what you're doing - you're making progress."
            ),
            tags=["neutral", "encouraging"],
        )
    return BuddyReply(
        message_text="Love to hear that 💛 Want to keep the momentum with a quick hydration + rest reminder?",
        tags=["positive", "encouraging"],
    )


def update_conversation_state(
    store: Store,
    settings: Settings,
    user_id: str,
    cycle_id: str,
    user_message: str,
    reply_text: str,
) -> ConversationState:
    """Append one exchange to the rolling summary and drop the oldest lines past the budget."""
    existing = store.get_conversation_state(cycle_id)
    entry = f"User: {user_message[:100]}... | Buddy: {reply_text[:100]}..."

    summary = f"{existing.summary if existing else ''}\n{entry}".strip()
    lines = summary.split("\n")
    while len(summary) > settings.conversation_summary_max_length and len(lines) > 1:
        lines.pop(0)
        summary = "\n".join(lines)

    state = ConversationState(cycle_id=cycle_id, user_id=user_id, summary=summary)
    store.save_conversation_state(state)
    return state


class BuddyService:
    def __init__(self, settings: Settings, store: Store, chat_json: Optional[ChatJsonFn] = None):
        self.settings = settings
        self.store = store
        self._chat_json = chat_json

    def _provider(self) -> ChatJsonFn:
        if self._chat_json is None:
            self._chat_json = provider_chat_json(self.settings)
        return self._chat_json

    def build_context(self, cycle_id: str, user_message: str, timezone: str, now: datetime) -> str:
        daily = get_daily_context(self.store, cycle_id, timezone, now=now)

        today_meds = ", ".join(m.label() for m in daily.medications) if daily else ""
        next_tasks = ", ".join(
            t.label for t in self.store.list_tasks(cycle_id, start=now, status="PENDING", limit=2)
        )

        recent = self.store.recent_check_ins(cycle_id, limit=3)
        moods = ", ".join(str(c.mood) for c in recent if c.mood is not None)
        symptoms: List[str] = []
        for c in recent:
            for s in c.symptoms:
                if s not in symptoms:
                    symptoms.append(s)

        state = self.store.get_conversation_state(cycle_id)

        return BUDDY_CONTEXT_TEMPLATE.format(
            cycle_day_index=daily.cycle_day_index if daily else 0,
            today_meds=today_meds or "None scheduled",
            next_tasks=next_tasks or "None upcoming",
            recent_mood=moods or "No recent mood data",
            recent_symptoms=", ".join(symptoms[:5]) or "None reported",
            user_message=user_message,
            conversation_summary=(state.summary if state and state.summary else "No previous conversation"),
        )

    def generate_reply(
        self,
        user_id: str,
        cycle_id: str,
        user_message: str,
        timezone: str,
        mood: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> BuddyReply:
        if contains_severe_keyword(user_message):
            logger.warning("escalation keyword in message from user=%s cycle=%s", user_id, cycle_id)
            return BuddyReply(message_text=ESCALATION_RESPONSE, tags=list(ESCALATION_TAGS), escalation=True)

        now = now or utc_now()
        try:
            context = self.build_context(cycle_id, user_message, timezone, now)
            reply = llm_buddy_reply(self._provider(), context)
        except IvfBuddyError as e:
            logger.warning("buddy reply failed for cycle=%s, using fallback: %s", cycle_id, e)
            return fallback_reply(mood)
        except Exception:
            logger.exception("buddy reply failed for cycle=%s, using fallback", cycle_id)
            return fallback_reply(mood)

        update_conversation_state(self.store, self.settings, user_id, cycle_id, user_message, reply.message_text)
        return reply
