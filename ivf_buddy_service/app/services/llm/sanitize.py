# app/services/llm/sanitize.py
from typing import Any, Dict, List

from pydantic import Field, ValidationError

from app.core.errors import LLMError
from app.schemas.models import CamelModel

MAX_REPLY_CHARS = 320


class BuddyReply(CamelModel):
    message_text: str = Field(..., min_length=1, max_length=MAX_REPLY_CHARS)
    tags: List[str] = Field(default_factory=list)
    escalation: bool = False


def sanitize_buddy_reply(raw: Dict[str, Any]) -> BuddyReply:
    """
    Schema check of the model output. Over-long or empty text is a failure,
    not something to trim: the caller falls back to a fixed reply.
    """
    if not isinstance(raw, dict):
        raise LLMError("Buddy reply is not a JSON object")
    try:
        reply = BuddyReply.model_validate(raw)
    except ValidationError as e:
        raise LLMError(f"Invalid buddy reply format: {e.error_count()} error(s)") from e

    reply.tags = [t.strip() for t in reply.tags if isinstance(t, str) and t.strip()][:6]
    return reply
