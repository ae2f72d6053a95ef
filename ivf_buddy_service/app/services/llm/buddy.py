# app/services/llm/buddy.py
from typing import Any, Callable, Dict

from app.core.config import Settings
from app.core.errors import LLMError
from app.services.hf_client import hf_chat_json
from app.services.llm.prompts import BUDDY_SYSTEM_PROMPT
from app.services.llm.sanitize import BuddyReply, sanitize_buddy_reply
from app.services.llm.schemas import BUDDY_REPLY_SCHEMA
from app.services.ollama_client import ollama_chat_json

# (system, user, schema) -> parsed JSON
ChatJsonFn = Callable[[str, str, Dict[str, Any]], Dict[str, Any]]


def provider_chat_json(settings: Settings) -> ChatJsonFn:
    """Bind the configured provider's JSON chat call to the settings."""
    if settings.llm_provider == "hf":
        return lambda system, user, schema: hf_chat_json(settings, system, user, schema=schema)
    if settings.llm_provider == "ollama":
        return lambda system, user, schema: ollama_chat_json(settings, system, user, schema=schema)
    raise LLMError(f"Unknown LLM_PROVIDER: {settings.llm_provider}")


def llm_buddy_reply(chat_json: ChatJsonFn, context_prompt: str) -> BuddyReply:
    raw = chat_json(BUDDY_SYSTEM_PROMPT, context_prompt, BUDDY_REPLY_SCHEMA)

    # schema check; no repair
    return sanitize_buddy_reply(raw)
