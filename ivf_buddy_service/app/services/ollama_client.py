import json
from typing import Any, Dict, Optional

import requests

from app.core.config import Settings
from app.core.errors import LLMError


class OllamaError(LLMError):
    pass


def safe_json_parse(text: str) -> Dict[str, Any]:
    """Parse JSON even if model returns extra text."""
    text = (text or "").strip()
    try:
        return json.loads(text)
    except ValueError:
        pass

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            return json.loads(text[start : end + 1])
        except ValueError:
            pass

    raise LLMError(f"Invalid JSON from LLM: {text[:200]}...")


def ollama_chat_json(
    settings: Settings,
    system: str,
    user: str,
    schema: Optional[Dict[str, Any]] = None,
    model: Optional[str] = None,
    session: Optional[Any] = None,
) -> Dict[str, Any]:
    """
    Calls Ollama /api/chat and returns JSON from assistant message content.
    We enforce JSON output with `format` when possible.
    """
    url = f"{settings.ollama_base_url}/chat"
    payload: Dict[str, Any] = {
        "model": model or settings.ollama_model_chat,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        "stream": False,
        "options": {"temperature": settings.ollama_temperature},
    }
    if schema is not None:
        payload["format"] = schema

    http = session or requests
    try:
        r = http.post(url, json=payload, timeout=settings.ollama_timeout_s)
    except requests.RequestException as e:
        raise OllamaError(f"Ollama request failed: {e}") from e
    if r.status_code >= 400:
        raise OllamaError(f"Ollama {r.status_code}: {r.text}")

    data = r.json()
    content = (data.get("message") or {}).get("content", "")
    return safe_json_parse(content)
