from typing import Any, Dict, Optional

from huggingface_hub import InferenceClient

from app.core.config import Settings
from app.core.errors import LLMError
from app.services.ollama_client import safe_json_parse


class HFLLMError(LLMError):
    pass


def hf_chat_json(
    settings: Settings,
    system: str,
    user: str,
    schema: Optional[Dict[str, Any]] = None,
    model: Optional[str] = None,
) -> Dict[str, Any]:
    if not settings.hf_token:
        raise HFLLMError("HF_TOKEN is missing. Set it in config.env and restart.")

    client = InferenceClient(
        provider=settings.hf_provider,
        api_key=settings.hf_token,
        timeout=float(settings.hf_timeout_s),
    )

    messages = [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]

    if schema:
        response_format = {
            "type": "json_schema",
            "json_schema": {
                "name": "BuddyReply",
                "schema": schema,
                "strict": True,
            },
        }
    else:
        response_format = {"type": "json_object"}

    try:
        out = client.chat_completion(
            model=model or settings.hf_model_chat,
            messages=messages,
            temperature=settings.hf_temperature,
            max_tokens=settings.hf_max_tokens,
            response_format=response_format,
        )
    except Exception as e:
        raise HFLLMError(f"HF inference failed: {e}") from e

    content = out.choices[0].message.content or ""
    return safe_json_parse(content)
