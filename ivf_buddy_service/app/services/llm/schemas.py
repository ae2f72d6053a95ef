# app/services/llm/schemas.py

BUDDY_REPLY_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "messageText": {
            "type": "string",
            "maxLength": 320,
            "description": "The response message, max 320 characters",
        },
        "tags": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Relevant tags for the response",
        },
        "escalation": {
            "type": "boolean",
            "description": "Whether this requires escalation to clinic",
        },
    },
    "required": ["messageText", "tags", "escalation"],
}
