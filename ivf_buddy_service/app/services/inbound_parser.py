# app/services/inbound_parser.py
import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

STOP_KEYWORDS = ["stop", "unsubscribe", "cancel", "quit", "end"]

# phrase found in the message -> canonical symptom
SYMPTOM_KEYWORDS: Dict[str, str] = {
    "bloated": "bloating",
    "bloating": "bloating",
    "cramp": "cramps",
    "cramps": "cramps",
    "cramping": "cramps",
    "anxious": "anxiety",
    "anxiety": "anxiety",
    "worried": "anxiety",
    "sad": "sadness",
    "down": "sadness",
    "low": "sadness",
    "nausea": "nausea",
    "nauseous": "nausea",
    "sick": "nausea",
    "tired": "fatigue",
    "exhausted": "fatigue",
    "fatigue": "fatigue",
    "headache": "headache",
    "head ache": "headache",
    "dizzy": "dizziness",
    "dizziness": "dizziness",
    "moody": "mood swings",
    "mood swings": "mood swings",
    "emotional": "mood swings",
    "sore": "soreness",
    "tender": "soreness",
    "pain": "pain",
    "uncomfortable": "discomfort",
    "discomfort": "discomfort",
    "hot": "hot flashes",
    "hot flash": "hot flashes",
    "hot flashes": "hot flashes",
    "insomnia": "insomnia",
    "can't sleep": "insomnia",
    "sleep issues": "insomnia",
}

_BARE_MOOD_RE = re.compile(r"^(\d)\s*$")
_INLINE_MOOD_RE = re.compile(r"\b([1-5])\s*(?:out of 5|/5)?\b")


class ParsedInbound(BaseModel):
    mood: Optional[int] = None
    symptoms: List[str] = Field(default_factory=list)
    note: str = ""
    is_opt_out: bool = False


def _is_opt_out(text: str) -> bool:
    return any(text == kw or text.startswith(f"{kw} ") for kw in STOP_KEYWORDS)


def parse_inbound_message(body: str) -> ParsedInbound:
    text = (body or "").lower().strip().replace("’", "'")

    if _is_opt_out(text):
        return ParsedInbound(note=body, is_opt_out=True)

    mood: Optional[int] = None
    bare = _BARE_MOOD_RE.match(text)
    if bare and 1 <= int(bare.group(1)) <= 5:
        mood = int(bare.group(1))
    if mood is None:
        inline = _INLINE_MOOD_RE.search(text)
        if inline:
            mood = int(inline.group(1))

    symptoms: List[str] = []
    for keyword, symptom in SYMPTOM_KEYWORDS.items():
        if keyword in text and symptom not in symptoms:
            symptoms.append(symptom)

    # a bare score carries no note
    note = "" if (mood is not None and bare) else (body or "").strip()
    return ParsedInbound(mood=mood, symptoms=symptoms, note=note)
