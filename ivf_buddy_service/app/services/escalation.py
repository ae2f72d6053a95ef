# app/services/escalation.py
from typing import List

SEVERE_KEYWORDS: List[str] = [
    "severe pain",
    "can't breathe",
    "cannot breathe",
    "difficulty breathing",
    "heavy bleeding",
    "soaking through",
    "passing clots",
    "fainting",
    "fainted",
    "passed out",
    "chest pain",
    "heart racing",
    "suicidal",
    "want to die",
    "end my life",
    "kill myself",
    "panic attack",
    "can't stop crying",
    "emergency",
    "hospital",
    "911",
    "ambulance",
    "collapsed",
    "unconscious",
    "high fever",
    "vomiting blood",
    "severe headache",
    "vision problems",
    "blurred vision",
    "sudden swelling",
    "can't urinate",
    "blood in urine",
]

ESCALATION_RESPONSE = (
    "I'm concerned about what you're describing. Please contact your clinic or urgent care "
    "right away. If it's an emergency, call 911. Your health and safety come first 💛"
)

ESCALATION_TAGS = ["escalation", "urgent"]


def _normalize(text: str) -> str:
    # curly apostrophes from phone keyboards
    return (text or "").lower().replace("’", "'")


def contains_severe_keyword(text: str) -> bool:
    t = _normalize(text)
    return any(k in t for k in SEVERE_KEYWORDS)
