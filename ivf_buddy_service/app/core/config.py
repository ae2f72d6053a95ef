import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from app.core.env import load_env

BASE_DIR = Path(__file__).resolve().parents[2]  # ivf_buddy_service/
DB_DIR = BASE_DIR / "app" / "db"

DEFAULT_REMINDER_TIMES: Dict[str, str] = {
    "morning": "09:00",
    "afternoon": "13:00",
    "evening": "20:30",
    "bedtime": "22:00",
}

DISCLAIMER_GENERAL = (
    "IVF Buddy is for informational support only and is not medical advice. "
    "Always follow your clinic's instructions."
)


class QuietHoursDefault(BaseModel):
    start: str = "21:00"
    end: str = "08:00"


class Settings(BaseModel):
    """Process-wide configuration, built once and handed to each component."""

    app_name: str = "IVF Buddy"
    log_level: str = "INFO"

    db_path: str = str(DB_DIR / "ivf_buddy.db")
    checkpoint_db_path: str = str(DB_DIR / "checkpoints.db")

    # planning
    default_timezone: str = "America/Los_Angeles"
    reminder_times: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_REMINDER_TIMES))
    checkin_time: str = "19:00"
    default_quiet_hours: QuietHoursDefault = Field(default_factory=QuietHoursDefault)
    plan_days_ahead: int = Field(default=14, ge=1, le=60)

    # delivery
    tick_batch_limit: int = Field(default=50, ge=1)
    deliverable_kinds: Tuple[str, ...] = ("REMINDER", "CHECKIN", "APPOINTMENT", "CRITICAL")
    channel_timeout_s: float = 10.0
    cron_secret: Optional[str] = None
    app_base_url: str = "http://localhost:8000"

    # sms (Twilio REST)
    sms_max_length: int = 320
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    twilio_api_base: str = "https://api.twilio.com/2010-04-01"

    # web push
    vapid_public_key: Optional[str] = None
    vapid_private_key: Optional[str] = None
    vapid_contact_email: str = "support@ivfbuddy.app"

    # conversation
    conversation_summary_max_length: int = 1200
    max_daily_messages: int = 30

    # reply model
    llm_provider: str = "ollama"  # "ollama" | "hf"
    ollama_base_url: str = "http://localhost:11434/api"
    ollama_model_chat: str = "llama3.2"
    ollama_temperature: float = 0.4
    ollama_timeout_s: int = 30
    hf_token: Optional[str] = None
    hf_provider: str = "auto"
    hf_model_chat: str = "meta-llama/Llama-3.1-8B-Instruct"
    hf_temperature: float = 0.4
    hf_max_tokens: int = 300
    hf_timeout_s: int = 30

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)

    @property
    def vapid_configured(self) -> bool:
        return bool(self.vapid_public_key and self.vapid_private_key)


def _csv(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [v.strip().upper() for v in value.split(",") if v.strip()]


def load_settings() -> Settings:
    """Read config.env + process environment into a Settings instance."""
    load_env()
    env = os.getenv
    defaults = Settings()

    kinds = _csv(env("DELIVERABLE_TASK_KINDS"))

    return Settings(
        log_level=env("LOG_LEVEL", defaults.log_level),
        db_path=env("DB_PATH") or defaults.db_path,
        checkpoint_db_path=env("CHECKPOINT_DB_PATH") or defaults.checkpoint_db_path,
        default_timezone=env("DEFAULT_TIMEZONE", defaults.default_timezone),
        checkin_time=env("CHECKIN_TIME", defaults.checkin_time),
        plan_days_ahead=int(env("PLAN_DAYS_AHEAD", str(defaults.plan_days_ahead))),
        tick_batch_limit=int(env("TICK_BATCH_LIMIT", str(defaults.tick_batch_limit))),
        deliverable_kinds=tuple(kinds) if kinds else defaults.deliverable_kinds,
        channel_timeout_s=float(env("CHANNEL_TIMEOUT_S", str(defaults.channel_timeout_s))),
        cron_secret=env("CRON_SECRET") or None,
        app_base_url=env("APP_BASE_URL", defaults.app_base_url),
        sms_max_length=int(env("SMS_MAX_LENGTH", str(defaults.sms_max_length))),
        twilio_account_sid=env("TWILIO_ACCOUNT_SID") or None,
        twilio_auth_token=env("TWILIO_AUTH_TOKEN") or None,
        twilio_phone_number=env("TWILIO_PHONE_NUMBER") or None,
        vapid_public_key=env("VAPID_PUBLIC_KEY") or None,
        vapid_private_key=env("VAPID_PRIVATE_KEY") or None,
        vapid_contact_email=env("VAPID_CONTACT_EMAIL", defaults.vapid_contact_email),
        max_daily_messages=int(env("MAX_DAILY_MESSAGES", str(defaults.max_daily_messages))),
        llm_provider=env("LLM_PROVIDER", defaults.llm_provider).strip().lower(),
        ollama_base_url=env("OLLAMA_BASE_URL", defaults.ollama_base_url),
        ollama_model_chat=env("OLLAMA_MODEL_CHAT", defaults.ollama_model_chat),
        ollama_temperature=float(env("OLLAMA_TEMPERATURE", str(defaults.ollama_temperature))),
        ollama_timeout_s=int(env("OLLAMA_TIMEOUT_S", str(defaults.ollama_timeout_s))),
        hf_token=(env("HF_TOKEN", "") or "").strip() or None,
        hf_provider=(env("HF_PROVIDER", defaults.hf_provider) or "auto").strip() or "auto",
        hf_model_chat=env("HF_MODEL_CHAT", defaults.hf_model_chat),
        hf_temperature=float(env("HF_TEMPERATURE", str(defaults.hf_temperature))),
        hf_max_tokens=int(env("HF_MAX_TOKENS", str(defaults.hf_max_tokens))),
        hf_timeout_s=int(env("HF_TIMEOUT_S", str(defaults.hf_timeout_s))),
    )
