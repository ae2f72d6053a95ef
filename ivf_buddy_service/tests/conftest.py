"""
IVF Buddy - Test Configuration
==============================

Shared pytest fixtures. Everything runs against in-memory SQLite with the
SMS, push and reply-model providers replaced by recording fakes.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from pywebpush import WebPushException

from app.core.config import Settings
from app.db.store import Store, new_id
from app.schemas.extraction import ProtocolExtraction
from app.schemas.models import Cycle, QuietHours, User
from app.services.buddy import BuddyService
from app.services.protocol_intake import activate_protocol, save_protocol_draft
from app.services.push import PushService
from app.services.sms import SmsService

TZ = "America/Los_Angeles"

# Monday 2026-01-12 06:00 PST
NOW = datetime(2026, 1, 12, 14, 0, tzinfo=timezone.utc)


# =============================================================================
# Provider fakes
# =============================================================================

class FakeResponse:
    def __init__(self, status_code: int = 201, payload: Optional[Dict[str, Any]] = None, text: str = ""):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text

    def json(self):
        return self._payload


class FakeTwilioSession:
    """Stands in for requests.Session; records every POST."""

    def __init__(self, status_code: int = 201):
        self.status_code = status_code
        self.calls: List[Dict[str, Any]] = []

    def post(self, url, data=None, auth=None, timeout=None, **kwargs):
        self.calls.append({"url": url, "data": data, "auth": auth, "timeout": timeout})
        if self.status_code >= 400:
            return FakeResponse(self.status_code, text="provider rejected")
        return FakeResponse(self.status_code, {"sid": f"SM{len(self.calls):04d}"})


class FakeWebPush:
    """Stands in for pywebpush.webpush; endpoints in `fail_with` raise with that status."""

    def __init__(self, fail_with: Optional[Dict[str, int]] = None):
        self.fail_with = fail_with or {}
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, subscription_info, data, vapid_private_key, vapid_claims, timeout):
        self.calls.append({
            "endpoint": subscription_info["endpoint"],
            "data": data,
            "vapid_claims": vapid_claims,
            "timeout": timeout,
        })
        status = self.fail_with.get(subscription_info["endpoint"])
        if status is not None:
            raise WebPushException(f"Push failed: {status}", response=FakeResponse(status))


class FakeChatJson:
    """Reply model returning a canned reply, or raising when given an exception."""

    def __init__(self, reply: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.reply = reply if reply is not None else {
            "messageText": "That sounds like a lot today 💛 How is your energy?",
            "tags": ["supportive"],
            "escalation": False,
        }
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, system: str, user: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append({"system": system, "user": user, "schema": schema})
        if self.error is not None:
            raise self.error
        return self.reply


# =============================================================================
# Core fixtures
# =============================================================================

@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings():
    return Settings(
        db_path=":memory:",
        checkpoint_db_path=":memory:",
        twilio_account_sid="AC_test",
        twilio_auth_token="token",
        twilio_phone_number="+15550000000",
        vapid_public_key="pub",
        vapid_private_key="priv",
    )


@pytest.fixture
def store():
    s = Store.open(":memory:")
    yield s
    s.close()


@pytest.fixture
def twilio_session():
    return FakeTwilioSession()


@pytest.fixture
def webpush_sender():
    return FakeWebPush()


@pytest.fixture
def chat_json():
    return FakeChatJson()


@pytest.fixture
def sms(settings, store, twilio_session):
    return SmsService(settings, store, session=twilio_session)


@pytest.fixture
def push(settings, store, webpush_sender):
    return PushService(settings, store, sender=webpush_sender)


@pytest.fixture
def buddy(settings, store, chat_json):
    return BuddyService(settings, store, chat_json=chat_json)


# =============================================================================
# Data builders
# =============================================================================

@pytest.fixture
def make_user(store):
    def _make(
        phone: Optional[str] = None,
        sms_consent: bool = False,
        quiet_hours: Optional[Dict[str, str]] = None,
        tz: str = TZ,
    ) -> User:
        return store.upsert_user(User(
            id=new_id("usr"),
            timezone=tz,
            quiet_hours=QuietHours(**quiet_hours) if quiet_hours else None,
            phone_e164=phone,
            sms_consent=sms_consent,
        ))
    return _make


@pytest.fixture
def make_cycle(store):
    def _make(user: User) -> Cycle:
        return store.create_cycle(Cycle(id=new_id("cyc"), user_id=user.id))
    return _make


@pytest.fixture
def user(make_user):
    return make_user(quiet_hours={"start": "21:00", "end": "08:00"})


@pytest.fixture
def cycle(make_cycle, user):
    return make_cycle(user)


@pytest.fixture
def gonal_f_extraction():
    """Stims starting today (cycle day 0), evening injection plus a bedtime pill."""
    return ProtocolExtraction.model_validate({
        "cycleStartDate": "2026-01-12",
        "medications": [
            {
                "name": "Gonal-F",
                "dosageAmount": 150,
                "dosageUnit": "IU",
                "route": "subcutaneous",
                "startDayOffset": 0,
                "durationDays": 10,
                "timeOfDay": "evening",
            },
            {
                "name": "Estrace",
                "dosageAmount": 2,
                "dosageUnit": "mg",
                "route": "oral",
                "startDayOffset": 0,
                "durationDays": 3,
                "timeOfDay": "bedtime",
            },
        ],
        "appointments": [
            {"type": "MONITORING", "dayOffset": 4, "exactTime": "07:30", "fasting": True},
            {"type": "RETRIEVAL", "dayOffset": 12, "exactTime": "06:45", "critical": True},
        ],
        "milestones": [{"type": "STIM_START", "dayOffset": 0}],
        "confidence": {"cycleStartDate": "high", "medications": "high", "appointments": "medium"},
    })


@pytest.fixture
def active_protocol(store, cycle, gonal_f_extraction, now):
    draft = save_protocol_draft(store, cycle.id, "INTAKE", gonal_f_extraction, now=now)
    return activate_protocol(store, draft.id)


@pytest.fixture
def cycle_start():
    return date(2026, 1, 12)
