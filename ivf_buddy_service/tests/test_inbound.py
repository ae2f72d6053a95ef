"""Tests for inbound SMS parsing and handling."""

import pytest

from app.services.buddy import OPT_OUT_CONFIRMATION
from app.services.checkins import handle_inbound_sms
from app.services.inbound_parser import parse_inbound_message

PHONE = "+15551234567"


class TestParser:
    @pytest.mark.parametrize("body", ["STOP", "stop please", "Unsubscribe", " quit "])
    def test_opt_out(self, body):
        assert parse_inbound_message(body).is_opt_out

    def test_stop_inside_sentence_is_not_opt_out(self):
        assert not parse_inbound_message("I can't stop crying").is_opt_out

    def test_bare_mood(self):
        parsed = parse_inbound_message("4")
        assert parsed.mood == 4
        assert parsed.note == ""

    def test_out_of_range_bare_number(self):
        assert parse_inbound_message("7").mood is None

    def test_inline_mood_and_symptoms(self):
        parsed = parse_inbound_message("Feeling 2/5 today, pretty bloated and tired")

        assert parsed.mood == 2
        assert parsed.symptoms == ["bloating", "fatigue"]
        assert parsed.note == "Feeling 2/5 today, pretty bloated and tired"

    def test_symptoms_deduplicated(self):
        assert parse_inbound_message("cramps, cramping").symptoms == ["cramps"]


class TestHandleInbound:
    @pytest.fixture
    def sms_user(self, make_user, make_cycle):
        u = make_user(phone=PHONE, sms_consent=True)
        return u, make_cycle(u)

    def test_stop_clears_consent_and_confirms(self, store, sms, buddy, sms_user, twilio_session):
        u, _ = sms_user
        result = handle_inbound_sms(store, sms, buddy, PHONE, "STOP")

        assert result.opted_out
        assert store.get_user(u.id).sms_consent is False
        assert twilio_session.calls[-1]["data"]["Body"] == OPT_OUT_CONFIRMATION

    def test_mood_creates_check_in_and_replies(self, store, sms, buddy, sms_user, twilio_session, now):
        u, c = sms_user
        result = handle_inbound_sms(store, sms, buddy, PHONE, "3", provider_message_id="SM_in", now=now)

        check_ins = store.recent_check_ins(c.id)
        assert check_ins[0].mood == 3
        assert check_ins[0].source == "SMS"
        assert result.check_in_id == check_ins[0].id
        assert twilio_session.calls[-1]["data"]["Body"] == result.reply_text
        directions = [log["direction"] for log in store.list_message_logs(u.id)]
        assert directions == ["INBOUND", "OUTBOUND"]

    def test_severe_message_escalates(self, store, sms, buddy, sms_user, chat_json, now):
        result = handle_inbound_sms(store, sms, buddy, PHONE, "heavy bleeding and dizzy", now=now)

        assert result.escalation
        assert "dizziness" in result.symptoms
        assert chat_json.calls == []

    def test_unknown_number_ignored(self, store, sms, buddy, twilio_session):
        result = handle_inbound_sms(store, sms, buddy, "+19999999999", "hi")

        assert result.user_id is None
        assert twilio_session.calls == []

    def test_user_without_cycle(self, store, sms, buddy, make_user, twilio_session):
        make_user(phone="+15557654321", sms_consent=True)
        result = handle_inbound_sms(store, sms, buddy, "+15557654321", "hi")

        assert "complete your profile" in result.reply_text
