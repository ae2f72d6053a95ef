"""Tests for reply generation, conversation state and the chat turn."""

from datetime import timedelta

import pytest

from app.core.errors import CycleNotFoundError, LLMError
from app.services.buddy import BuddyService, fallback_reply, update_conversation_state
from app.services.chat import send_user_message
from app.services.checkins import create_check_in
from app.services.escalation import ESCALATION_RESPONSE, contains_severe_keyword
from app.services.planning import regenerate_for_cycle
from conftest import FakeChatJson

TZ = "America/Los_Angeles"


class TestEscalation:
    @pytest.mark.parametrize("text", ["I have severe pain", "I CAN’T BREATHE", "heavy bleeding since noon"])
    def test_detects(self, text):
        assert contains_severe_keyword(text)

    def test_ordinary_message(self):
        assert not contains_severe_keyword("bit bloated but ok")

    def test_short_circuits_model(self, store, settings, user, cycle, now):
        model = FakeChatJson()
        svc = BuddyService(settings, store, chat_json=model)

        reply = svc.generate_reply(user.id, cycle.id, "I'm in severe pain", TZ, now=now)

        assert reply.escalation is True
        assert reply.message_text == ESCALATION_RESPONSE
        assert model.calls == []


class TestFallback:
    @pytest.mark.parametrize("mood,tag", [(1, "low-mood"), (2, "low-mood"), (3, "neutral"), (4, "positive"), (5, "positive"), (None, "general")])
    def test_mood_buckets(self, mood, tag):
        assert tag in fallback_reply(mood).tags

    def test_model_error_falls_back(self, store, settings, user, cycle, now):
        svc = BuddyService(settings, store, chat_json=FakeChatJson(error=LLMError("timeout")))
        reply = svc.generate_reply(user.id, cycle.id, "feeling meh", TZ, mood=3, now=now)

        assert reply.tags == ["neutral", "encouraging"]
        assert store.get_conversation_state(cycle.id) is None

    def test_over_long_reply_falls_back(self, store, settings, user, cycle, now):
        model = FakeChatJson(reply={"messageText": "x" * 400, "tags": [], "escalation": False})
        reply = BuddyService(settings, store, chat_json=model).generate_reply(user.id, cycle.id, "hi", TZ, now=now)

        assert reply == fallback_reply(None)

    def test_unexpected_error_falls_back(self, store, settings, user, cycle, now):
        svc = BuddyService(settings, store, chat_json=FakeChatJson(error=KeyError("message")))
        assert svc.generate_reply(user.id, cycle.id, "hi", TZ, mood=1, now=now).tags[0] == "low-mood"


class TestContext:
    def test_context_carries_cycle_facts(self, store, settings, user, cycle, active_protocol, now, chat_json, buddy):
        regenerate_for_cycle(store, settings, cycle.id, now=now)
        create_check_in(store, user.id, cycle.id, mood=2, symptoms=["bloating"], now=now - timedelta(hours=1))

        reply = buddy.generate_reply(user.id, cycle.id, "how am I doing?", TZ, now=now)
        prompt = chat_json.calls[0]["user"]

        assert reply.tags == ["supportive"]
        assert "Cycle day: 0" in prompt
        assert "Gonal-F 150 IU" in prompt
        assert "Recent mood trend: 2" in prompt
        assert "bloating" in prompt
        assert "No previous conversation" in prompt

    def test_success_updates_summary(self, store, buddy, user, cycle, now):
        buddy.generate_reply(user.id, cycle.id, "first message", TZ, now=now)
        state = store.get_conversation_state(cycle.id)

        assert state.summary.startswith("User: first message... | Buddy: ")


class TestConversationState:
    def test_oldest_lines_dropped(self, store, settings, user, cycle):
        settings.conversation_summary_max_length = 300
        for i in range(10):
            update_conversation_state(store, settings, user.id, cycle.id, f"message {i}", "reply " * 20)

        summary = store.get_conversation_state(cycle.id).summary
        assert len(summary) <= 300
        assert "message 9" in summary
        assert "message 0" not in summary

    def test_single_long_line_kept(self, store, settings, user, cycle):
        settings.conversation_summary_max_length = 50
        state = update_conversation_state(store, settings, user.id, cycle.id, "y" * 100, "z" * 100)
        assert state.summary.count("\n") == 0


class TestChatTurn:
    def test_records_both_messages(self, store, settings, buddy, user, cycle, now):
        result = send_user_message(store, settings, buddy, user.id, cycle.id, "hi buddy", now=now)

        assert not result.limit_reached
        assert result.user_message.sender == "USER"
        assert result.buddy_reply.sender == "BUDDY"
        assert result.buddy_reply.meta == {"tags": ["supportive"], "escalate": False}
        assert store.get_user(user.id).daily_msg_count == 1

    def test_over_quota_gets_system_notice(self, store, settings, buddy, user, cycle, now, chat_json):
        settings.max_daily_messages = 1
        send_user_message(store, settings, buddy, user.id, cycle.id, "one", now=now)
        result = send_user_message(store, settings, buddy, user.id, cycle.id, "two", now=now)

        assert result.limit_reached
        assert result.user_message is None
        assert result.buddy_reply.sender == "SYSTEM"
        assert result.buddy_reply.type == "INFO"
        assert "daily message limit (1)" in result.buddy_reply.content
        assert len(chat_json.calls) == 1

    def test_provider_outage_still_answers(self, store, settings, user, cycle, now):
        svc = BuddyService(settings, store, chat_json=FakeChatJson(error=LLMError("down")))
        result = send_user_message(store, settings, svc, user.id, cycle.id, "hello", now=now)

        assert result.buddy_reply.content == fallback_reply(None).message_text

    def test_cycle_of_other_user_rejected(self, store, settings, buddy, make_user, make_cycle, user, now):
        other = make_cycle(make_user())
        with pytest.raises(CycleNotFoundError):
            send_user_message(store, settings, buddy, user.id, other.id, "hi", now=now)
