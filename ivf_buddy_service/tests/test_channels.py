"""Tests for the SMS and web push adapters."""

import json

from app.core.config import Settings
from app.services.push import PushService
from app.services.sms import SmsService
from conftest import FakeResponse, FakeTwilioSession, FakeWebPush


class TestSms:
    def test_send_posts_to_twilio(self, sms, user, twilio_session, settings):
        result = sms.send(user.id, "+15551234567", "💊 Reminder: Gonal-F 150 IU")

        assert result.success
        assert result.message_id == "SM0001"
        call = twilio_session.calls[0]
        assert call["url"].endswith("/Accounts/AC_test/Messages.json")
        assert call["auth"] == ("AC_test", "token")
        assert call["timeout"] == settings.channel_timeout_s
        assert call["data"]["From"] == "+15550000000"

    def test_body_truncated_to_max_length(self, sms, user, twilio_session, settings):
        sms.send(user.id, "+15551234567", "x" * 500)
        assert len(twilio_session.calls[0]["data"]["Body"]) == settings.sms_max_length

    def test_every_attempt_is_logged(self, sms, store, user):
        sms.send(user.id, "+15551234567", "hello")
        logs = store.list_message_logs(user.id)

        assert len(logs) == 1
        assert logs[0]["direction"] == "OUTBOUND"
        assert logs[0]["provider_message_id"] == "SM0001"

    def test_provider_error_is_reported_not_raised(self, settings, store, user):
        svc = SmsService(settings, store, session=FakeTwilioSession(status_code=400))
        result = svc.send(user.id, "+15551234567", "hello")

        assert not result.success
        assert "400" in result.error
        assert store.list_message_logs(user.id)[0]["body"] == "[FAILED] hello"

    def test_non_json_success_reply_is_a_logged_failure(self, settings, store, user):
        class HtmlReply(FakeResponse):
            def json(self):
                raise ValueError("Expecting value")

        class HtmlSession(FakeTwilioSession):
            def post(self, url, **kwargs):
                return HtmlReply(201, text="<html>ok</html>")

        result = SmsService(settings, store, session=HtmlSession()).send(user.id, "+15551234567", "hello")

        assert not result.success
        assert "not JSON" in result.error
        assert store.list_message_logs(user.id)[0]["body"] == "[FAILED] hello"

    def test_unconfigured_provider(self, store, user, twilio_session):
        svc = SmsService(Settings(db_path=":memory:"), store, session=twilio_session)
        result = svc.send(user.id, "+15551234567", "hello")

        assert not result.success
        assert twilio_session.calls == []

    def test_inbound_logged(self, sms, store, user):
        sms.log_inbound(user.id, "+15551234567", "3", "SM_in")
        log = store.list_message_logs(user.id)[0]

        assert log["direction"] == "INBOUND"
        assert log["from_number"] == "+15551234567"


class TestPush:
    def test_sends_to_every_subscription(self, push, store, user, webpush_sender):
        push.subscribe(user.id, "https://push.example/1", "k1", "a1")
        push.subscribe(user.id, "https://push.example/2", "k2", "a2")

        result = push.send_to_user(user.id, {"title": "💊", "body": "Gonal-F"})

        assert result.sent == 2
        assert json.loads(webpush_sender.calls[0]["data"])["body"] == "Gonal-F"
        assert webpush_sender.calls[0]["vapid_claims"]["sub"].startswith("mailto:")

    def test_subscribe_upserts_by_endpoint(self, push, store, user):
        push.subscribe(user.id, "https://push.example/1", "k1", "a1")
        push.subscribe(user.id, "https://push.example/1", "k9", "a9")

        subs = store.list_push_subscriptions(user.id)
        assert len(subs) == 1
        assert subs[0].p256dh == "k9"

    def test_gone_subscription_removed(self, settings, store, user):
        sender = FakeWebPush(fail_with={"https://push.example/old": 410, "https://push.example/missing": 404})
        svc = PushService(settings, store, sender=sender)
        svc.subscribe(user.id, "https://push.example/old", "k", "a")
        svc.subscribe(user.id, "https://push.example/missing", "k", "a")
        svc.subscribe(user.id, "https://push.example/ok", "k", "a")

        result = svc.send_to_user(user.id, {"title": "t"})

        assert result.sent == 1
        assert result.removed == 2
        assert result.failed == 0
        assert all("expired, removed" in e for e in result.errors)
        assert [s.endpoint for s in store.list_push_subscriptions(user.id)] == ["https://push.example/ok"]

    def test_other_failures_keep_subscription(self, settings, store, user):
        svc = PushService(settings, store, sender=FakeWebPush(fail_with={"https://push.example/1": 500}))
        svc.subscribe(user.id, "https://push.example/1", "k", "a")

        result = svc.send_to_user(user.id, {"title": "t"})

        assert result.failed == 1
        assert len(store.list_push_subscriptions(user.id)) == 1

    def test_vapid_not_configured(self, store, user, webpush_sender):
        svc = PushService(Settings(db_path=":memory:"), store, sender=webpush_sender)
        svc.subscribe(user.id, "https://push.example/1", "k", "a")

        result = svc.send_to_user(user.id, {"title": "t"})

        assert result.sent == 0
        assert result.errors == ["VAPID not configured"]
        assert webpush_sender.calls == []
