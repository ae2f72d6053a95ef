"""HTTP surface tests using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from app.core.container import ServiceContainer
from app.main import create_app
from conftest import FakeChatJson, FakeTwilioSession, FakeWebPush


@pytest.fixture
def container(settings):
    c = ServiceContainer.build(
        settings,
        sms_session=FakeTwilioSession(),
        push_sender=FakeWebPush(),
        chat_json=FakeChatJson(),
    )
    yield c
    c.close()


@pytest.fixture
def client(settings, container):
    return TestClient(create_app(settings, container=container))


@pytest.fixture
def cycle_id(client):
    user = client.post("/users", json={
        "timezone": "America/Los_Angeles",
        "quietHours": {"start": "21:00", "end": "08:00"},
        "phoneE164": "+15551234567",
        "smsConsent": True,
    }).json()
    return client.post("/cycles", json={"userId": user["id"]}).json()["id"]


EXTRACTION = {
    "medications": [
        {"name": "Gonal-F", "dosageAmount": 225, "dosageUnit": "IU", "startDayOffset": 0, "durationDays": 10, "timeOfDay": "evening"},
    ],
}


class TestBasics:
    def test_health(self, client):
        assert client.get("/health").json() == {"ok": True}

    def test_bad_timezone(self, client):
        assert client.post("/users", json={"timezone": "Nowhere/Land"}).status_code == 422

    def test_extraction_schema(self, client):
        schema = client.get("/protocol/schema").json()
        assert "medications" in schema["properties"]


class TestJobs:
    def test_tick_shape(self, client):
        body = client.post("/jobs/tick").json()
        assert set(body) == {"processed", "smsSent", "pushSent", "chatCreated", "failed", "errors"}

    def test_tick_requires_secret_when_configured(self, client, settings):
        settings.cron_secret = "s3cret"

        assert client.post("/jobs/tick").status_code == 401
        assert client.post("/jobs/tick", headers={"Authorization": "Bearer s3cret"}).status_code == 200

    def test_plan_generate_unknown_protocol(self, client, cycle_id):
        resp = client.post("/plan/generate", json={"cycleId": cycle_id, "protocolPlanId": "proto_missing"})
        assert resp.status_code == 404

    def test_plan_generate_rejects_unknown_timezone(self, client, cycle_id):
        status = client.post("/protocol/intake", json={"cycleId": cycle_id, "extraction": EXTRACTION}).json()
        resp = client.post("/plan/generate", json={
            "cycleId": cycle_id,
            "protocolPlanId": status["protocolPlanId"],
            "userTimezone": "Nowhere/Land",
        })

        assert resp.status_code == 422
        assert "Nowhere/Land" in resp.text


class TestIntakeFlow:
    def test_intake_approve_and_today(self, client, cycle_id):
        status = client.post("/protocol/intake", json={"cycleId": cycle_id, "extraction": EXTRACTION}).json()
        assert status["nextStep"] == "NEED_APPROVAL"

        done = client.post("/protocol/approve", json={"intakeId": status["intakeId"], "approved": True}).json()
        assert done["nextStep"] == "DONE"
        assert done["planResult"]["tasksCreated"] > 0

        regen = client.post("/plan/generate", json={
            "cycleId": cycle_id,
            "protocolPlanId": status["protocolPlanId"],
            "userTimezone": "America/Los_Angeles",
            "quietHours": {"start": "21:00", "end": "08:00"},
        }).json()
        assert set(regen) == {"planDaysCreated", "tasksCreated"}

        audit = client.get("/protocol/audit", params={"intake_id": status["intakeId"]}).json()
        assert audit["audit"][-1]["event"] == "activate.done"

        today = client.get("/tasks/today", params={"cycle_id": cycle_id})
        assert today.status_code == 200
        assert all("dueAt" in t for t in today.json())

    def test_approve_out_of_order(self, client, cycle_id):
        status = client.post("/protocol/intake", json={"cycleId": cycle_id, "extraction": {"medications": []}}).json()
        assert status["nextStep"] == "NEED_INFO"

        resp = client.post("/protocol/approve", json={"intakeId": status["intakeId"]})
        assert resp.status_code == 409

    def test_intake_unknown_cycle(self, client):
        resp = client.post("/protocol/intake", json={"cycleId": "cyc_missing", "extraction": EXTRACTION})
        assert resp.status_code == 404


class TestTasks:
    def test_mark_done(self, client, cycle_id):
        status = client.post("/protocol/intake", json={"cycleId": cycle_id, "extraction": EXTRACTION}).json()
        client.post("/protocol/approve", json={"intakeId": status["intakeId"]})

        task = client.get("/tasks/upcoming", params={"cycle_id": cycle_id, "limit": 1}).json()[0]
        done = client.post(f"/tasks/{task['id']}/done").json()

        assert done["status"] == "DONE"

    def test_mark_done_unknown(self, client):
        assert client.post("/tasks/task_missing/done").status_code == 404


class TestConversation:
    def test_chat_send(self, client, cycle_id):
        user_id = client.app.state.container.store.get_cycle(cycle_id).user_id

        body = client.post("/chat/send", json={"userId": user_id, "cycleId": cycle_id, "content": "hi"}).json()

        assert body["limitReached"] is False
        assert body["buddyReply"]["sender"] == "BUDDY"

    def test_sms_inbound_returns_twiml(self, client, cycle_id):
        resp = client.post("/sms/inbound", data={"From": "+15551234567", "Body": "4", "MessageSid": "SM1"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/xml")
        check_ins = client.app.state.container.store.recent_check_ins(cycle_id)
        assert check_ins[0].mood == 4

    def test_push_subscribe(self, client, cycle_id):
        user_id = client.app.state.container.store.get_cycle(cycle_id).user_id
        sub = client.post("/push/subscribe", json={
            "userId": user_id,
            "endpoint": "https://push.example/1",
            "keys": {"p256dh": "k", "auth": "a"},
        }).json()

        assert sub["endpoint"] == "https://push.example/1"
        assert sub["userId"] == user_id
