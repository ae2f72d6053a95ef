# app/api/routes_chat.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Form
from fastapi.responses import Response
from pydantic import Field

from app.api.deps import get_container
from app.core.container import ServiceContainer
from app.schemas.models import CamelModel, CheckIn, CheckInSource, PushSubscription
from app.services.chat import SendMessageResult, send_user_message
from app.services.checkins import create_check_in, handle_inbound_sms

router = APIRouter(tags=["chat"])

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


class ChatSendRequest(CamelModel):
    user_id: str
    cycle_id: str
    content: str


class CheckInRequest(CamelModel):
    user_id: str
    cycle_id: str
    mood: Optional[int] = Field(default=None, ge=1, le=5)
    symptoms: List[str] = Field(default_factory=list)
    note: Optional[str] = None
    source: CheckInSource = "APP"


class PushKeys(CamelModel):
    p256dh: str
    auth: str


class PushSubscribeRequest(CamelModel):
    user_id: str
    endpoint: str
    keys: PushKeys


@router.post("/chat/send")
def chat_send(req: ChatSendRequest, container: ServiceContainer = Depends(get_container)):
    result: SendMessageResult = send_user_message(
        container.store, container.settings, container.buddy, req.user_id, req.cycle_id, req.content
    )
    return {
        "userMessage": result.user_message.model_dump(mode="json", by_alias=True) if result.user_message else None,
        "buddyReply": result.buddy_reply.model_dump(mode="json", by_alias=True),
        "limitReached": result.limit_reached,
    }


@router.post("/checkin", response_model=CheckIn)
def checkin_create(req: CheckInRequest, container: ServiceContainer = Depends(get_container)):
    return create_check_in(
        container.store,
        req.user_id,
        req.cycle_id,
        mood=req.mood,
        symptoms=req.symptoms,
        note=req.note,
        source=req.source,
    )


@router.post("/sms/inbound")
def sms_inbound(
    From: str = Form(...),
    Body: str = Form(""),
    MessageSid: Optional[str] = Form(None),
    container: ServiceContainer = Depends(get_container),
):
    handle_inbound_sms(container.store, container.sms, container.buddy, From, Body, provider_message_id=MessageSid)
    return Response(content=EMPTY_TWIML, media_type="text/xml")


@router.post("/push/subscribe", response_model=PushSubscription)
def push_subscribe(req: PushSubscribeRequest, container: ServiceContainer = Depends(get_container)):
    return container.push.subscribe(req.user_id, req.endpoint, req.keys.p256dh, req.keys.auth)
