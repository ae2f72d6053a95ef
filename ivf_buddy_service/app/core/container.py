# app/core/container.py
from typing import Any, Callable, Optional

from app.agent.graph import IntakeWorkflow
from app.core.config import Settings
from app.db.store import Store
from app.services.buddy import BuddyService
from app.services.llm.buddy import ChatJsonFn
from app.services.push import PushService
from app.services.sms import SmsService


class ServiceContainer:
    """Everything a request handler needs, built once per app."""

    def __init__(
        self,
        settings: Settings,
        store: Store,
        sms: SmsService,
        push: PushService,
        buddy: BuddyService,
        intake: IntakeWorkflow,
    ):
        self.settings = settings
        self.store = store
        self.sms = sms
        self.push = push
        self.buddy = buddy
        self.intake = intake

    @classmethod
    def build(
        cls,
        settings: Settings,
        sms_session: Optional[Any] = None,
        push_sender: Optional[Callable[..., Any]] = None,
        chat_json: Optional[ChatJsonFn] = None,
        checkpointer: Optional[Any] = None,
    ) -> "ServiceContainer":
        store = Store.open(settings.db_path)
        return cls(
            settings=settings,
            store=store,
            sms=SmsService(settings, store, session=sms_session),
            push=PushService(settings, store, sender=push_sender),
            buddy=BuddyService(settings, store, chat_json=chat_json),
            intake=IntakeWorkflow(store, settings, checkpointer=checkpointer),
        )

    def close(self) -> None:
        self.store.close()
