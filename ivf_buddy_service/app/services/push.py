# app/services/push.py
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field
from pywebpush import WebPushException, webpush

from app.core.config import Settings
from app.db.store import Store
from app.schemas.models import PushSubscription

logger = logging.getLogger(__name__)

# push service says the endpoint no longer exists
GONE_STATUS_CODES = {404, 410}


class PushSendResult(BaseModel):
    sent: int = 0
    failed: int = 0
    removed: int = 0
    errors: List[str] = Field(default_factory=list)


def _status_code(exc: WebPushException) -> Optional[int]:
    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None)


class PushService:
    """Web push to every subscription a user registered."""

    def __init__(self, settings: Settings, store: Store, sender: Optional[Callable[..., Any]] = None):
        self.settings = settings
        self.store = store
        self.sender = sender or webpush

    def _send_one(self, sub: PushSubscription, data: str) -> None:
        self.sender(
            subscription_info={"endpoint": sub.endpoint, "keys": {"p256dh": sub.p256dh, "auth": sub.auth}},
            data=data,
            vapid_private_key=self.settings.vapid_private_key,
            vapid_claims={"sub": f"mailto:{self.settings.vapid_contact_email}"},
            timeout=self.settings.channel_timeout_s,
        )

    def send_to_user(self, user_id: str, payload: Dict[str, Any]) -> PushSendResult:
        if not self.settings.vapid_configured:
            return PushSendResult(errors=["VAPID not configured"])

        subscriptions = self.store.list_push_subscriptions(user_id)
        result = PushSendResult()
        if not subscriptions:
            return result

        data = json.dumps(payload)
        for sub in subscriptions:
            try:
                self._send_one(sub, data)
                result.sent += 1
            except WebPushException as e:
                if _status_code(e) in GONE_STATUS_CODES:
                    self.store.delete_push_subscription(sub.id)
                    result.removed += 1
                    result.errors.append(f"Subscription {sub.id} expired, removed")
                    logger.info("removed stale push subscription %s for user=%s", sub.id, user_id)
                else:
                    result.failed += 1
                    result.errors.append(f"Subscription {sub.id}: {e}")
                    logger.warning("push to subscription %s failed: %s", sub.id, e)
            except Exception as e:
                result.failed += 1
                result.errors.append(f"Subscription {sub.id}: {e}")
                logger.warning("push to subscription %s failed: %s", sub.id, e)

        return result

    def subscribe(self, user_id: str, endpoint: str, p256dh: str, auth: str) -> PushSubscription:
        return self.store.upsert_push_subscription(user_id, endpoint, p256dh, auth)
