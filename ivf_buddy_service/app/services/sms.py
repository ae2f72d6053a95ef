# app/services/sms.py
import logging
from typing import Any, Optional

import requests
from pydantic import BaseModel

from app.core.config import Settings
from app.core.errors import SmsProviderError
from app.db.store import Store

logger = logging.getLogger(__name__)


class SmsSendResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class SmsService:
    """
    Outbound SMS through the Twilio Messages REST API.

    Every attempt is appended to message_logs, failed ones with a ``[FAILED]``
    body prefix. The provider call is the only thing that can fail here; it is
    reported in the result instead of raised.
    """

    def __init__(self, settings: Settings, store: Store, session: Optional[Any] = None):
        self.settings = settings
        self.store = store
        self.session = session or requests.Session()

    @property
    def from_number(self) -> Optional[str]:
        return self.settings.twilio_phone_number

    def _post_message(self, to_number: str, body: str) -> str:
        s = self.settings
        if not s.twilio_configured:
            raise SmsProviderError("Twilio credentials not configured")

        url = f"{s.twilio_api_base}/Accounts/{s.twilio_account_sid}/Messages.json"
        try:
            r = self.session.post(
                url,
                data={"To": to_number, "From": s.twilio_phone_number, "Body": body},
                auth=(s.twilio_account_sid, s.twilio_auth_token),
                timeout=s.channel_timeout_s,
            )
        except requests.RequestException as e:
            raise SmsProviderError(f"Twilio request failed: {e}") from e

        if r.status_code >= 400:
            raise SmsProviderError(f"Twilio {r.status_code}: {r.text[:200]}")

        try:
            sid = (r.json() or {}).get("sid")
        except ValueError as e:
            raise SmsProviderError("Twilio response not JSON") from e
        if not sid:
            raise SmsProviderError("Twilio response missing message sid")
        return sid

    def send(self, user_id: str, to_number: str, body: str) -> SmsSendResult:
        truncated = body[: self.settings.sms_max_length]

        try:
            sid = self._post_message(to_number, truncated)
        except SmsProviderError as e:
            logger.warning("sms to user=%s failed: %s", user_id, e)
            self.store.add_message_log(
                user_id=user_id,
                direction="OUTBOUND",
                channel="SMS",
                to_number=to_number,
                from_number=self.from_number,
                body=f"[FAILED] {truncated}",
            )
            return SmsSendResult(success=False, error=str(e))

        self.store.add_message_log(
            user_id=user_id,
            direction="OUTBOUND",
            channel="SMS",
            to_number=to_number,
            from_number=self.from_number,
            body=truncated,
            provider_message_id=sid,
        )
        return SmsSendResult(success=True, message_id=sid)

    def log_inbound(self, user_id: str, from_number: str, body: str, provider_message_id: Optional[str] = None) -> None:
        self.store.add_message_log(
            user_id=user_id,
            direction="INBOUND",
            channel="SMS",
            to_number=self.from_number,
            from_number=from_number,
            body=body,
            provider_message_id=provider_message_id,
        )
