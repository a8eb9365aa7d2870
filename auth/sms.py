"""
auth/sms.py -- Outbound SMS delivery for verification codes.

SMSGateway.send() is a synchronous call with a bounded timeout that always
returns an SMSResult -- it never raises. Callers decide what a failure means;
the verification-code path logs it and carries on, because the code stays
valid and can still be entered manually.

When SMS_GATEWAY_URL is empty the gateway runs in simulation mode: the message
is written to the log instead of being sent. This is the default for local
development.

The HTTP contract is deliberately generic: POST JSON {"to", "text"} with a
Bearer API key, expecting a 2xx response and optionally {"id": ...} back.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import requests

from auth.validators import format_phone_for_sms

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("classsite.sms")


@dataclass
class SMSResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class SMSGateway:
    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self._url = settings.sms_gateway_url
        self._api_key = settings.sms_api_key
        self._timeout = settings.sms_timeout_seconds
        # max_redirects=3 replaces the requests default of 30 -- the gateway is
        # a single known endpoint, a long redirect chain means something is wrong.
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    @property
    def simulated(self) -> bool:
        return not self._url

    def send(self, phone: str, message: str) -> SMSResult:
        """Deliver message to phone. Returns SMSResult(success=False, ...) on any failure."""
        to = format_phone_for_sms(phone)
        if self.simulated:
            logger.info("[SMS SIMULATION] to=%s text=%s", to, message)
            return SMSResult(success=True, message_id=f"sim_{int(time.time())}_{secrets.token_hex(4)}")

        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            resp = self._session.post(
                self._url,
                json={"to": to, "text": message},
                headers=headers,
                timeout=self._timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("SMS delivery to %s failed: %s", to, e)
            return SMSResult(success=False, error=str(e))

        message_id = None
        try:
            body = resp.json()
            if isinstance(body, dict):
                message_id = body.get("id")
        except ValueError:
            pass
        return SMSResult(success=True, message_id=message_id)
