from __future__ import annotations

import logging
import re
import uuid

import telnyx
from telnyx.error import TelnyxError

from config import settings
from reminders.errors import ChannelPermanentFailure, ChannelTransientFailure

_LOGGER = logging.getLogger(__name__)


def normalize_phone_number(raw: str | None) -> str:
    """Keep digits and ``+``; prefix ``+`` when only digits remain."""
    if not raw:
        return ""
    normalized = re.sub(r"[^\d+]", "", str(raw).strip())
    if normalized and not normalized.startswith("+") and normalized.isdigit():
        return f"+{normalized}"
    return normalized


def _classify(exc: TelnyxError) -> Exception:
    status = getattr(exc, "http_status", None)
    if status is None or status == 429 or status >= 500:
        return ChannelTransientFailure(f"telnyx: {exc}", channel="sms")
    return ChannelPermanentFailure(f"telnyx rejected message ({status}): {exc}", channel="sms")


class TelnyxSmsSender:
    """``send(to, body) -> message id`` over Telnyx Messaging."""

    def __init__(self, api_key: str | None = None, from_number: str | None = None):
        self.api_key = api_key or settings.TELNYX_API_KEY
        self.from_number = from_number or settings.TELNYX_FROM_NUMBER

    @property
    def dev_mode(self) -> bool:
        return not self.api_key or not self.from_number

    def send(self, to: str, body: str) -> str:
        number = normalize_phone_number(to)
        if not number or not body:
            raise ChannelPermanentFailure("missing phone number or message body", channel="sms")
        if self.dev_mode:
            _LOGGER.info("[SMS] DEV mode: would send to %s: %s", number, body)
            return f"dev-{uuid.uuid4()}"

        telnyx.api_key = self.api_key
        try:
            message = telnyx.Message.create(from_=self.from_number, to=number, text=body)
        except TelnyxError as exc:
            raise _classify(exc) from exc
        _LOGGER.info("[SMS] Sent to %s id=%s", number, message.id)
        return message.id
