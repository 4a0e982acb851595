from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from config import settings
from reminders.errors import ChannelPermanentFailure, ChannelTimeout, ChannelTransientFailure

_LOGGER = logging.getLogger(__name__)


class SmtpEmailSender:
    """``send(to, subject, html, text) -> Message-ID`` over SMTP."""

    def __init__(
        self,
        server: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        from_addr: str | None = None,
        use_tls: bool | None = None,
        timeout: float | None = None,
    ):
        self.server = server or settings.SMTP_SERVER
        self.port = port or settings.SMTP_PORT
        self.username = username if username is not None else settings.SMTP_USERNAME
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.from_addr = from_addr or settings.MAIL_FROM
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls
        self.timeout = timeout or settings.SEND_TIMEOUT_SECONDS

    @property
    def dev_mode(self) -> bool:
        return not self.server

    def build_message(self, to: str, subject: str, html: str, text: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_addr
        msg["To"] = to
        msg["Message-ID"] = make_msgid(domain="petclaimhelper.app")
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def send(self, to: str, subject: str, html: str, text: str) -> str:
        if not to:
            raise ChannelPermanentFailure("missing recipient address", channel="email")
        msg = self.build_message(to, subject, html, text)
        message_id = msg["Message-ID"]
        if self.dev_mode:
            _LOGGER.info("[EMAIL] DEV mode: would send %r to %s", subject, to)
            return message_id

        try:
            with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password or "")
                server.send_message(msg)
        except TimeoutError as exc:
            raise ChannelTimeout(f"smtp timed out: {exc}", channel="email") from exc
        except smtplib.SMTPRecipientsRefused as exc:
            raise ChannelPermanentFailure(f"recipient refused: {exc.recipients}", channel="email") from exc
        except smtplib.SMTPResponseException as exc:
            if 400 <= exc.smtp_code < 500:
                raise ChannelTransientFailure(f"smtp {exc.smtp_code}: {exc.smtp_error!r}", channel="email") from exc
            raise ChannelPermanentFailure(f"smtp {exc.smtp_code}: {exc.smtp_error!r}", channel="email") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise ChannelTransientFailure(f"smtp: {exc}", channel="email") from exc

        _LOGGER.info("[EMAIL] Sent %r to %s id=%s", subject, to, message_id)
        return message_id
