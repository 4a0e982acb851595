import smtplib
from types import SimpleNamespace

import pytest
import telnyx
from telnyx.error import TelnyxError

from reminders.errors import ChannelPermanentFailure, ChannelTimeout, ChannelTransientFailure
from reminders.utils import mail as mail_util
from reminders.utils import sms as sms_util


# ──────────────────────────────────────────────────────────────────────────
# SMS
# ──────────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("+1 (555) 555-0100", "+15555550100"),
        ("15555550100", "+15555550100"),
        (" +44 20 7946 0958 ", "+442079460958"),
        (None, ""),
        ("", ""),
    ],
)
def test_normalize_phone_number(raw, expected):
    assert sms_util.normalize_phone_number(raw) == expected


def test_sms_dev_mode_does_not_call_provider(monkeypatch):
    def boom(**kwargs):
        raise AssertionError("provider must not be called in dev mode")

    monkeypatch.setattr(telnyx.Message, "create", boom)
    sender = sms_util.TelnyxSmsSender(api_key="", from_number="")
    assert sender.dev_mode
    assert sender.send("+15555550100", "hi").startswith("dev-")


def test_sms_missing_number_is_permanent():
    sender = sms_util.TelnyxSmsSender(api_key="", from_number="")
    with pytest.raises(ChannelPermanentFailure):
        sender.send("", "hi")


def test_sms_sends_through_telnyx(monkeypatch):
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="msg-123")

    monkeypatch.setattr(telnyx.Message, "create", fake_create)
    sender = sms_util.TelnyxSmsSender(api_key="KEY", from_number="+15550000000")
    assert sender.send("1 555 555 0100", "Time for meds") == "msg-123"
    assert calls == [{"from_": "+15550000000", "to": "+15555550100", "text": "Time for meds"}]


@pytest.mark.parametrize(
    "status, expected",
    [
        (None, ChannelTransientFailure),
        (429, ChannelTransientFailure),
        (503, ChannelTransientFailure),
        (400, ChannelPermanentFailure),
        (422, ChannelPermanentFailure),
    ],
)
def test_sms_provider_errors_classified(monkeypatch, status, expected):
    err = TelnyxError("provider said no")
    err.http_status = status

    def fake_create(**kwargs):
        raise err

    monkeypatch.setattr(telnyx.Message, "create", fake_create)
    sender = sms_util.TelnyxSmsSender(api_key="KEY", from_number="+15550000000")
    with pytest.raises(expected):
        sender.send("+15555550100", "hi")


# ──────────────────────────────────────────────────────────────────────────
# Email
# ──────────────────────────────────────────────────────────────────────────


class FakeSMTP:
    instances: list["FakeSMTP"] = []
    error: BaseException | None = None

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.tls = False
        self.login_args = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.tls = True

    def login(self, user, password):
        self.login_args = (user, password)

    def send_message(self, msg):
        if FakeSMTP.error is not None:
            raise FakeSMTP.error
        self.messages.append(msg)


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.error = None
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def _email_sender(**overrides) -> mail_util.SmtpEmailSender:
    params = dict(server="smtp.example.test", port=587, username="user", password="pw",
                  from_addr="Reminders <reminders@example.test>", use_tls=True, timeout=5)
    params.update(overrides)
    return mail_util.SmtpEmailSender(**params)


def test_email_sends_multipart(fake_smtp):
    message_id = _email_sender().send("owner@example.test", "Subject", "<p>hi</p>", "hi")

    (server,) = fake_smtp.instances
    assert (server.host, server.port, server.timeout) == ("smtp.example.test", 587, 5)
    assert server.tls and server.login_args == ("user", "pw")
    (msg,) = server.messages
    assert msg["To"] == "owner@example.test"
    assert msg["Message-ID"] == message_id
    assert [part.get_content_type() for part in msg.get_payload()] == ["text/plain", "text/html"]


def test_email_dev_mode(fake_smtp):
    sender = mail_util.SmtpEmailSender(server="")
    assert sender.dev_mode
    assert sender.send("owner@example.test", "Subject", "<p>hi</p>", "hi")
    assert fake_smtp.instances == []


def test_email_missing_address_is_permanent(fake_smtp):
    with pytest.raises(ChannelPermanentFailure):
        _email_sender().send("", "Subject", "<p>hi</p>", "hi")


@pytest.mark.parametrize(
    "error, expected",
    [
        (smtplib.SMTPRecipientsRefused({"owner@example.test": (550, b"no such user")}), ChannelPermanentFailure),
        (smtplib.SMTPResponseException(451, b"try again later"), ChannelTransientFailure),
        (smtplib.SMTPResponseException(554, b"rejected"), ChannelPermanentFailure),
        (smtplib.SMTPServerDisconnected("gone"), ChannelTransientFailure),
        (ConnectionResetError("reset"), ChannelTransientFailure),
        (TimeoutError("timed out"), ChannelTimeout),
    ],
)
def test_email_errors_classified(fake_smtp, error, expected):
    fake_smtp.error = error
    with pytest.raises(expected):
        _email_sender().send("owner@example.test", "Subject", "<p>hi</p>", "hi")
