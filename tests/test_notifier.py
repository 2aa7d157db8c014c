import asyncio
import logging
import smtplib

import pytest

from failwatch.config import load_settings
from failwatch.errors import NotifyError
from failwatch.notifier import (
    ALERT_SUBJECT,
    LogNotifier,
    SmtpNotifier,
    WebhookNotifier,
    alert_text,
    build_notifier,
)


class FakeSMTP:
    instances: list["FakeSMTP"] = []
    fail_on_send = False

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.login_args = None
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.login_args = (user, password)

    def send_message(self, msg):
        if FakeSMTP.fail_on_send:
            raise smtplib.SMTPServerDisconnected("connection lost")
        self.sent.append(msg)


@pytest.fixture()
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_on_send = False
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_smtp_notifier_sends_alert_mail(fake_smtp):
    notifier = SmtpNotifier(
        host="smtp.example.org",
        port=587,
        recipient="security@example.org",
        user="alerts@example.org",
        password="secret",
        starttls=True,
        timeout=3.0,
    )

    asyncio.run(notifier.notify("203.0.113.7"))

    server = fake_smtp.instances[0]
    assert (server.host, server.port, server.timeout) == ("smtp.example.org", 587, 3.0)
    assert server.started_tls is True
    assert server.login_args == ("alerts@example.org", "secret")
    msg = server.sent[0]
    assert msg["Subject"] == ALERT_SUBJECT
    assert msg["From"] == "alerts@example.org"
    assert msg["To"] == "security@example.org"
    assert alert_text("203.0.113.7") in msg.get_content()


def test_smtp_notifier_skips_login_without_credentials(fake_smtp):
    notifier = SmtpNotifier(host="localhost", port=25, recipient="ops@example.org")
    asyncio.run(notifier.notify("198.51.100.4"))

    server = fake_smtp.instances[0]
    assert server.login_args is None
    assert server.started_tls is False
    assert server.sent[0]["From"] == "ops@example.org"


def test_smtp_failure_raises_notify_error(fake_smtp):
    fake_smtp.fail_on_send = True
    notifier = SmtpNotifier(host="localhost", port=25, recipient="ops@example.org")

    with pytest.raises(NotifyError):
        asyncio.run(notifier.notify("198.51.100.4"))


class _FakeResponse:
    def __init__(self, status):
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class _FakeSession:
    status = 204
    posts: list = []

    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def post(self, url, json=None):
        _FakeSession.posts.append((url, json))
        return _FakeResponse(_FakeSession.status)


@pytest.fixture()
def fake_session(monkeypatch):
    _FakeSession.posts = []
    _FakeSession.status = 204
    monkeypatch.setattr("failwatch.notifier.aiohttp.ClientSession", _FakeSession)
    return _FakeSession


def test_webhook_notifier_posts_alert_payload(fake_session):
    notifier = WebhookNotifier("https://hooks.example.org/alerts", timeout=1.0)
    asyncio.run(notifier.notify("192.0.2.10"))

    url, payload = fake_session.posts[0]
    assert url == "https://hooks.example.org/alerts"
    assert payload["ip_address"] == "192.0.2.10"
    assert payload["event"] == "failed_request_threshold"
    assert payload["message"] == alert_text("192.0.2.10")


def test_webhook_error_status_raises_notify_error(fake_session):
    fake_session.status = 502
    notifier = WebhookNotifier("https://hooks.example.org/alerts")

    with pytest.raises(NotifyError):
        asyncio.run(notifier.notify("192.0.2.10"))


def test_log_notifier_logs_alert(caplog):
    with caplog.at_level(logging.WARNING, logger="failwatch.notifier"):
        asyncio.run(LogNotifier().notify("192.0.2.11"))
    assert alert_text("192.0.2.11") in caplog.text


@pytest.mark.parametrize(
    ("channel", "expected"),
    [("smtp", SmtpNotifier), ("webhook", WebhookNotifier), ("log", LogNotifier)],
)
def test_build_notifier_selects_channel(channel, expected):
    settings = load_settings(
        {
            "ACCESS_TOKEN": "t",
            "ALERT_CHANNEL": channel,
            "SMTP_HOST": "smtp.example.org",
            "ALERT_RECIPIENT": "ops@example.org",
            "ALERT_WEBHOOK_URL": "https://hooks.example.org/alerts",
        }
    )
    notifier = build_notifier(settings)
    assert isinstance(notifier, expected)
    assert notifier.channel == channel
