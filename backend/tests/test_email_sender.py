import smtplib

import pytest

from alertd.config import Settings
from alertd.services import email_sender
from alertd.services.email_sender import EmailConfig, EmailSenderService


class FakeSMTP:
    """Records one SMTP session."""

    sessions = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.calls = []
        FakeSMTP.sessions.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.calls.append("starttls")

    def login(self, username, password):
        self.calls.append(("login", username))

    def sendmail(self, from_addr, recipients, message):
        self.calls.append(("sendmail", from_addr, list(recipients)))
        self.message = message


class RefusingSMTP(FakeSMTP):
    def sendmail(self, from_addr, recipients, message):
        raise smtplib.SMTPRecipientsRefused({r: (550, b"no such user") for r in recipients})


@pytest.fixture(autouse=True)
def reset_sessions():
    FakeSMTP.sessions = []


def test_config_from_settings() -> None:
    assert EmailConfig.from_settings(Settings(smtp_host=None)) is None

    config = EmailConfig.from_settings(Settings(smtp_host="mail.local", smtp_port=25, email_from="alertd@example.com"))
    assert (config.host, config.port, config.from_address) == ("mail.local", 25, "alertd@example.com")


@pytest.mark.asyncio
async def test_send_multipart_with_tls_and_login(monkeypatch) -> None:
    monkeypatch.setattr(email_sender.smtplib, "SMTP", FakeSMTP)
    sender = EmailSenderService(EmailConfig(host="mail.local", port=587, username="bot", password="pw", from_address="alertd@example.com"))

    assert await sender.send_email(["ops@example.com", " "], "Disk full", "**sda1**", "<p><strong>sda1</strong></p>")

    [session] = FakeSMTP.sessions
    assert session.calls == ["starttls", ("login", "bot"), ("sendmail", "alertd@example.com", ["ops@example.com"])]
    assert "text/plain" in session.message
    assert "text/html" in session.message


@pytest.mark.asyncio
async def test_unconfigured_sender_reports_failure() -> None:
    assert not await EmailSenderService(None).send_email(["ops@example.com"], "s", "t")


@pytest.mark.asyncio
async def test_refused_recipients_report_failure(monkeypatch) -> None:
    monkeypatch.setattr(email_sender.smtplib, "SMTP", RefusingSMTP)
    sender = EmailSenderService(EmailConfig(host="mail.local", port=25, use_tls=False))

    assert not await sender.send_email(["nobody@example.com"], "s", "t")
