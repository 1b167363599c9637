"""Unit tests for auth/notify.py -- dev-mode logging and SMTP failure handling."""

import asyncio
import logging
import smtplib

from auth.notify import Notifier
from core.config import Settings


def _settings(**overrides) -> Settings:
    base = {"debug": True, "secret_key": "a" * 40, "refresh_secret_key": "b" * 40, "_env_file": None}
    base.update(overrides)
    return Settings(**base)


def test_dev_mode_logs_code_when_debug(caplog):
    notifier = Notifier(_settings(smtp_host=""))
    with caplog.at_level(logging.INFO, logger="eatfast.auth.notify"):
        asyncio.run(notifier.send_login_code("jane@example.com", "424242"))
    assert "424242" in caplog.text
    assert "DEV MODE" in caplog.text


def test_code_never_logged_outside_debug(caplog):
    notifier = Notifier(_settings(debug=False, smtp_host=""))
    with caplog.at_level(logging.INFO, logger="eatfast.auth.notify"):
        asyncio.run(notifier.send_verification_code("jane@example.com", "424242"))
    assert "424242" not in caplog.text


def test_smtp_failure_is_logged_not_raised(caplog, monkeypatch):
    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, "busy")

    monkeypatch.setattr(smtplib, "SMTP", refuse)
    notifier = Notifier(_settings(smtp_host="smtp.example.test"))
    with caplog.at_level(logging.ERROR, logger="eatfast.auth.notify"):
        asyncio.run(notifier.send_password_reset("jane@example.com", "tok"))
    assert "Failed to send" in caplog.text


def test_sends_message_through_smtp(monkeypatch):
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout):
            self.host = host

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            pass

        def login(self, user, password):
            pass

        def send_message(self, msg):
            sent.append(msg)

    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    notifier = Notifier(_settings(smtp_host="smtp.example.test", client_url="https://app.example.test"))
    asyncio.run(notifier.send_password_reset("jane@example.com", "tok123"))
    assert len(sent) == 1
    assert sent[0]["To"] == "jane@example.com"
    assert "https://app.example.test/reset-password?token=tok123" in sent[0].get_content()
