"""
Tests for email rendering and the Resend-backed sender.
"""
import time
import pytest
import resend

from services.email import (
    LoggingEmailSender, ResendEmailSender, build_email_sender,
    render_new_offer_email, render_verification_email
)
from services.exceptions import EmailDeliveryError, EmailDeliveryTimeout
from services.notifications import chunked
from services.security import SecurityConfig

class TestRendering:

    def test_signup_email(self):
        subject, html = render_verification_email("482913", "signup", 10)

        assert "verification code" in subject.lower()
        assert ">482913</span>" in html
        assert "finish creating your account" in html
        assert "10 minutes" in html

    def test_login_email(self):
        _, html = render_verification_email("482913", "login", 10)
        assert "to sign in" in html
        assert "finish creating" not in html

    def test_offer_preview_is_truncated(self):
        _, html = render_new_offer_email("Deal", "x" * 250)

        assert "x" * 200 + "..." in html
        assert "x" * 201 not in html

    def test_short_offer_description_is_not_truncated(self):
        _, html = render_new_offer_email("Deal", "Cheap boosts")
        assert "Cheap boosts</p>" in html

    def test_chunked(self):
        emails = [f"u{i}@example.com" for i in range(101)]
        assert [len(batch) for batch in chunked(emails)] == [50, 50, 1]
        assert chunked([]) == []

class TestResendEmailSender:

    async def test_send_passes_message_to_provider(self, monkeypatch):
        sent = []

        def fake_send(params):
            sent.append(params)
            return {"id": "email_123"}

        monkeypatch.setattr(resend.Emails, "send", fake_send)
        sender = ResendEmailSender("re_test_key", "CHEATPLACE <noreply@cheatplace.studio>")

        await sender.send("alice@example.com", "Subject", "<p>hi</p>", bcc=["b@example.com"])

        assert sent == [{
            "from": "CHEATPLACE <noreply@cheatplace.studio>",
            "to": ["alice@example.com"],
            "subject": "Subject",
            "html": "<p>hi</p>",
            "bcc": ["b@example.com"]
        }]
        assert resend.api_key == "re_test_key"

    async def test_provider_error_becomes_delivery_error(self, monkeypatch):
        def fake_send(params):
            raise ValueError("domain not verified")

        monkeypatch.setattr(resend.Emails, "send", fake_send)
        sender = ResendEmailSender("re_test_key", "noreply@cheatplace.studio")

        with pytest.raises(EmailDeliveryError):
            await sender.send("alice@example.com", "Subject", "<p>hi</p>")

    async def test_slow_provider_times_out(self, monkeypatch):
        def fake_send(params):
            time.sleep(0.5)
            return {"id": "late"}

        monkeypatch.setattr(resend.Emails, "send", fake_send)
        sender = ResendEmailSender("re_test_key", "noreply@cheatplace.studio", timeout_seconds=0.05)

        with pytest.raises(EmailDeliveryTimeout, match="timed out"):
            await sender.send("alice@example.com", "Subject", "<p>hi</p>")

    async def test_timeout_is_still_a_delivery_error(self):
        assert issubclass(EmailDeliveryTimeout, EmailDeliveryError)

class TestBuildEmailSender:

    def test_without_api_key_logs_only(self, monkeypatch):
        monkeypatch.delenv("RESEND_API_KEY", raising=False)
        assert isinstance(build_email_sender(SecurityConfig()), LoggingEmailSender)

    def test_with_api_key_uses_resend(self, monkeypatch):
        monkeypatch.setenv("RESEND_API_KEY", "re_test_key")
        monkeypatch.setenv("EMAIL_TIMEOUT_SECONDS", "3")

        sender = build_email_sender(SecurityConfig())

        assert isinstance(sender, ResendEmailSender)
        assert sender.timeout_seconds == 3.0
