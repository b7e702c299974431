"""Tests for SMS dispatch."""

import base64
from urllib.parse import parse_qs

import httpx
import pytest

from nursery_auth.config import settings
from nursery_auth.services.sms import ConsoleSmsSender, HttpSmsSender, build_message, get_sms_sender

API_URL = "https://sms.example.test/api/send"


def _sender(handler) -> HttpSmsSender:
    return HttpSmsSender(
        api_url=API_URL,
        username="gateway-user",
        password="gateway-pass",
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.unit
class TestHttpSmsSender:
    async def test_posts_form_with_basic_auth(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, text="OK")

        assert await _sender(handler).send("09012345678", "123456", 42) is True

        request = captured[0]
        assert str(request.url) == API_URL
        assert request.method == "POST"
        expected_auth = base64.b64encode(b"gateway-user:gateway-pass").decode()
        assert request.headers["Authorization"] == f"Basic {expected_auth}"
        form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
        assert form["mobilenumber"] == "09012345678"
        assert form["smsid"] == "42"
        assert form["mobilecareer"] == "b"
        assert "123456" in form["smstext"]

    async def test_non_200_is_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="gateway error")

        assert await _sender(handler).send("09012345678", "123456", 1) is False

    async def test_transport_error_is_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        assert await _sender(handler).send("09012345678", "123456", 1) is False

    async def test_timeout_is_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        assert await _sender(handler).send("09012345678", "123456", 1) is False

    async def test_missing_credentials_is_failure(self):
        called = False

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal called
            called = True
            return httpx.Response(200)

        sender = HttpSmsSender(
            api_url=API_URL, username="", password="", transport=httpx.MockTransport(handler)
        )

        assert await sender.send("09012345678", "123456", 1) is False
        assert not called


@pytest.mark.unit
class TestSenderSelection:
    def test_message_includes_code_and_lifetime(self):
        message = build_message("987654")

        assert "987654" in message
        assert str(settings.OTP_TTL_SECONDS // 60) in message

    async def test_console_sender_always_succeeds(self):
        assert await ConsoleSmsSender().send("09012345678", "123456", 1) is True

    def test_console_sender_when_disabled(self, monkeypatch):
        monkeypatch.setattr(settings, "SMS_ENABLED", False)
        assert isinstance(get_sms_sender(), ConsoleSmsSender)

    def test_http_sender_when_enabled(self, monkeypatch):
        monkeypatch.setattr(settings, "SMS_ENABLED", True)
        assert isinstance(get_sms_sender(), HttpSmsSender)
