"""
SMS dispatch for one-time passcodes.

Senders return True/False and never raise: a failed dispatch is reported to
the caller as a retryable failure while the already-written challenge row
stays in place.
"""

from typing import Protocol

import httpx

from nursery_auth.config import settings
from nursery_auth.core.logging import get_logger, mask_phone

logger = get_logger(__name__)


class SmsSender(Protocol):
    async def send(self, phone: str, code: str, challenge_id: int) -> bool: ...


def build_message(code: str) -> str:
    """Render the SMS body for a passcode."""
    return settings.SMS_MESSAGE_TEMPLATE.format(
        code=code,
        minutes=settings.OTP_TTL_SECONDS // 60,
    )


class HttpSmsSender:
    """
    Form-encoded POST to the SMS gateway with HTTP Basic auth.

    One request per code with a bounded timeout and no retries.
    """

    def __init__(
        self,
        api_url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url or settings.SMS_API_URL
        self.username = username if username is not None else settings.SMS_USERNAME
        self.password = password if password is not None else settings.SMS_PASSWORD
        self.timeout = timeout or settings.SMS_TIMEOUT_SECONDS
        self._transport = transport

    async def send(self, phone: str, code: str, challenge_id: int) -> bool:
        if not self.username or not self.password:
            logger.error("sms_gateway_not_configured")
            return False

        payload = {
            "mobilenumber": phone,
            "mobilecareer": "b",  # all carriers
            "smstext": build_message(code),
            "status": "1",
            "smsid": str(challenge_id),
            "method": "2",
            "holdingtime": str(settings.OTP_TTL_SECONDS // 60),
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                auth=httpx.BasicAuth(self.username, self.password),
                transport=self._transport,
            ) as client:
                response = await client.post(self.api_url, data=payload)
        except httpx.HTTPError as e:
            logger.error(
                "sms_gateway_error",
                phone=mask_phone(phone),
                challenge_id=challenge_id,
                error=str(e),
            )
            return False

        if response.status_code != httpx.codes.OK:
            logger.error(
                "sms_send_failed",
                phone=mask_phone(phone),
                challenge_id=challenge_id,
                status_code=response.status_code,
                body=response.text[:200],
            )
            return False

        logger.info("sms_sent", phone=mask_phone(phone), challenge_id=challenge_id)
        return True


class ConsoleSmsSender:
    """
    Development sender: writes the code to the debug log instead of an SMS.

    This debug line is the only place a raw code is ever recorded.
    """

    async def send(self, phone: str, code: str, challenge_id: int) -> bool:
        logger.debug(
            "otp_debug_code",
            phone=mask_phone(phone),
            challenge_id=challenge_id,
            code=code,
        )
        return True


def get_sms_sender() -> SmsSender:
    """
    Dependency returning the configured SMS sender.

    Tests override this through ``app.dependency_overrides``.
    """
    if settings.SMS_ENABLED:
        return HttpSmsSender()
    return ConsoleSmsSender()
