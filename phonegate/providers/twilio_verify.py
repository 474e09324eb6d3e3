"""
Twilio Verify OTP provider implementation
"""
import asyncio
from typing import Optional

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from phonegate.core import errors
from phonegate.core.errors import ConfirmError, DispatchError
from phonegate.observability.logging import log
from phonegate.providers.base import OTPProvider
from phonegate.providers.captcha import CaptchaVerifier, RecaptchaVerifier, require_human
from phonegate.settings import settings
from phonegate.utils.phone import get_phone_last4

# Twilio error codes -> gate error codes
DISPATCH_CODES = {
    60200: errors.INVALID_PHONE,      # invalid parameter `To`
    21211: errors.INVALID_PHONE,      # invalid 'To' phone number
    21614: errors.INVALID_PHONE,      # not a mobile number
    60203: errors.TOO_MANY_REQUESTS,  # max send attempts reached
    20429: errors.TOO_MANY_REQUESTS,
}
CONFIRM_CODES = {
    20404: errors.CODE_EXPIRED,       # verification expired, approved or canceled
    60202: errors.TOO_MANY_REQUESTS,  # max check attempts reached
    20429: errors.TOO_MANY_REQUESTS,
    60200: errors.INVALID_CODE,
}


def _map_rest_error(e: TwilioRestException, table: dict) -> str:
    code = getattr(e, "code", None)
    if code in table:
        return table[code]
    status = int(getattr(e, "status", 0) or 0)
    if status >= 500:
        return errors.PROVIDER_UNAVAILABLE
    return f"twilio-{code or status or 'unknown'}"


class TwilioVerifyProvider(OTPProvider):
    """
    Twilio Verify OTP provider.

    Twilio handles code generation, TTL and retries; the confirmation handle is
    the Verification SID.
    """

    name = "twilio_verify"

    def __init__(self, captcha: Optional[CaptchaVerifier] = None, client: Optional[Client] = None):
        if client is None:
            if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
                raise ValueError("Twilio credentials not configured")
            # Explicit HTTP timeout so executor threads do not hang forever
            http_client = TwilioHttpClient()
            http_client.timeout = settings.TWILIO_TIMEOUT_SECONDS
            client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN, http_client=http_client)
        if not settings.TWILIO_VERIFY_SERVICE_SID:
            raise ValueError("TWILIO_VERIFY_SERVICE_SID not configured")

        self.client = client
        self.service_sid = settings.TWILIO_VERIFY_SERVICE_SID
        self.captcha = captcha if captcha is not None else RecaptchaVerifier()

    def _service(self):
        return self.client.verify.v2.services(self.service_sid)

    async def dispatch(self, phone_e164: str, challenge_token: Optional[str]) -> str:
        await require_human(self.captcha, challenge_token)
        last4 = get_phone_last4(phone_e164)

        def _send():
            return self._service().verifications.create(to=phone_e164, channel="sms")

        try:
            # Blocking SDK call runs in a worker thread
            verification = await asyncio.to_thread(_send)
        except TwilioRestException as e:
            code = _map_rest_error(e, DISPATCH_CODES)
            log(event="twilio_dispatch_error", phoneLast4=last4, twilioCode=getattr(e, "code", None), mapped=code)
            raise DispatchError(str(e.msg or e)[:200], code=code)
        except (TwilioException, OSError) as e:
            log(event="twilio_dispatch_transport_error", phoneLast4=last4, error=str(e)[:200])
            raise DispatchError(str(e)[:200], code=errors.NETWORK_ERROR)

        if verification.status not in ("pending", "approved"):
            raise DispatchError(f"unexpected verification status {verification.status}", code=errors.PROVIDER_UNAVAILABLE)
        log(event="twilio_dispatch_ok", phoneLast4=last4, status=verification.status)
        return verification.sid

    async def confirm(self, handle: str, code: str):
        def _check():
            return self._service().verification_checks.create(verification_sid=handle, code=code)

        try:
            check = await asyncio.to_thread(_check)
        except TwilioRestException as e:
            mapped = _map_rest_error(e, CONFIRM_CODES)
            log(event="twilio_confirm_error", twilioCode=getattr(e, "code", None), mapped=mapped)
            raise ConfirmError(str(e.msg or e)[:200], code=mapped)
        except (TwilioException, OSError) as e:
            log(event="twilio_confirm_transport_error", error=str(e)[:200])
            raise ConfirmError(str(e)[:200], code=errors.NETWORK_ERROR)

        if check.status == "approved":
            return {"status": "approved", "sid": check.sid}
        if check.status in ("canceled", "expired"):
            raise ConfirmError("verification no longer active", code=errors.CODE_EXPIRED)
        raise ConfirmError("code rejected", code=errors.INVALID_CODE)
