"""
Stub OTP provider for dev/staging environments
"""
import secrets
from typing import List, Optional

from phonegate.core import errors
from phonegate.core.errors import ConfirmError, DispatchError
from phonegate.observability.logging import log
from phonegate.providers.base import OTPProvider
from phonegate.settings import settings


class StubOTPProvider(OTPProvider):
    """
    Accepts code '000000' for every dispatched handle. Only the presence of a
    challenge token is checked. Handles live in process memory.
    """

    name = "stub"
    STUB_CODE = "000000"

    def __init__(self, allowlist: Optional[List[str]] = None):
        if allowlist is None:
            allowlist = [p.strip() for p in (settings.OTP_DEV_ALLOWLIST or "").split(",") if p.strip()]
        self.allowlist = allowlist
        self._handles = {}
        if settings.ENV in ("prod", "production"):
            log(event="stub_provider_in_prod", warning="Stub OTP provider enabled in production")

    async def dispatch(self, phone_e164: str, challenge_token: Optional[str]) -> str:
        if not challenge_token:
            raise DispatchError("missing challenge token", code=errors.CAPTCHA_FAILED)
        if self.allowlist and phone_e164 not in self.allowlist:
            raise DispatchError("phone not in dev allowlist", code=errors.INVALID_PHONE)
        handle = f"stub-{secrets.token_hex(8)}"
        self._handles[handle] = phone_e164
        log(event="stub_dispatch", phone=phone_e164, stubCode=self.STUB_CODE)
        return handle

    async def confirm(self, handle: str, code: str):
        if handle not in self._handles:
            raise ConfirmError("unknown handle", code=errors.SESSION_EXPIRED)
        if (code or "").strip() != self.STUB_CODE:
            raise ConfirmError("code mismatch", code=errors.INVALID_CODE)
        phone = self._handles.pop(handle)
        return {"status": "approved", "phone": phone}
