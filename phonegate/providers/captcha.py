"""
Server-side check of a human-verification token (reCAPTCHA siteverify API).
"""
from typing import Optional, Protocol

import httpx

from phonegate.core import errors
from phonegate.core.errors import DispatchError
from phonegate.observability.logging import log
from phonegate.settings import settings


class CaptchaVerifier(Protocol):
    async def verify(self, token: str) -> bool: ...


class RecaptchaVerifier:
    def __init__(self, secret: Optional[str] = None, url: Optional[str] = None, timeout: Optional[float] = None):
        self.secret = secret if secret is not None else settings.RECAPTCHA_SECRET
        self.url = url or settings.RECAPTCHA_VERIFY_URL
        self.timeout = float(timeout or settings.RECAPTCHA_TIMEOUT_SEC)

    async def verify(self, token: str) -> bool:
        if not self.secret:
            # Not configured: only presence of a token is enforced
            return bool(token)
        if not token:
            return False
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.url, data={"secret": self.secret, "response": token})
        if resp.status_code != 200:
            log(event="captcha_verify_non200", statusCode=int(resp.status_code))
            return False
        body = resp.json()
        ok = bool(body.get("success"))
        if not ok:
            log(event="captcha_verify_rejected", errorCodes=body.get("error-codes") or [])
        return ok


async def require_human(verifier: Optional[CaptchaVerifier], token: Optional[str]) -> None:
    """Raise DispatchError(captcha-failed) unless the token checks out."""
    if verifier is None:
        if not token:
            raise DispatchError("missing challenge token", code=errors.CAPTCHA_FAILED)
        return
    try:
        ok = await verifier.verify(token or "")
    except httpx.HTTPError as e:
        # An unverifiable token is a failed check, not a provider outage
        raise DispatchError(f"captcha verification unreachable: {e}", code=errors.CAPTCHA_FAILED)
    if not ok:
        raise DispatchError("captcha verification failed", code=errors.CAPTCHA_FAILED)
