"""
Custom SMS-service OTP provider.

Generates the code itself, keeps it in Redis for CODE_TTL_SEC (hashed, with an
attempt counter) and hands the text to an HTTP SMS gateway. The confirmation
handle is a random token that keys the Redis record.
"""
import hashlib
import hmac
import json
import secrets
from typing import Optional

import httpx

from phonegate.core import errors
from phonegate.core.errors import ConfirmError, DispatchError
from phonegate.observability.logging import log
from phonegate.providers.base import OTPProvider
from phonegate.providers.captcha import CaptchaVerifier, RecaptchaVerifier, require_human
from phonegate.settings import settings
from phonegate.store.redis_conn import get_async_redis
from phonegate.utils.phone import get_phone_last4
from phonegate.utils.time import now_ms

PREFIX = "otp:handle:"
OTP_LENGTH = 6


def _key(handle: str) -> str:
    return f"{PREFIX}{handle}"


def _hash_code(handle: str, code: str) -> str:
    return hashlib.sha256(f"{handle}:{code}".encode("utf-8")).hexdigest()


class SmsServiceProvider(OTPProvider):
    name = "sms_service"

    def __init__(self, captcha: Optional[CaptchaVerifier] = None, redis=None):
        if not settings.SMS_SERVICE_URL:
            raise ValueError("SMS_SERVICE_URL not configured")
        self.url = settings.SMS_SERVICE_URL
        self.captcha = captcha if captcha is not None else RecaptchaVerifier()
        self._redis = redis

    @property
    def redis(self):
        return self._redis if self._redis is not None else get_async_redis()

    def _generate_code(self) -> str:
        return str(secrets.randbelow(10 ** OTP_LENGTH)).zfill(OTP_LENGTH)

    async def _send_sms(self, to: str, message: str) -> None:
        headers = {"Content-Type": "application/json"}
        if settings.SMS_SERVICE_TOKEN:
            headers["Authorization"] = f"Bearer {settings.SMS_SERVICE_TOKEN}"
        try:
            async with httpx.AsyncClient(timeout=settings.SMS_TIMEOUT_SEC) as client:
                resp = await client.post(self.url, json={"to": to, "message": message}, headers=headers)
        except httpx.TimeoutException as e:
            raise DispatchError(f"sms gateway timeout: {e}", code=errors.TIMEOUT)
        except httpx.HTTPError as e:
            raise DispatchError(f"sms gateway unreachable: {e}", code=errors.NETWORK_ERROR)

        if resp.status_code == 429:
            raise DispatchError("sms gateway rate limited", code=errors.TOO_MANY_REQUESTS)
        if resp.status_code in (400, 422):
            raise DispatchError((resp.text or "")[:200], code=errors.INVALID_PHONE)
        if not (200 <= resp.status_code < 300):
            raise DispatchError(f"sms gateway status {resp.status_code}", code=errors.PROVIDER_UNAVAILABLE)

    async def dispatch(self, phone_e164: str, challenge_token: Optional[str]) -> str:
        await require_human(self.captcha, challenge_token)

        handle = secrets.token_urlsafe(24)
        code = self._generate_code()
        ttl = int(settings.CODE_TTL_SEC)
        record = {
            "phone": phone_e164,
            "codeHash": _hash_code(handle, code),
            "attempts": 0,
            "expiresAt": now_ms() + ttl * 1000,
        }
        try:
            await self.redis.set(_key(handle), json.dumps(record), ex=ttl)
        except Exception as e:
            raise DispatchError(f"code store unavailable: {e}", code=errors.PROVIDER_UNAVAILABLE)

        try:
            await self._send_sms(phone_e164, settings.SMS_MESSAGE_TEMPLATE.format(code=code))
        except DispatchError:
            await self.redis.delete(_key(handle))
            raise

        log(event="sms_dispatch_ok", phoneLast4=get_phone_last4(phone_e164), ttlSec=ttl)
        return handle

    async def confirm(self, handle: str, code: str):
        try:
            raw = await self.redis.get(_key(handle))
        except Exception as e:
            raise ConfirmError(f"code store unavailable: {e}", code=errors.PROVIDER_UNAVAILABLE)

        if not raw:
            raise ConfirmError("Verification code not found. Please request a new code.", code=errors.SESSION_EXPIRED)

        record = json.loads(raw)
        if now_ms() > int(record.get("expiresAt") or 0):
            await self.redis.delete(_key(handle))
            raise ConfirmError("Verification code expired. Please request a new code.", code=errors.CODE_EXPIRED)

        if not hmac.compare_digest(record.get("codeHash", ""), _hash_code(handle, code)):
            record["attempts"] = int(record.get("attempts") or 0) + 1
            if record["attempts"] >= int(settings.MAX_CODE_ATTEMPTS):
                await self.redis.delete(_key(handle))
                raise ConfirmError("Too many failed attempts. Please request a new code.", code=errors.TOO_MANY_REQUESTS)
            await self.redis.set(_key(handle), json.dumps(record), keepttl=True)
            raise ConfirmError("Invalid verification code. Please try again.", code=errors.INVALID_CODE)

        await self.redis.delete(_key(handle))
        return {"status": "approved", "phone": record.get("phone")}
