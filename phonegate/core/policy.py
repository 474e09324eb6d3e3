"""
Provider error policy
---------------------
Maps a provider error code to what the flow does next. This is the only place
that decides between failing open and failing closed.

Fail-open exists so that an SMS-provider outage never blocks hosting. It is
limited to the codes in FAIL_OPEN_CODES unless FAIL_OPEN_MODE=broad, in which
case every code not listed in the table also fails open. Codes in
NEVER_BYPASS fail closed in every mode.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from phonegate.core import errors
from phonegate.settings import settings

RETRY_SAME_STEP = "RETRY_SAME_STEP"
REQUEST_NEW_CHALLENGE = "REQUEST_NEW_CHALLENGE"
REQUEST_NEW_CODE = "REQUEST_NEW_CODE"
FAIL_CLOSED = "FAIL_CLOSED"
FAIL_OPEN = "FAIL_OPEN"

NEVER_BYPASS = frozenset({
    errors.CAPTCHA_FAILED,
    errors.INVALID_PHONE,
    errors.INVALID_CODE,
    errors.INVALID_SESSION,
    errors.CHALLENGE_UNAVAILABLE,
})

FAIL_OPEN_CODES = frozenset({
    errors.PROVIDER_UNAVAILABLE,
    errors.TIMEOUT,
    errors.NETWORK_ERROR,
})

NEW_CODE_CODES = frozenset({
    errors.CODE_EXPIRED,
    errors.SESSION_EXPIRED,
    errors.TOO_MANY_REQUESTS,
})

MESSAGES = {
    errors.CAPTCHA_FAILED: "We couldn't confirm you're human. Please complete the check again.",
    errors.INVALID_PHONE: "Invalid phone number. Please enter a valid phone number.",
    errors.INVALID_CODE: "Invalid verification code. Please check and try again.",
    errors.CODE_EXPIRED: "Verification code has expired. Please request a new code.",
    errors.SESSION_EXPIRED: "Your verification session expired. Please request a new code.",
    errors.TOO_MANY_REQUESTS: "Too many attempts. Please request a new code.",
}
DEFAULT_CLOSED_MESSAGE = "We couldn't verify your phone number. Please try again."


@dataclass(frozen=True)
class Decision:
    action: str
    code: str
    message: Optional[str] = None
    # Why a fail-open was granted: "listed" (allow-list) or "broad" (residual rule)
    rule: str = ""


def error_code(exc: BaseException) -> str:
    code = getattr(exc, "code", None)
    return str(code) if code else "unknown"


def decide(code: str, *, attempt_count: int = 0) -> Decision:
    """
    attempt_count is the number of invalid codes already entered, including
    the one being decided.
    """
    code = (code or "unknown").strip().lower()

    if code == errors.CAPTCHA_FAILED:
        return Decision(REQUEST_NEW_CHALLENGE, code, MESSAGES[code])

    if code == errors.INVALID_CODE:
        max_attempts = settings.MAX_CODE_ATTEMPTS
        if attempt_count >= max_attempts:
            return Decision(REQUEST_NEW_CODE, errors.TOO_MANY_REQUESTS, MESSAGES[errors.TOO_MANY_REQUESTS])
        return Decision(RETRY_SAME_STEP, code, MESSAGES[code])

    if code in NEW_CODE_CODES:
        return Decision(REQUEST_NEW_CODE, code, MESSAGES[code])

    if code in NEVER_BYPASS:
        return Decision(FAIL_CLOSED, code, MESSAGES.get(code, DEFAULT_CLOSED_MESSAGE))

    if code in FAIL_OPEN_CODES:
        return Decision(FAIL_OPEN, code, rule="listed")

    if settings.FAIL_OPEN_MODE == "broad":
        return Decision(FAIL_OPEN, code, rule="broad")

    return Decision(FAIL_CLOSED, code, DEFAULT_CLOSED_MESSAGE)
