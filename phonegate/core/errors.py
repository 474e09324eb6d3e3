"""
Error taxonomy for the verification gate.

Provider backends translate their native failures into DispatchError /
ConfirmError carrying one of the codes below; the policy engine only ever
looks at the code.
"""
from typing import Optional

# Dispatch codes
CAPTCHA_FAILED = "captcha-failed"
INVALID_PHONE = "invalid-phone"
PROVIDER_UNAVAILABLE = "provider-unavailable"

# Confirm codes
INVALID_CODE = "invalid-code"
CODE_EXPIRED = "code-expired"
SESSION_EXPIRED = "session-expired"
TOO_MANY_REQUESTS = "too-many-requests"

# Transport-level codes (either step)
TIMEOUT = "timeout"
NETWORK_ERROR = "network-error"

# Local rejections (never sent to the policy engine)
INVALID_SESSION = "invalid-session"
CHALLENGE_UNAVAILABLE = "challenge-unavailable"


class VerificationError(Exception):
    code: str = "verification-error"

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message or (code or self.code))
        if code:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(VerificationError):
    """Local format check failed; no provider call was made."""
    code = "validation-error"


class ChallengeError(VerificationError):
    code = "challenge-error"


class ChallengeUnavailable(ChallengeError):
    code = CHALLENGE_UNAVAILABLE


class DispatchError(VerificationError):
    code = PROVIDER_UNAVAILABLE


class ConfirmError(VerificationError):
    code = PROVIDER_UNAVAILABLE


class InvalidSessionError(ConfirmError):
    """Confirm attempted without a live handle (consumed, reset, or wrong step)."""
    code = INVALID_SESSION


class PersistenceError(VerificationError):
    code = "persistence-error"
