from typing import Optional

from phonegate.core import errors
from phonegate.core import state_machine as sm
from phonegate.core.errors import ChallengeError, DispatchError, ValidationError, VerificationError
from phonegate.core.timeouts import race_timeout
from phonegate.observability.logging import log
from phonegate.providers.base import OTPProvider
from phonegate.settings import settings
from phonegate.store.models import VerificationSession
from phonegate.utils.phone import E164_RE
from phonegate.utils.time import now_ms


def as_dispatch_error(exc: BaseException) -> DispatchError:
    if isinstance(exc, DispatchError):
        return exc
    if isinstance(exc, VerificationError):
        return DispatchError(exc.message, code=exc.code)
    return DispatchError(f"{type(exc).__name__}: {str(exc)[:200]}", code="unknown")


class Dispatcher:
    """Sends the code. At most one call per session; a second call while one is outstanding is dropped."""

    def __init__(self, provider: OTPProvider, timeout_sec: Optional[float] = None):
        self.provider = provider
        self.timeout_sec = timeout_sec

    async def send(self, session: VerificationSession) -> Optional[DispatchError]:
        """
        Returns None when the code went out (session is AWAITING_CODE) or when
        the call was dropped/discarded; otherwise the DispatchError for the
        policy engine. Precondition failures raise before any provider call.
        """
        if session.dispatchInFlight or session.confirmInFlight:
            log(event="dispatch_dropped_reentrant", userId=session.userId, step=session.step)
            return None
        if not session.challengeToken:
            raise ChallengeError("Please complete the human verification first", code="challenge-required")
        phone = session.normalizedPhoneE164
        if not phone or not E164_RE.match(phone):
            raise ValidationError("Invalid phone number format", code=errors.INVALID_PHONE)

        epoch = session.epoch
        token = session.challengeToken
        # Single-use: the token is spent by this attempt whatever the outcome
        session.challengeToken = None
        session.dispatchInFlight = True
        session.step = sm.DISPATCHING
        timeout = self.timeout_sec if self.timeout_sec is not None else settings.DISPATCH_TIMEOUT_SEC

        try:
            outcome = await race_timeout(self.provider.dispatch(phone, token), timeout, label="dispatch")
        finally:
            if session.epoch == epoch:
                session.dispatchInFlight = False

        if session.epoch != epoch:
            log(event="dispatch_result_discarded", userId=session.userId, kind=outcome.kind)
            return None

        if outcome.ok:
            session.providerHandle = outcome.value
            session.handleSuspect = False
            session.attemptCount = 0
            session.expiresAt = now_ms() + int(settings.CODE_TTL_SEC) * 1000
            session.step = sm.AWAITING_CODE
            session.lastError = None
            session.lastErrorMessage = None
            log(event="dispatch_ok", userId=session.userId, phone=phone, elapsedMs=outcome.elapsed_ms)
            return None

        if outcome.timed_out:
            return DispatchError("Sending the code timed out", code=errors.PROVIDER_UNAVAILABLE)
        return as_dispatch_error(outcome.error)
