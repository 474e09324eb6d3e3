from dataclasses import dataclass
from typing import Any, Optional

from phonegate.core import errors
from phonegate.core import state_machine as sm
from phonegate.core.errors import ConfirmError, InvalidSessionError, ValidationError, VerificationError
from phonegate.core.timeouts import race_timeout
from phonegate.observability.logging import log
from phonegate.providers.base import OTPProvider
from phonegate.settings import settings
from phonegate.store.models import VerificationSession
from phonegate.utils.phone import is_valid_code
from phonegate.utils.time import is_expired

# Confirm outcomes
CONFIRMED = "confirmed"
REJECTED = "rejected"
AMBIGUOUS = "ambiguous"  # timed out; handle may or may not be spent
DROPPED = "dropped"


@dataclass
class ConfirmResult:
    status: str
    error: Optional[ConfirmError] = None
    value: Any = None


def as_confirm_error(exc: BaseException) -> ConfirmError:
    if isinstance(exc, ConfirmError):
        return exc
    if isinstance(exc, VerificationError):
        return ConfirmError(exc.message, code=exc.code)
    return ConfirmError(f"{type(exc).__name__}: {str(exc)[:200]}", code="unknown")


class Confirmer:
    def __init__(self, provider: OTPProvider, timeout_sec: Optional[float] = None):
        self.provider = provider
        self.timeout_sec = timeout_sec

    def _check_preconditions(self, session: VerificationSession, code: str) -> None:
        if not is_valid_code(code):
            raise ValidationError("Please enter the 6-digit code", code="invalid-code-format")
        handle = session.providerHandle
        if session.step != sm.AWAITING_CODE or not handle or session.is_handle_consumed(handle):
            raise InvalidSessionError("No active verification. Please request a new code.")

    async def confirm(self, session: VerificationSession, code: str) -> ConfirmResult:
        if session.confirmInFlight or session.dispatchInFlight:
            log(event="confirm_dropped_reentrant", userId=session.userId, step=session.step)
            return ConfirmResult(DROPPED)

        code = (code or "").strip()
        self._check_preconditions(session, code)

        if is_expired(session.expiresAt):
            # Known-dead code: no provider round trip
            return ConfirmResult(REJECTED, ConfirmError("Verification code expired", code=errors.CODE_EXPIRED))

        epoch = session.epoch
        handle = session.providerHandle
        session.confirmInFlight = True
        session.step = sm.CONFIRMING
        timeout = self.timeout_sec if self.timeout_sec is not None else settings.CONFIRM_TIMEOUT_SEC

        try:
            outcome = await race_timeout(self.provider.confirm(handle, code), timeout, label="confirm")
        finally:
            if session.epoch == epoch:
                session.confirmInFlight = False

        if session.epoch != epoch or session.providerHandle != handle:
            log(event="confirm_result_discarded", userId=session.userId, kind=outcome.kind)
            return ConfirmResult(DROPPED)

        if outcome.ok:
            session.consume_handle()
            session.step = sm.VERIFIED
            session.lastError = None
            session.lastErrorMessage = None
            log(event="confirm_ok", userId=session.userId, elapsedMs=outcome.elapsed_ms)
            return ConfirmResult(CONFIRMED, value=outcome.value)

        if outcome.timed_out:
            session.step = sm.AWAITING_CODE
            session.handleSuspect = True
            log(event="confirm_ambiguous_timeout", userId=session.userId, elapsedMs=outcome.elapsed_ms)
            return ConfirmResult(AMBIGUOUS, ConfirmError("Confirmation timed out", code=errors.TIMEOUT))

        # Step is settled by the policy engine
        session.step = sm.AWAITING_CODE
        return ConfirmResult(REJECTED, as_confirm_error(outcome.error))
