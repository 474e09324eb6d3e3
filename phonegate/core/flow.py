"""
Verification flow
-----------------
Drives one user's VerificationSession through the gate:

  start -> challenge -> send_code -> confirm -> ProfileSync

All mutation of the session happens here or in the components this flow
owns (ChallengeController, Dispatcher, Confirmer). Provider errors go through
the policy engine; local format errors and misuse raise to the caller.
"""
from __future__ import annotations

from typing import Optional

from phonegate.core import errors
from phonegate.core import policy
from phonegate.core import state_machine as sm
from phonegate.core.challenge import ChallengeController, ChallengeProvider, ClientTokenChallenge
from phonegate.core.confirmer import AMBIGUOUS, CONFIRMED, DROPPED, Confirmer
from phonegate.core.dispatcher import Dispatcher
from phonegate.core.errors import (
    ChallengeError,
    ChallengeUnavailable,
    InvalidSessionError,
    ValidationError,
    VerificationError,
)
from phonegate.core.timeouts import race_timeout
from phonegate.observability import metrics
from phonegate.observability.logging import log
from phonegate.providers.base import OTPProvider
from phonegate.settings import settings
from phonegate.store import session_repo
from phonegate.store.models import UserSession, VerificationSession
from phonegate.store.profile_repo import ProfileStore, RedisProfileStore
from phonegate.sync.profile_sync import ProfileSync
from phonegate.utils.phone import normalize_phone
from phonegate.utils.time import now_ms

VIA_CODE = "code"
VIA_FAIL_OPEN = "fail_open"
VIA_ALREADY_VERIFIED = "already_verified"

AMBIGUOUS_CONFIRM_MESSAGE = "We couldn't confirm your code in time. Try again or request a new code."


class VerificationFlow:
    def __init__(
        self,
        user: UserSession,
        provider: OTPProvider,
        *,
        challenge_provider: Optional[ChallengeProvider] = None,
        profile_store: Optional[ProfileStore] = None,
        profile_sync: Optional[ProfileSync] = None,
        default_region: Optional[str] = None,
    ):
        self.user = user
        self.session = VerificationSession(userId=user.userId, createdAtMs=now_ms())
        self.provider = provider
        self.challenge_provider = challenge_provider or ClientTokenChallenge()
        self.challenge = ChallengeController(
            self.challenge_provider,
            on_solved=self._on_challenge_solved,
            on_expired=self._on_challenge_expired,
            on_error=self._on_challenge_error,
        )
        self.dispatcher = Dispatcher(provider)
        self.confirmer = Confirmer(provider)
        self.profile_store = profile_store or RedisProfileStore()
        self.profile_sync = profile_sync or ProfileSync(self.profile_store)
        self.default_region = default_region
        self.last_sync: Optional[str] = None
        self._scope = None

    async def __aenter__(self) -> "VerificationFlow":
        self._scope = self.challenge.acquire()
        await self._scope.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        scope, self._scope = self._scope, None
        try:
            await self.close()
        finally:
            if scope is not None:
                await scope.__aexit__(exc_type, exc, tb)

    # ------------------------------------------------------------------
    # Challenge callbacks
    # ------------------------------------------------------------------
    def _on_challenge_solved(self, token: str) -> None:
        s = self.session
        if s.step not in (sm.CHALLENGE_PENDING, sm.CHALLENGE_SOLVED):
            log(event="challenge_token_ignored", userId=s.userId, step=s.step)
            return
        s.challengeToken = token
        s.step = sm.CHALLENGE_SOLVED
        s.lastError = None
        s.lastErrorMessage = None

    def _on_challenge_expired(self) -> None:
        s = self.session
        s.challengeToken = None
        if s.step == sm.CHALLENGE_SOLVED:
            s.step = sm.CHALLENGE_PENDING

    def _on_challenge_error(self, err: ChallengeUnavailable) -> None:
        s = self.session
        if s.step not in (sm.CHALLENGE_PENDING, sm.CHALLENGE_SOLVED):
            return
        s.challengeToken = None
        s.step = sm.FAILED
        s.lastError = errors.CHALLENGE_UNAVAILABLE
        s.lastErrorMessage = "Human verification is unavailable right now. Please try again."

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _fail_local(self, e: VerificationError) -> None:
        self.session.lastError = e.code
        self.session.lastErrorMessage = e.message

    async def _save(self) -> VerificationSession:
        await session_repo.save_snapshot(self.session)
        return self.session

    async def _already_verified(self) -> Optional[str]:
        """Phone already verified for this account? Returns the phone on record ("" if unknown)."""
        if self.user.phoneVerified:
            return self.user.phoneOnFile or ""
        outcome = await race_timeout(
            self.profile_store.load(self.user.userId), settings.PROFILE_SYNC_WINDOW_SEC, label="profile_read"
        )
        if not outcome.ok:
            log(event="profile_read_failed", userId=self.user.userId, kind=outcome.kind)
            return None
        profile = outcome.value or {}
        if profile.get("verified"):
            return profile.get("phoneE164") or ""
        return None

    def _accept_phone(self, raw_phone: Optional[str], region: Optional[str]) -> str:
        s = self.session
        raw = raw_phone if raw_phone is not None else (s.rawPhoneInput or self.user.phoneOnFile)
        if s.normalizedPhoneE164:
            if raw_phone is not None and normalize_phone(raw_phone, region or self.default_region) != s.normalizedPhoneE164:
                raise ValidationError(
                    "Phone number can't change during verification. Restart to use another number.",
                    code="phone-immutable",
                )
            return s.normalizedPhoneE164
        normalized = normalize_phone(raw, region or self.default_region)
        s.rawPhoneInput = raw
        s.normalizedPhoneE164 = normalized
        return normalized

    def _mark_verified(self, via: str, reason: Optional[str] = None) -> None:
        s = self.session
        s.consume_handle()
        s.step = sm.VERIFIED
        s.verifiedVia = via
        s.failOpenReason = reason
        s.lastError = None
        s.lastErrorMessage = None
        log(event="verification_granted", userId=s.userId, via=via, reason=reason or "", phone=s.normalizedPhoneE164)

    async def _finish_grant(self) -> None:
        s = self.session
        await self._save()
        self.last_sync = await self.profile_sync.on_verified(s.userId, s.normalizedPhoneE164)

    async def _apply_policy(self, err: VerificationError, *, op: str) -> None:
        """Settle the session from a provider error. Callers must not await between their epoch check and this call."""
        s = self.session
        code = policy.error_code(err)
        if code == errors.INVALID_CODE:
            s.attemptCount += 1
        decision = policy.decide(code, attempt_count=s.attemptCount)
        log(
            event="policy_decision",
            userId=s.userId,
            op=op,
            code=code,
            action=decision.action,
            rule=decision.rule,
            attemptCount=s.attemptCount,
            error=err.message[:200],
        )

        if decision.action == policy.FAIL_OPEN:
            log(event="policy_fail_open", userId=s.userId, op=op, code=code, rule=decision.rule)
            self._mark_verified(VIA_FAIL_OPEN, reason=code)
            await metrics.record_policy(decision.action, s.userId, decision.code)
            await self._finish_grant()
            return

        if decision.action == policy.RETRY_SAME_STEP:
            s.step = sm.AWAITING_CODE
        elif decision.action == policy.REQUEST_NEW_CHALLENGE:
            s.challengeToken = None
            s.step = sm.CHALLENGE_PENDING
            self.challenge.request_render()
        elif decision.action == policy.REQUEST_NEW_CODE:
            s.reset()
        else:
            s.consume_handle()
            s.step = sm.FAILED

        s.lastError = decision.code
        s.lastErrorMessage = decision.message
        await metrics.record_policy(decision.action, s.userId, decision.code)
        await self._save()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def start(self) -> VerificationSession:
        """Gate trigger. Verified users pass straight through; otherwise the challenge is requested."""
        s = self.session
        if s.step == sm.VERIFIED:
            return s
        if s.step not in (sm.IDLE, sm.FAILED):
            return s

        phone = await self._already_verified()
        if phone is not None:
            s.step = sm.VERIFIED
            s.verifiedVia = VIA_ALREADY_VERIFIED
            s.normalizedPhoneE164 = phone or None
            log(event="verification_skipped_already_verified", userId=s.userId)
            return await self._save()

        if s.step == sm.FAILED:
            s.reset()
        s.step = sm.CHALLENGE_PENDING
        s.lastError = None
        s.lastErrorMessage = None
        self.challenge.request_render()
        log(event="verification_started", userId=s.userId)
        return await self._save()

    async def submit_challenge(self, token: Optional[str] = None, error: Optional[str] = None) -> VerificationSession:
        """Client reports the widget result: a solved token or a widget error."""
        s = self.session
        if s.step != sm.CHALLENGE_PENDING:
            raise InvalidSessionError("No human verification is pending", code="challenge-not-pending")
        # Token may arrive before the background render got going
        self.challenge.request_render()
        if error:
            if isinstance(self.challenge_provider, ClientTokenChallenge):
                self.challenge_provider.fail(ChallengeUnavailable(error))
            else:
                self.challenge.on_error(ChallengeUnavailable(error))
        elif token:
            if not isinstance(self.challenge_provider, ClientTokenChallenge):
                raise InvalidSessionError("Challenge tokens are not accepted from the client", code="challenge-not-pending")
            self.challenge_provider.submit(token)
        else:
            raise ValidationError("Missing challenge token", code="challenge-required")
        await self.challenge.settled()
        return await self._save()

    async def challenge_expired(self) -> VerificationSession:
        if self.session.step not in (sm.CHALLENGE_PENDING, sm.CHALLENGE_SOLVED):
            return self.session
        self.challenge.on_expired()
        return await self._save()

    async def send_code(self, raw_phone: Optional[str] = None, region: Optional[str] = None) -> VerificationSession:
        s = self.session
        if s.dispatchInFlight or s.confirmInFlight:
            log(event="send_code_dropped_reentrant", userId=s.userId, step=s.step)
            return s
        if s.step == sm.VERIFIED:
            return s

        try:
            if s.step != sm.CHALLENGE_SOLVED or not s.challengeToken:
                raise ChallengeError("Please complete the human verification first", code="challenge-required")
            self._accept_phone(raw_phone, region)
        except VerificationError as e:
            self._fail_local(e)
            await self._save()
            raise

        # The controller's copy of the token is spent with this attempt
        self.challenge.consume()
        epoch = s.epoch
        err = await self.dispatcher.send(s)
        if s.epoch != epoch:
            return s
        if err is None:
            sent = s.step == sm.AWAITING_CODE
            await self._save()
            if sent:
                await metrics.record_outcome("dispatch", "ok")
            return s

        await self._apply_policy(err, op="dispatch")
        await metrics.record_outcome("dispatch", err.code)
        return s

    async def confirm(self, code: str) -> VerificationSession:
        s = self.session
        try:
            result = await self.confirmer.confirm(s, code)
        except VerificationError as e:
            if s.step != sm.VERIFIED:
                self._fail_local(e)
            await self._save()
            raise

        if result.status == DROPPED:
            return s
        if result.status == CONFIRMED:
            self._mark_verified(VIA_CODE)
            await metrics.record_outcome("confirm", "ok")
            await self._finish_grant()
            return s
        if result.status == AMBIGUOUS:
            s.lastError = errors.TIMEOUT
            s.lastErrorMessage = AMBIGUOUS_CONFIRM_MESSAGE
            await metrics.record_outcome("confirm", errors.TIMEOUT)
            return await self._save()

        await self._apply_policy(result.error, op="confirm")
        await metrics.record_outcome("confirm", result.error.code)
        return s

    async def resend(self) -> VerificationSession:
        """Defensive re-dispatch to the same number: spend the current handle and ask for a new challenge."""
        s = self.session
        if s.dispatchInFlight or s.confirmInFlight:
            return s
        if s.step != sm.AWAITING_CODE or not s.normalizedPhoneE164:
            raise InvalidSessionError("Nothing to resend. Please start verification again.")
        s.consume_handle()
        s.attemptCount = 0
        s.expiresAt = None
        s.challengeToken = None
        s.step = sm.CHALLENGE_PENDING
        self.challenge.request_render()
        log(event="verification_resend", userId=s.userId)
        return await self._save()

    async def close(self) -> VerificationSession:
        """Modal closed / flow unmounted: discard in-flight results and release the widget."""
        s = self.session
        if s.step != sm.VERIFIED:
            s.reset()
            s.lastError = None
            s.lastErrorMessage = None
        else:
            s.epoch += 1
            s.dispatchInFlight = False
            s.confirmInFlight = False
        await self.challenge.teardown()
        log(event="verification_closed", userId=s.userId, step=s.step)
        return await self._save()

    async def restart(self) -> VerificationSession:
        await self.close()
        return await self.start()
