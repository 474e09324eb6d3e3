from fastapi import APIRouter, Depends

from phonegate.api.auth import current_user, require_api_key
from phonegate.api.schemas import ChallengeRequest, ConfirmRequest, SendCodeRequest, VerificationStatus
from phonegate.core import state_machine as sm
from phonegate.core.flow import VerificationFlow
from phonegate.core.registry import FlowRegistry
from phonegate.providers.factory import get_otp_provider
from phonegate.settings import settings
from phonegate.store.models import UserSession, VerificationSession
from phonegate.utils.time import seconds_left

router = APIRouter(prefix="/verification", tags=["verification"], dependencies=[Depends(require_api_key)])


def build_flow(user: UserSession) -> VerificationFlow:
    return VerificationFlow(user, get_otp_provider(), default_region=settings.DEFAULT_REGION)


registry = FlowRegistry(build_flow)


def get_registry() -> FlowRegistry:
    return registry


def to_status(session: VerificationSession, profile_sync=None) -> VerificationStatus:
    return VerificationStatus(
        userId=session.userId,
        step=session.step,
        phoneE164=session.normalizedPhoneE164,
        attemptCount=session.attemptCount,
        expiresAt=session.expiresAt,
        expiresInSec=seconds_left(session.expiresAt),
        lastError=session.lastError,
        message=session.lastErrorMessage,
        verified=session.step == sm.VERIFIED,
        terminal=session.step in sm.TERMINAL,
        verifiedVia=session.verifiedVia,
        canResend=session.step == sm.AWAITING_CODE and bool(session.normalizedPhoneE164),
        profileSync=profile_sync,
    )


def _flow(user: UserSession, reg: FlowRegistry) -> VerificationFlow:
    return reg.get_or_create(user)


@router.post("/start", response_model=VerificationStatus)
async def start(user: UserSession = Depends(current_user), reg: FlowRegistry = Depends(get_registry)):
    flow = _flow(user, reg)
    await flow.start()
    return to_status(flow.session)


@router.post("/challenge", response_model=VerificationStatus)
async def challenge(
    body: ChallengeRequest,
    user: UserSession = Depends(current_user),
    reg: FlowRegistry = Depends(get_registry),
):
    flow = _flow(user, reg)
    await flow.submit_challenge(token=body.token, error=body.error)
    return to_status(flow.session)


@router.post("/challenge/expired", response_model=VerificationStatus)
async def challenge_expired(user: UserSession = Depends(current_user), reg: FlowRegistry = Depends(get_registry)):
    flow = _flow(user, reg)
    await flow.challenge_expired()
    return to_status(flow.session)


@router.post("/send-code", response_model=VerificationStatus)
async def send_code(
    body: SendCodeRequest,
    user: UserSession = Depends(current_user),
    reg: FlowRegistry = Depends(get_registry),
):
    flow = _flow(user, reg)
    await flow.send_code(body.phone, region=body.region)
    return to_status(flow.session, flow.last_sync)


@router.post("/confirm", response_model=VerificationStatus)
async def confirm(
    body: ConfirmRequest,
    user: UserSession = Depends(current_user),
    reg: FlowRegistry = Depends(get_registry),
):
    flow = _flow(user, reg)
    await flow.confirm(body.code)
    return to_status(flow.session, flow.last_sync)


@router.post("/resend", response_model=VerificationStatus)
async def resend(user: UserSession = Depends(current_user), reg: FlowRegistry = Depends(get_registry)):
    flow = _flow(user, reg)
    await flow.resend()
    return to_status(flow.session)


@router.post("/restart", response_model=VerificationStatus)
async def restart(user: UserSession = Depends(current_user), reg: FlowRegistry = Depends(get_registry)):
    flow = _flow(user, reg)
    await flow.restart()
    return to_status(flow.session)


@router.post("/close", response_model=VerificationStatus)
async def close(user: UserSession = Depends(current_user), reg: FlowRegistry = Depends(get_registry)):
    flow = reg.get(user.userId)
    if flow is None:
        return to_status(VerificationSession(userId=user.userId))
    session = flow.session
    await reg.discard(user.userId)
    return to_status(session)


@router.get("/status", response_model=VerificationStatus)
async def status(user: UserSession = Depends(current_user), reg: FlowRegistry = Depends(get_registry)):
    flow = reg.get(user.userId)
    if flow is None:
        return to_status(VerificationSession(userId=user.userId))
    return to_status(flow.session, flow.last_sync)
