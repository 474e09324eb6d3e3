import json
from dataclasses import asdict
from typing import Optional

from phonegate.observability.logging import log
from phonegate.settings import settings
from phonegate.store.models import VerificationSession
from phonegate.store.redis_conn import get_async_redis
from phonegate.utils.time import now_ms

PREFIX = "verification:"

# Never written to the snapshot: live secrets
_SECRET_FIELDS = ("challengeToken", "providerHandle", "consumedHandles")


def _key(user_id: str) -> str:
    return f"{PREFIX}{user_id}"


def to_snapshot(session: VerificationSession) -> dict:
    data = asdict(session)
    for k in _SECRET_FIELDS:
        data.pop(k, None)
    data["hasProviderHandle"] = bool(session.providerHandle)
    data["hasChallengeToken"] = bool(session.challengeToken)
    return data


async def save_snapshot(session: VerificationSession) -> None:
    """Best-effort debug copy for the admin view; the live session stays in process."""
    session.lastUpdatedAtMs = now_ms()
    if not settings.STORE_SESSION_SNAPSHOTS:
        return
    try:
        r = get_async_redis()
        await r.set(_key(session.userId), json.dumps(to_snapshot(session)), ex=int(settings.SESSION_TTL_SEC))
    except Exception as e:
        log(event="session_snapshot_failed", userId=session.userId, error=str(e)[:200])


async def load_snapshot(user_id: str) -> Optional[dict]:
    r = get_async_redis()
    raw = await r.get(_key(user_id))
    if not raw:
        return None
    return json.loads(raw)
