"""
ProfileSync
-----------
Persists the verified outcome. The user-visible success never waits longer
than PROFILE_SYNC_WINDOW_SEC: if write + read-back do not finish in that
window, or fail, the write is handed to an RQ job with retries and the flow
proceeds optimistically. Nothing here raises into the flow.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Optional

from rq import Retry

from phonegate.core.errors import PersistenceError
from phonegate.core.timeouts import race_timeout
from phonegate.observability import metrics
from phonegate.observability.logging import log
from phonegate.settings import settings
from phonegate.store.profile_repo import ProfileStore

SYNCED = "synced"
DEFERRED = "deferred"

RETRY_INTERVALS = [5, 15, 30, 60, 120]


def enqueue_profile_retry(user_id: str, phone_e164: str) -> Optional[str]:
    # Lazy imports: jobs pulls in the sync Redis client
    from phonegate.queue.jobs import persist_profile_job
    from phonegate.queue.rq_conn import get_queue

    max_retries = settings.PROFILE_SYNC_MAX_RETRIES
    q = get_queue()
    job = q.enqueue(
        persist_profile_job,
        user_id,
        phone_e164,
        retry=Retry(max=max_retries, interval=RETRY_INTERVALS[:max_retries]),
    )
    return getattr(job, "id", None)


class ProfileSync:
    def __init__(
        self,
        store: ProfileStore,
        *,
        enqueue: Optional[Callable[[str, str], Optional[str]]] = None,
        window_sec: Optional[float] = None,
    ):
        self.store = store
        self.enqueue = enqueue or enqueue_profile_retry
        self.window_sec = window_sec

    async def _persist_and_read_back(self, user_id: str, phone_e164: str) -> None:
        try:
            await self.store.persist(user_id, {"verified": True, "phoneE164": phone_e164})
            profile = await self.store.load(user_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"{type(e).__name__}: {e}")
        if not profile.get("verified") or profile.get("phoneE164") != phone_e164:
            raise PersistenceError("read-back mismatch after profile write")

    async def on_verified(self, user_id: str, phone_e164: str) -> str:
        window = self.window_sec if self.window_sec is not None else settings.PROFILE_SYNC_WINDOW_SEC
        outcome = await race_timeout(
            self._persist_and_read_back(user_id, phone_e164), window, label="profile_sync"
        )
        if outcome.ok:
            log(event="profile_sync_ok", userId=user_id, elapsedMs=outcome.elapsed_ms)
            return SYNCED

        reason = "timeout" if outcome.timed_out else f"{type(outcome.error).__name__}: {str(outcome.error)[:200]}"
        log(event="profile_sync_deferred", userId=user_id, reason=reason)
        await metrics.increment_sync_retry()
        try:
            job_id = await asyncio.to_thread(self.enqueue, user_id, phone_e164)
            log(event="profile_sync_enqueued", userId=user_id, rq_job_id=job_id or "")
        except Exception as e:
            log(event="profile_sync_enqueue_failed", userId=user_id, errorType=type(e).__name__, error=str(e)[:200])
        return DEFERRED
