"""
In-process registry of live verification flows, keyed by user id.

Flows hold asyncio state (render tasks, in-flight provider calls) and cannot
be shared across processes; the Redis snapshot is only a debug copy.
"""
from typing import Callable, Dict, Optional

from phonegate.core import state_machine as sm
from phonegate.core.flow import VerificationFlow
from phonegate.observability.logging import log
from phonegate.settings import settings
from phonegate.store.models import UserSession
from phonegate.utils.time import now_ms

FlowFactory = Callable[[UserSession], VerificationFlow]


class FlowRegistry:
    def __init__(self, factory: FlowFactory):
        self.factory = factory
        self._flows: Dict[str, VerificationFlow] = {}

    def __len__(self) -> int:
        return len(self._flows)

    def get(self, user_id: str) -> Optional[VerificationFlow]:
        return self._flows.get(user_id)

    def get_or_create(self, user: UserSession) -> VerificationFlow:
        flow = self._flows.get(user.userId)
        if flow is None:
            flow = self.factory(user)
            self._flows[user.userId] = flow
        else:
            # Latest header view of the caller wins
            flow.user = user
        return flow

    async def discard(self, user_id: str) -> None:
        flow = self._flows.pop(user_id, None)
        if flow is not None:
            await flow.close()

    async def sweep(self, ttl_sec: Optional[float] = None) -> int:
        """Close flows idle longer than SESSION_TTL_SEC. Flows with a call in flight are kept."""
        ttl_ms = int((ttl_sec if ttl_sec is not None else settings.SESSION_TTL_SEC) * 1000)
        cutoff = now_ms() - ttl_ms
        stale = [
            uid for uid, f in self._flows.items()
            if f.session.lastUpdatedAtMs < cutoff
            and not (f.session.dispatchInFlight or f.session.confirmInFlight)
            and f.session.step not in sm.PENDING
        ]
        for uid in stale:
            await self.discard(uid)
        if stale:
            log(event="flow_registry_swept", count=len(stale))
        return len(stale)

    async def shutdown(self) -> None:
        for uid in list(self._flows.keys()):
            try:
                await self.discard(uid)
            except Exception as e:
                log(event="flow_close_failed", userId=uid, errorType=type(e).__name__, error=str(e)[:200])
