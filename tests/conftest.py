import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from phonegate.core.errors import PersistenceError
from phonegate.core.flow import VerificationFlow
from phonegate.providers.base import OTPProvider
from phonegate.store.models import UserSession
from phonegate.sync.profile_sync import ProfileSync


class ScriptedProvider(OTPProvider):
    """OTP provider whose dispatch/confirm behaviour is supplied per test."""

    name = "scripted"

    def __init__(self, dispatch=None, confirm=None):
        self.dispatch_calls = []
        self.confirm_calls = []
        self._dispatch = dispatch
        self._confirm = confirm

    async def dispatch(self, phone_e164, challenge_token):
        self.dispatch_calls.append((phone_e164, challenge_token))
        if self._dispatch is None:
            return f"handle-{len(self.dispatch_calls)}"
        return await self._dispatch(phone_e164, challenge_token)

    async def confirm(self, handle, code):
        self.confirm_calls.append((handle, code))
        if self._confirm is None:
            return {"status": "approved"}
        return await self._confirm(handle, code)


class FakeProfileStore:
    def __init__(self, profile=None, fail=False, delay=0.0):
        self.data = dict(profile or {})
        self.fail = fail
        self.delay = delay
        self.persist_calls = []

    async def persist(self, user_id, fields):
        self.persist_calls.append((user_id, dict(fields)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise PersistenceError("profile write failed")
        self.data.update(fields)

    async def load(self, user_id):
        return {"verified": bool(self.data.get("verified")), "phoneE164": self.data.get("phoneE164")}


@pytest.fixture(autouse=True)
def fake_async_redis():
    """Metrics, snapshots and the profile repo never touch a real Redis in tests."""
    r = AsyncMock()
    r.get.return_value = None
    r.hgetall.return_value = {}
    r.lrange.return_value = []
    with patch("phonegate.observability.metrics.get_async_redis", return_value=r), \
         patch("phonegate.store.session_repo.get_async_redis", return_value=r), \
         patch("phonegate.store.profile_repo.get_async_redis", return_value=r):
        yield r


@pytest.fixture
def profile_store():
    return FakeProfileStore()


@pytest.fixture
def enqueue():
    return MagicMock(return_value="job-1")


@pytest.fixture
def make_flow(profile_store, enqueue):
    def _make(provider=None, user=None, store=None, window_sec=0.2):
        store = store or profile_store
        return VerificationFlow(
            user or UserSession(userId="u1"),
            provider or ScriptedProvider(),
            profile_store=store,
            profile_sync=ProfileSync(store, enqueue=enqueue, window_sec=window_sec),
            default_region="CA",
        )
    return _make


async def solve_challenge(flow, token="tok-1"):
    await flow.start()
    await flow.submit_challenge(token=token)
    return flow.session
