import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from phonegate.core import state_machine as sm
from phonegate.core.errors import PersistenceError
from phonegate.settings import settings
from phonegate.store import session_repo
from phonegate.store.models import MAX_CONSUMED_HANDLES, VerificationSession
from phonegate.store.profile_repo import RedisProfileStore, persist_profile_blocking


def _session():
    return VerificationSession(
        userId="u1",
        normalizedPhoneE164="+15551234567",
        step=sm.AWAITING_CODE,
        challengeToken="tok",
        providerHandle="h1",
        consumedHandles=["h0"],
    )


def test_snapshot_never_contains_secrets():
    snap = session_repo.to_snapshot(_session())
    for k in ("challengeToken", "providerHandle", "consumedHandles"):
        assert k not in snap
    assert snap["hasProviderHandle"] is True
    assert snap["step"] == sm.AWAITING_CODE


@pytest.mark.asyncio
async def test_save_snapshot_writes_with_ttl(fake_async_redis):
    s = _session()
    await session_repo.save_snapshot(s)

    key, raw = fake_async_redis.set.call_args.args
    assert key == "verification:u1"
    assert json.loads(raw)["userId"] == "u1"
    assert fake_async_redis.set.call_args.kwargs["ex"] == int(settings.SESSION_TTL_SEC)
    assert s.lastUpdatedAtMs > 0


@pytest.mark.asyncio
async def test_save_snapshot_failure_is_logged_not_raised(fake_async_redis):
    fake_async_redis.set.side_effect = ConnectionError("down")
    with patch("phonegate.store.session_repo.log") as mock_log:
        await session_repo.save_snapshot(_session())
    assert mock_log.call_args.kwargs["event"] == "session_snapshot_failed"


@pytest.mark.asyncio
async def test_save_snapshot_disabled(fake_async_redis):
    with patch.object(settings, "STORE_SESSION_SNAPSHOTS", False):
        await session_repo.save_snapshot(_session())
    fake_async_redis.set.assert_not_called()


@pytest.mark.asyncio
async def test_load_snapshot(fake_async_redis):
    fake_async_redis.get.return_value = json.dumps({"userId": "u1", "step": sm.VERIFIED})
    assert (await session_repo.load_snapshot("u1"))["step"] == sm.VERIFIED

    fake_async_redis.get.return_value = None
    assert await session_repo.load_snapshot("u1") is None


@pytest.mark.asyncio
async def test_profile_store_persist_and_load():
    redis = AsyncMock()
    redis.hgetall.return_value = {"verified": "1", "phoneE164": "+15551234567"}
    store = RedisProfileStore(redis=redis)

    await store.persist("u1", {"verified": True, "phoneE164": "+15551234567"})
    redis.hset.assert_awaited_once_with("profile:u1", mapping={"verified": "1", "phoneE164": "+15551234567"})
    assert await store.load("u1") == {"verified": True, "phoneE164": "+15551234567"}


@pytest.mark.asyncio
async def test_profile_store_errors_become_persistence_errors():
    redis = AsyncMock()
    redis.hset.side_effect = ConnectionError("down")
    with pytest.raises(PersistenceError):
        await RedisProfileStore(redis=redis).persist("u1", {"verified": True})


@patch("phonegate.store.profile_repo.get_redis")
def test_persist_profile_blocking_reads_back(mock_get_redis):
    r = MagicMock()
    r.hgetall.return_value = {"verified": "1", "phoneE164": "+15551234567"}
    mock_get_redis.return_value = r

    out = persist_profile_blocking("u1", {"verified": True, "phoneE164": "+15551234567"})

    r.hset.assert_called_once()
    assert out == {"verified": True, "phoneE164": "+15551234567"}


def test_reset_keeps_consumed_handles_and_bumps_epoch():
    s = _session()
    s.reset()
    assert s.step == sm.IDLE
    assert s.providerHandle is None
    assert s.consumedHandles == ["h0", "h1"]
    assert s.epoch == 1
    assert s.normalizedPhoneE164 is None


def test_consumed_handle_ledger_is_capped():
    s = VerificationSession(userId="u1")
    for i in range(MAX_CONSUMED_HANDLES + 5):
        s.providerHandle = f"h{i}"
        s.consume_handle()

    assert len(s.consumedHandles) == MAX_CONSUMED_HANDLES
    assert s.consumedHandles[0] == "h5"
    assert s.is_handle_consumed(f"h{MAX_CONSUMED_HANDLES + 4}")
    assert not s.is_handle_consumed("h0")
