import pytest
from unittest.mock import MagicMock, patch

from phonegate.sync import profile_sync
from phonegate.sync.profile_sync import DEFERRED, SYNCED, ProfileSync, enqueue_profile_retry
from tests.conftest import FakeProfileStore

PHONE = "+15551234567"


@pytest.mark.asyncio
async def test_sync_within_window():
    store = FakeProfileStore()
    enqueue = MagicMock()
    result = await ProfileSync(store, enqueue=enqueue, window_sec=1).on_verified("u1", PHONE)

    assert result == SYNCED
    assert store.data == {"verified": True, "phoneE164": PHONE}
    enqueue.assert_not_called()


@pytest.mark.asyncio
async def test_slow_store_is_deferred_to_background():
    store = FakeProfileStore(delay=0.3)
    enqueue = MagicMock(return_value="job-9")
    with patch.object(profile_sync.metrics, "increment_sync_retry") as retry:
        result = await ProfileSync(store, enqueue=enqueue, window_sec=0.02).on_verified("u1", PHONE)

    assert result == DEFERRED
    enqueue.assert_called_once_with("u1", PHONE)
    retry.assert_awaited_once()


@pytest.mark.asyncio
async def test_read_back_mismatch_is_deferred():
    class LyingStore(FakeProfileStore):
        async def load(self, user_id):
            return {"verified": False, "phoneE164": None}

    enqueue = MagicMock()
    result = await ProfileSync(LyingStore(), enqueue=enqueue, window_sec=1).on_verified("u1", PHONE)
    assert result == DEFERRED
    enqueue.assert_called_once()


@pytest.mark.asyncio
async def test_enqueue_failure_never_raises():
    store = FakeProfileStore(fail=True)
    enqueue = MagicMock(side_effect=ConnectionError("redis down"))
    result = await ProfileSync(store, enqueue=enqueue, window_sec=1).on_verified("u1", PHONE)
    assert result == DEFERRED


@patch("phonegate.queue.rq_conn.get_queue")
def test_enqueue_profile_retry_uses_rq_retry(mock_get_queue):
    mock_queue = MagicMock()
    mock_queue.enqueue.return_value = MagicMock(id="job-1")
    mock_get_queue.return_value = mock_queue

    assert enqueue_profile_retry("u1", PHONE) == "job-1"

    args = mock_queue.enqueue.call_args
    assert args.args[1:] == ("u1", PHONE)
    retry = args.kwargs["retry"]
    assert retry.max == 5
