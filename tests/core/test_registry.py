import pytest

from phonegate.core import state_machine as sm
from phonegate.core.registry import FlowRegistry
from phonegate.store.models import UserSession


@pytest.fixture
def registry(make_flow):
    return FlowRegistry(lambda user: make_flow(user=user))


def test_one_flow_per_user(registry):
    a = registry.get_or_create(UserSession(userId="u1"))
    b = registry.get_or_create(UserSession(userId="u1", phoneOnFile="+15551234567"))
    assert a is b
    assert b.user.phoneOnFile == "+15551234567"
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_sweep_closes_idle_flows(registry):
    flow = registry.get_or_create(UserSession(userId="u1"))
    await flow.start()
    flow.session.lastUpdatedAtMs = 0

    assert await registry.sweep(ttl_sec=60) == 1
    assert registry.get("u1") is None
    assert flow.session.step == sm.IDLE


@pytest.mark.asyncio
async def test_sweep_keeps_flows_with_calls_in_flight(registry):
    flow = registry.get_or_create(UserSession(userId="u1"))
    flow.session.lastUpdatedAtMs = 0
    flow.session.dispatchInFlight = True

    assert await registry.sweep(ttl_sec=60) == 0
    assert registry.get("u1") is flow


@pytest.mark.asyncio
async def test_shutdown_closes_everything(registry):
    for uid in ("u1", "u2"):
        await registry.get_or_create(UserSession(userId=uid)).start()
    await registry.shutdown()
    assert len(registry) == 0
