"""
Verification Metrics & Fail-Open Audit
--------------------------------------
Lightweight Redis counters for provider outcomes and policy decisions, plus a
snapshot consumed by /admin/metrics. Fail-open grants are counted separately
and the most recent ones are kept (user ids only) so every bypass of the SMS
check can be audited.
"""
from __future__ import annotations
from typing import Dict, List

from phonegate.store.redis_conn import get_async_redis
from phonegate.observability.logging import log

K_OUTCOME = "metrics:verification:outcome"        # HINCRBY "<op>:<outcome>"
K_POLICY = "metrics:verification:policy"          # HINCRBY "<action>"
K_FAIL_OPEN_RECENT = "metrics:verification:fail_open_recent"  # LPUSH "userId|code"
K_SYNC_RETRY = "metrics:profile_sync:retries"     # INCR

_MAX_RECENT = 50


async def record_outcome(op: str, outcome: str) -> None:
    """op is dispatch|confirm, outcome is ok|timeout|<error code>."""
    try:
        r = get_async_redis()
        await r.hincrby(K_OUTCOME, f"{op}:{outcome}", 1)
    except Exception as e:
        log(event="metrics_write_failed", key=K_OUTCOME, error=str(e)[:200])


async def record_policy(action: str, user_id: str = "", code: str = "") -> None:
    try:
        r = get_async_redis()
        await r.hincrby(K_POLICY, action, 1)
        if action == "FAIL_OPEN":
            await r.lpush(K_FAIL_OPEN_RECENT, f"{user_id}|{code}")
            await r.ltrim(K_FAIL_OPEN_RECENT, 0, _MAX_RECENT - 1)
    except Exception as e:
        log(event="metrics_write_failed", key=K_POLICY, error=str(e)[:200])


async def increment_sync_retry() -> None:
    try:
        r = get_async_redis()
        await r.incr(K_SYNC_RETRY, 1)
    except Exception as e:
        log(event="metrics_write_failed", key=K_SYNC_RETRY, error=str(e)[:200])


def _as_int_map(raw) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for k, v in (raw or {}).items():
        try:
            out[str(k)] = int(v)
        except (TypeError, ValueError):
            continue
    return out


async def get_snapshot() -> dict:
    r = get_async_redis()
    outcomes = _as_int_map(await r.hgetall(K_OUTCOME))
    policy = _as_int_map(await r.hgetall(K_POLICY))
    recent: List[str] = list(await r.lrange(K_FAIL_OPEN_RECENT, 0, 19) or [])
    retries = int(await r.get(K_SYNC_RETRY) or 0)

    granted = policy.get("FAIL_OPEN", 0)
    decided = sum(policy.values())
    return {
        "outcomes": outcomes,
        "policy": policy,
        "fail_open_rate": round((granted / decided) * 100.0, 3) if decided else 0.0,
        "recent_fail_open": [
            {"userId": x.split("|", 1)[0], "code": (x.split("|", 1) + [""])[1]} for x in recent
        ],
        "profile_sync_retries": retries,
    }
