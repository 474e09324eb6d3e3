"""
Profile store: the verified flag and the phone number that unlocked hosting.

Writes are plain HSETs of fixed values, so repeating a persist is harmless.
"""
from typing import Any, Dict, Protocol

from phonegate.core.errors import PersistenceError
from phonegate.store.redis_conn import get_async_redis, get_redis

PREFIX = "profile:"


def _key(user_id: str) -> str:
    return f"{PREFIX}{user_id}"


def _to_hash(fields: Dict[str, Any]) -> Dict[str, str]:
    out = {}
    for k, v in fields.items():
        if isinstance(v, bool):
            out[k] = "1" if v else "0"
        elif v is not None:
            out[k] = str(v)
    return out


def _from_hash(raw: Dict[str, str]) -> Dict[str, Any]:
    raw = raw or {}
    return {
        "verified": raw.get("verified") == "1",
        "phoneE164": raw.get("phoneE164") or None,
    }


class ProfileStore(Protocol):
    async def persist(self, user_id: str, fields: Dict[str, Any]) -> None: ...

    async def load(self, user_id: str) -> Dict[str, Any]: ...


class RedisProfileStore:
    def __init__(self, redis=None):
        self._redis = redis

    @property
    def redis(self):
        return self._redis if self._redis is not None else get_async_redis()

    async def persist(self, user_id: str, fields: Dict[str, Any]) -> None:
        if not user_id:
            raise PersistenceError("missing user id")
        try:
            await self.redis.hset(_key(user_id), mapping=_to_hash(fields))
        except Exception as e:
            raise PersistenceError(f"profile write failed: {type(e).__name__}: {e}")

    async def load(self, user_id: str) -> Dict[str, Any]:
        try:
            raw = await self.redis.hgetall(_key(user_id))
        except Exception as e:
            raise PersistenceError(f"profile read failed: {type(e).__name__}: {e}")
        return _from_hash(raw)


def persist_profile_blocking(user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Synchronous write + read-back, for RQ workers."""
    r = get_redis()
    r.hset(_key(user_id), mapping=_to_hash(fields))
    return _from_hash(r.hgetall(_key(user_id)))
