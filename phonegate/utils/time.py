import time
from typing import Optional

def now_ms() -> int:
    return int(time.time() * 1000)

def is_expired(expires_at_ms: Optional[int], at_ms: Optional[int] = None) -> bool:
    """
    True when an epoch-ms deadline has passed. A missing deadline never expires.
    """
    if not expires_at_ms:
        return False
    try:
        return int(at_ms if at_ms is not None else now_ms()) > int(expires_at_ms)
    except (TypeError, ValueError):
        return False

def seconds_left(expires_at_ms: Optional[int]) -> int:
    if not expires_at_ms:
        return 0
    return max(0, (int(expires_at_ms) - now_ms()) // 1000)
