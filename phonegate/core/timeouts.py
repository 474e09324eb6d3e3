"""
Timer race for provider calls.

`race_timeout` runs an awaitable against a client-side deadline and returns a
tagged Outcome instead of raising. The underlying task is never cancelled:
provider SDKs (and threads behind asyncio.to_thread) cannot be aborted at the
network level. If it settles after the deadline its result or exception is
consumed and logged, so nothing leaks as "exception was never retrieved".
Callers decide whether a result is still applicable by checking the session
epoch they captured before the call.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Optional

from phonegate.observability.logging import log

OK = "OK"
TIMEOUT = "TIMEOUT"
ERR = "ERR"


@dataclass(frozen=True)
class Outcome:
    kind: str
    value: Any = None
    error: Optional[BaseException] = None
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.kind == OK

    @property
    def timed_out(self) -> bool:
        return self.kind == TIMEOUT


def _discard_late(label: str, started: float):
    def _cb(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        log(
            event="late_result_discarded",
            op=label,
            failed=exc is not None,
            errorType=type(exc).__name__ if exc else "",
            elapsedMs=int((time.monotonic() - started) * 1000),
        )
    return _cb


async def race_timeout(aw: Awaitable[Any], timeout_sec: float, *, label: str) -> Outcome:
    started = time.monotonic()
    task = asyncio.ensure_future(aw)
    done, _ = await asyncio.wait({task}, timeout=max(0.0, float(timeout_sec)))
    elapsed = int((time.monotonic() - started) * 1000)

    if not done:
        task.add_done_callback(_discard_late(label, started))
        log(event="provider_call_timeout", op=label, timeoutSec=float(timeout_sec), elapsedMs=elapsed)
        return Outcome(TIMEOUT, elapsed_ms=elapsed)

    if task.cancelled():
        return Outcome(ERR, error=asyncio.CancelledError(), elapsed_ms=elapsed)
    exc = task.exception()
    if exc is not None:
        return Outcome(ERR, error=exc, elapsed_ms=elapsed)
    return Outcome(OK, value=task.result(), elapsed_ms=elapsed)
