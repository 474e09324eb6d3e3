"""
Human-verification challenge lifecycle.

States: UNRENDERED -> RENDERING -> SOLVED -> EXPIRED -> ERROR (see state_machine).
The widget is a scoped resource: `acquire()` guarantees `release()` on every
exit path, and `teardown()` may be called any number of times.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Callable, Optional, Protocol

from phonegate.core import state_machine as sm
from phonegate.core.errors import ChallengeUnavailable
from phonegate.observability.logging import log


class ChallengeProvider(Protocol):
    async def render(self) -> str: ...

    async def release(self) -> None: ...


class ClientTokenChallenge:
    """
    Challenge solved in the browser; the client posts the resulting token.
    `render()` waits until `submit()` delivers it. A result that arrives before
    the render started is held and handed to the next `render()`.
    """

    def __init__(self) -> None:
        self._waiter: Optional[asyncio.Future] = None
        self._pending_token: Optional[str] = None
        self._pending_error: Optional[BaseException] = None

    async def render(self) -> str:
        if self._waiter is not None and not self._waiter.done():
            self._waiter.cancel()
        if self._pending_error is not None:
            err, self._pending_error = self._pending_error, None
            raise err
        if self._pending_token is not None:
            token, self._pending_token = self._pending_token, None
            return token
        loop = asyncio.get_running_loop()
        self._waiter = loop.create_future()
        return await self._waiter

    def submit(self, token: str) -> bool:
        if self._waiter is None or self._waiter.done():
            self._pending_token = token
            return False
        self._waiter.set_result(token)
        return True

    def fail(self, exc: BaseException) -> bool:
        if self._waiter is None or self._waiter.done():
            self._pending_error = exc
            return False
        self._waiter.set_exception(exc)
        return True

    async def release(self) -> None:
        if self._waiter is not None and not self._waiter.done():
            self._waiter.cancel()
        self._waiter = None
        self._pending_token = None
        self._pending_error = None


class ChallengeController:
    def __init__(
        self,
        provider: ChallengeProvider,
        *,
        on_solved: Optional[Callable[[str], None]] = None,
        on_expired: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[ChallengeUnavailable], None]] = None,
    ):
        self.provider = provider
        self.state = sm.UNRENDERED
        self.token: Optional[str] = None
        self.error: Optional[ChallengeUnavailable] = None
        self.render_count = 0
        self._render_task: Optional[asyncio.Task] = None
        self._listeners = (on_solved, on_expired, on_error)

    async def initiate(self) -> None:
        """Render the widget and wait for a token. No-op while RENDERING or SOLVED."""
        if self.state in (sm.RENDERING, sm.SOLVED):
            return
        self.state = sm.RENDERING
        self.error = None
        self.render_count += 1
        log(event="challenge_render", renderCount=self.render_count)
        try:
            token = await self.provider.render()
        except asyncio.CancelledError:
            if self.state == sm.RENDERING:
                self.state = sm.UNRENDERED
            raise
        except Exception as e:
            self.on_error(e)
            return
        if self.state != sm.RENDERING:
            # Torn down or expired while waiting
            return
        self.on_solved(token)

    def request_render(self) -> None:
        """Start `initiate()` in the background on the running loop."""
        if self.state in (sm.RENDERING, sm.SOLVED):
            return
        if self._render_task is not None and not self._render_task.done():
            return
        self._render_task = asyncio.ensure_future(self.initiate())

    async def settled(self) -> None:
        """Wait for a background render (if any) to finish applying its result."""
        task = self._render_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    def on_solved(self, token: str) -> None:
        self.state = sm.SOLVED
        self.token = token
        self.error = None
        log(event="challenge_solved", token=token)
        cb = self._listeners[0]
        if cb:
            cb(token)

    def on_expired(self) -> None:
        task = self._render_task
        if self.state == sm.RENDERING and task is not None and not task.done():
            # Nothing solved yet, the pending render stays valid
            log(event="challenge_expired_ignored")
            return
        self.token = None
        self.state = sm.EXPIRED
        log(event="challenge_expired")
        cb = self._listeners[1]
        if cb:
            cb()
        self.request_render()

    def on_error(self, err: BaseException) -> None:
        self.token = None
        self.state = sm.ERROR
        self.error = err if isinstance(err, ChallengeUnavailable) else ChallengeUnavailable(str(err) or "challenge unavailable")
        log(event="challenge_error", errorType=type(err).__name__, error=str(err)[:200])
        cb = self._listeners[2]
        if cb:
            cb(self.error)

    def consume(self) -> Optional[str]:
        """Hand out the single-use token; a new render is needed afterwards."""
        token = self.token
        self.token = None
        self.state = sm.UNRENDERED
        return token

    async def teardown(self) -> None:
        task = self._render_task
        self._render_task = None
        self.state = sm.UNRENDERED
        self.token = None
        if task is not None and not task.done():
            task.cancel()
        try:
            await self.provider.release()
        except Exception as e:
            log(event="challenge_release_failed", errorType=type(e).__name__, error=str(e)[:200])

    @asynccontextmanager
    async def acquire(self):
        try:
            yield self
        finally:
            await self.teardown()
