"""
mockexpect Completion Signal

Completion state of an expectation: a matched flag plus the waiters that
asked to be told about the next match.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, TYPE_CHECKING

from .errors import NotYetDone, WaitTimeout

if TYPE_CHECKING:
    from .expectation import Expectation

DEFAULT_WAIT_TIMEOUT_MS = 2000

WaitCallback = Callable[[Optional[Exception]], Any]

logger = logging.getLogger("mockexpect.mock.signal")


@dataclass
class _Waiter:
    callback: WaitCallback
    timer: Optional[asyncio.TimerHandle] = None


class CompletionSignal:
    """
    Tells test code whether, and when, an expectation was matched.

    Created by Expectation.reply(). The reply scheduler resolves it on every
    successful match; test code checks it synchronously with done() or
    asynchronously with wait()/wait_for().

    Example:
        signal = server.get('/users').reply(200, {'ok': True})
        ...
        signal.done()                       # raises NotYetDone if not hit
        await signal.wait_for(500)          # raises WaitTimeout after 500ms
        signal.wait(500, lambda err: ...)   # callback style
    """

    def __init__(self, expectation: 'Expectation', wait_timeout_ms: int = DEFAULT_WAIT_TIMEOUT_MS):
        self.expectation = expectation
        self.wait_timeout_ms = wait_timeout_ms
        self.is_done = False
        self.match_count = 0
        self._waiters: List[_Waiter] = []

    def __repr__(self):
        return f"<CompletionSignal {self._label()} done={self.is_done}>"

    def _label(self) -> str:
        return f"{self.expectation.method} {self.expectation.path}"

    @property
    def pending_waiters(self) -> int:
        return len(self._waiters)

    def done(self):
        """
        Assert that the expectation has been matched at least once.

        Raises:
            NotYetDone: If no request has matched yet
        """
        if not self.is_done:
            raise NotYetDone(f"{self._label()} was not made yet.")

    def wait(self, timeout_ms=None, callback: Optional[WaitCallback] = None):
        """
        Call back once the expectation is matched or the timeout elapses.

        The callback receives None on a match and a WaitTimeout otherwise;
        it is invoked exactly once. May be called as wait(callback) to use
        the default timeout. Must be called from the running event loop that
        serves the mock.

        Args:
            timeout_ms: Timeout in milliseconds (default: wait_timeout_ms)
            callback: Function taking an optional error
        """
        if callback is None and callable(timeout_ms):
            callback, timeout_ms = timeout_ms, None
        if callback is None:
            raise TypeError("wait() requires a callback")
        if timeout_ms is None:
            timeout_ms = self.wait_timeout_ms

        loop = asyncio.get_running_loop()

        # Only a later match releases the waiter; done() reports past ones
        waiter = _Waiter(callback=callback)
        waiter.timer = loop.call_later(timeout_ms / 1000, self._expire, waiter, timeout_ms)
        self._waiters.append(waiter)

    async def wait_for(self, timeout_ms=None):
        """
        Awaitable form of wait().

        Raises:
            WaitTimeout: If the expectation is not matched in time
        """
        future = asyncio.get_running_loop().create_future()

        def _settle(error):
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(None)

        self.wait(timeout_ms, _settle)
        await future

    def _expire(self, waiter: _Waiter, timeout_ms):
        if waiter not in self._waiters:
            return
        self._waiters.remove(waiter)
        logger.debug(f"Wait timed out for {self._label()} after {timeout_ms}ms")
        self._notify(waiter, WaitTimeout(f"{self._label()} was not called within {timeout_ms}ms."))

    def _notify(self, waiter: _Waiter, error: Optional[Exception]):
        # Callback errors stay inside the callback
        try:
            waiter.callback(error)
        except Exception:
            logger.exception(f"Wait callback for {self._label()} raised")

    def resolve(self):
        """
        Mark the expectation matched and release every pending waiter.

        Each waiter is called exactly once; an exception raised by one
        callback is logged and does not affect the others.
        """
        self.is_done = True
        self.match_count += 1

        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if waiter.timer is not None:
                waiter.timer.cancel()
            self._notify(waiter, None)
