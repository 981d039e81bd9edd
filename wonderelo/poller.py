"""
Remote status poller.

Each request carries a sequence number. A response is applied only if it is
newer than the last applied one and newer than the floor set by
`invalidate()`. Consecutive pending results and failures count against
`max_attempts`; when the budget runs out the poller stops and reports a
`PollTimeoutError`.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .errors import AuthError, PollTimeoutError, ServerError, WondereloError

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 60.0


class StatusPoller:
    def __init__(
        self,
        fetch: Callable[[], Awaitable[Any]],
        on_result: Callable[[Any], None],
        interval: float = 5.0,
        max_attempts: int = 60,
        is_pending: Optional[Callable[[Any], bool]] = None,
        is_final: Optional[Callable[[Any], bool]] = None,
        on_error: Optional[Callable[[WondereloError], None]] = None,
        on_timeout: Optional[Callable[[PollTimeoutError], None]] = None,
        on_final: Optional[Callable[[Any], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._fetch = fetch
        self._on_result = on_result
        self.interval = interval
        self.max_attempts = max_attempts
        self._is_pending = is_pending or (lambda result: False)
        self._is_final = is_final or (lambda result: False)
        self._on_error = on_error
        self._on_timeout = on_timeout
        self._on_final = on_final
        self._sleep = sleep

        self._issued = 0
        self._applied = 0
        self._floor = 0
        self.attempts = 0
        self.failures = 0
        self.finished = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the loop; calling it again while running returns the same task."""
        if self.running:
            return self._task
        self.finished = False
        self.attempts = 0
        self.failures = 0
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def stop(self) -> None:
        self.invalidate()
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def invalidate(self) -> None:
        """Drop every response to a request issued before this call."""
        self._floor = self._issued

    def reset_budget(self) -> None:
        self.attempts = 0
        self.failures = 0

    async def poll_once(self) -> Optional[Any]:
        """
        Issue one request. Returns the result if it was applied, None when it
        failed or was discarded as stale.
        """
        self._issued += 1
        seq = self._issued
        logger.debug("poll #%d issued", seq)
        try:
            result = await self._fetch()
        except WondereloError as exc:
            self._failed(seq, exc)
            return None
        except Exception:
            logger.exception("poll #%d raised", seq)
            self._failed(seq, ServerError(reason="unexpected"))
            return None
        return self._accept(seq, result)

    async def _run(self) -> None:
        while not self.finished:
            await self.poll_once()
            if self.finished:
                break
            await self._sleep(self._next_delay())

    def _next_delay(self) -> float:
        if self.failures:
            return min(self.interval * (2 ** (self.failures - 1)), MAX_BACKOFF_SECONDS)
        return self.interval

    def _stale(self, seq: int) -> bool:
        return seq <= self._floor or seq <= self._applied

    def _accept(self, seq: int, result: Any) -> Optional[Any]:
        if self.finished or self._stale(seq):
            logger.debug("poll #%d discarded (applied=%d floor=%d)", seq, self._applied, self._floor)
            return None
        self._applied = seq
        self.failures = 0
        if self._is_pending(result):
            self.attempts += 1
        else:
            self.attempts = 0

        self._on_result(result)

        if self._is_final(result):
            self._finish()
            if self._on_final is not None:
                self._on_final(result)
        elif self.attempts >= self.max_attempts:
            self._time_out()
        return result

    def _failed(self, seq: int, exc: WondereloError) -> None:
        if self.finished or seq <= self._floor:
            logger.debug("poll #%d failure ignored: %s", seq, exc)
            return
        self.failures += 1
        self.attempts += 1
        logger.warning("poll #%d failed (%d/%d): %s", seq, self.attempts, self.max_attempts, exc)
        if isinstance(exc, AuthError):
            # the token will not start working by itself
            self._finish()
        if self._on_error is not None:
            self._on_error(exc)
        if not self.finished and self.attempts >= self.max_attempts:
            self._time_out()

    def _time_out(self) -> None:
        self._finish()
        logger.warning("polling gave up after %d attempts", self.attempts)
        if self._on_timeout is not None:
            self._on_timeout(PollTimeoutError(status=None, reason="timeout"))

    def _finish(self) -> None:
        self.finished = True
