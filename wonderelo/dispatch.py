"""One dispatcher per participant action; a second call while the first is in flight is ignored."""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Optional

from .errors import ServerError, WondereloError

logger = logging.getLogger(__name__)


def in_thread(func: Callable[..., Any]) -> Callable[..., Awaitable[Any]]:
    """Run a blocking client call off the event loop."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        return await asyncio.to_thread(func, *args, **kwargs)

    return wrapper


class ActionDispatcher:
    def __init__(
        self,
        name: str,
        call: Callable[..., Awaitable[Any]],
        on_start: Optional[Callable[[], None]] = None,
        on_success: Optional[Callable[[Any], None]] = None,
        on_error: Optional[Callable[[WondereloError], None]] = None,
    ):
        self.name = name
        self._call = call
        self._on_start = on_start
        self._on_success = on_success
        self._on_error = on_error
        self.in_flight = False
        self.calls = 0

    async def __call__(self, *args, **kwargs) -> Optional[Any]:
        if self.in_flight:
            logger.debug("%s already in flight, ignoring", self.name)
            return None

        self.in_flight = True
        self.calls += 1
        error = None
        try:
            if self._on_start is not None:
                self._on_start()
            result = await self._call(*args, **kwargs)
        except WondereloError as exc:
            logger.warning("%s failed: %s", self.name, exc)
            error = exc
        except Exception:
            logger.exception("%s failed unexpectedly", self.name)
            error = ServerError(reason="unexpected")
        finally:
            self.in_flight = False

        if error is not None:
            if self._on_error is not None:
                self._on_error(error)
            return None
        if self._on_success is not None:
            self._on_success(result)
        return result
