"""
Cooperative cancellation for in-flight fetches.

A caller cancels a fetch by setting an asyncio.Event. The event is checked
before every attempt and raced against the network call and every wait.
Cancelling the surrounding asyncio task is not a cancellation signal in this
sense; asyncio.CancelledError propagates as usual.
"""

import asyncio
from typing import Any, Awaitable, Dict, Optional
import logging

from .exceptions import RequestCancelled

logger = logging.getLogger(__name__)


def raise_if_cancelled(cancel_event: Optional[asyncio.Event]):
    if cancel_event is not None and cancel_event.is_set():
        raise RequestCancelled('Request cancelled by caller')


async def until_cancelled(awaitable: Awaitable, cancel_event: Optional[asyncio.Event]) -> Any:
    """
    Await ``awaitable`` unless ``cancel_event`` is set first.

    Raises:
        RequestCancelled: the event was set before the awaitable finished;
            the awaitable has been cancelled
    """
    if cancel_event is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Cancelled request ended with: %s", task.exception())
    raise RequestCancelled('Request cancelled by caller')


class SupersedingRequests:
    """
    Hands out cancel events so that a newer request supersedes an older one.

    Usage:
        requests = SupersedingRequests()
        cancel = requests.begin('live:12')   # cancels any older live:12 call
        result = await fetcher.get(descriptor, key, cancel_event=cancel)
        requests.finish('live:12', cancel)
    """

    def __init__(self):
        self._events: Dict[str, asyncio.Event] = {}

    def begin(self, key: str) -> asyncio.Event:
        """Cancel the in-flight request for ``key`` and return a fresh event."""
        previous = self._events.get(key)
        if previous is not None and not previous.is_set():
            logger.debug("Superseding in-flight request for %s", key)
            previous.set()
        event = asyncio.Event()
        self._events[key] = event
        return event

    def finish(self, key: str, event: asyncio.Event):
        """Forget ``event`` if it is still the current one for ``key``."""
        if self._events.get(key) is event:
            del self._events[key]

    def cancel_all(self):
        for event in self._events.values():
            event.set()
        self._events.clear()

    def __len__(self):
        return len(self._events)
