"""Per-session event fan-out.

The supervisor publishes events for a session without knowing who, if
anyone, is listening.  Each listener (typically one WebSocket connection)
holds a :class:`Subscription` with its own unbounded queue, so publishing
never blocks and a slow listener only delays itself.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import AsyncIterator, Dict, Optional, Set

from .models import SessionEvent

logger = logging.getLogger(__name__)


class Subscription:
    """Queue of events for one listener on one session."""

    def __init__(self, hub: "EventHub", session_id: str) -> None:
        self.hub = hub
        self.session_id = session_id
        self._queue: "asyncio.Queue[Optional[SessionEvent]]" = asyncio.Queue()
        self._closed = False

    def put(self, event: SessionEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    async def get(self) -> SessionEvent:
        """Return the next event.  Raises ``StopAsyncIteration`` once closed."""
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.hub._remove(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[SessionEvent]:
        return self

    async def __anext__(self) -> SessionEvent:
        return await self.get()


class EventHub:
    """Publish session events to every current subscriber of that session."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, Set[Subscription]] = defaultdict(set)

    def subscribe(self, session_id: str) -> Subscription:
        subscription = Subscription(self, session_id)
        self._subscribers[session_id].add(subscription)
        return subscription

    def emit(self, session_id: str, event: SessionEvent) -> None:
        """Deliver ``event`` to the session's subscribers immediately."""
        subscribers = self._subscribers.get(session_id)
        if not subscribers:
            logger.debug("No subscriber for %s event on session %s", event.type, session_id)
            return
        for subscription in list(subscribers):
            subscription.put(event)

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.session_id)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.session_id]
