"""In-process realtime change feed for connection rows.

Each subscription is scoped to one user: it receives the events of the rows
where that user is the requester or the recipient. Delivery is best-effort: a
subscriber that cannot keep up is cut off and has to reconnect and reconcile.
"""

import asyncio
import logging

import settings
from models.connection import ChangeEvent
from services.errors import BackendUnavailable

logger = logging.getLogger("ideacollab.feed")

_CLOSED = object()
_DROPPED = object()


class FeedSubscription:
    def __init__(self, feed: "ChangeFeed", user_id: str, maxsize: int):
        self.feed = feed
        self.user_id = user_id
        self.closed = False
        self.dropped = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize

    def offer(self, event: ChangeEvent) -> bool:
        if self.closed:
            return False
        if self._queue.qsize() >= self._maxsize:
            logger.warning(f"Subscriber {self.user_id} is too slow, dropping it")
            self.dropped = True
            self._terminate(_DROPPED)
            return False
        self._queue.put_nowait(event)
        return True

    def close(self):
        if not self.closed:
            self._terminate(_CLOSED)

    def _terminate(self, sentinel):
        self.closed = True
        self.feed.discard(self)
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(sentinel)

    async def get(self, timeout: float | None = None) -> ChangeEvent | None:
        """Next event, None on timeout. Raises StopAsyncIteration once closed."""
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is _CLOSED:
            raise StopAsyncIteration
        if item is _DROPPED:
            raise BackendUnavailable("The change feed dropped events.")
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self.get()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class ChangeFeed:
    """Fan-out of connection change events to per-user subscriptions.

    `publish` must run on the event loop thread that owns the subscriptions.
    """

    def __init__(self, queue_size: int | None = None):
        self.queue_size = queue_size or settings.FEED_QUEUE_SIZE
        self._subscriptions: dict[str, set[FeedSubscription]] = {}

    def subscribe(self, user_id: str) -> FeedSubscription:
        subscription = FeedSubscription(self, user_id, self.queue_size)
        self._subscriptions.setdefault(user_id, set()).add(subscription)
        logger.debug(f"{user_id} subscribed to the change feed")
        return subscription

    def discard(self, subscription: FeedSubscription):
        subscriptions = self._subscriptions.get(subscription.user_id)
        if subscriptions is None:
            return
        subscriptions.discard(subscription)
        if not subscriptions:
            del self._subscriptions[subscription.user_id]

    def publish(self, event: ChangeEvent) -> int:
        user_ids = set()
        for record in (event.old, event.new):
            if record is not None:
                user_ids.update((record.requester_id, record.recipient_id))

        delivered = 0
        for user_id in user_ids:
            for subscription in list(self._subscriptions.get(user_id, ())):
                if subscription.offer(event):
                    delivered += 1
        logger.debug(
            f"Published {event.event_type.value} of {event.record.id} to {delivered} subscribers"
        )
        return delivered

    def subscriber_count(self, user_id: str | None = None) -> int:
        if user_id is not None:
            return len(self._subscriptions.get(user_id, ()))
        return sum(len(s) for s in self._subscriptions.values())

    def close_all(self):
        for subscriptions in list(self._subscriptions.values()):
            for subscription in list(subscriptions):
                subscription.close()


change_feed = ChangeFeed()
