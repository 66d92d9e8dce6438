"""Applies the realtime change feed to a connection store.

The feed is a responsiveness layer only: events may be lost while the
subscription is down, so every reconnection triggers a full reload.
"""

import asyncio
import contextlib
import logging
import time
from typing import Awaitable, Callable

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

import settings
from client.backend import ConnectionBackend
from client.cache import ProfileCache
from client.notifier import ToastNotifier
from client.retry import before_sleep_log_concise, feed_wait
from client.store import ConnectionStore
from models.connection import (
    ChangeEvent,
    ChangeType,
    ConnectionRecord,
    ConnectionStatus,
)
from services.errors import BackendUnavailable, ConnectionRuleError
from services.slack import SlackBot, slack
from utils.logs import ratelimited_log

logger = logging.getLogger("ideacollab.listener")


class ChangeFeedListener:
    def __init__(
        self,
        backend: ConnectionBackend,
        store: ConnectionStore,
        user_id: str,
        notifier: ToastNotifier | None = None,
        profiles: ProfileCache | None = None,
        on_reconnect: Callable[[], Awaitable] | None = None,
        alerts: SlackBot = slack,
    ):
        self.backend = backend
        self.store = store
        self.user_id = user_id
        self.notifier = notifier or ToastNotifier()
        self.profiles = profiles or ProfileCache(backend)
        self.on_reconnect = on_reconnect
        self.alerts = alerts

        self.alive = False
        self.reconnecting = False
        self.degraded = False
        self._connections = 0
        self._live_since = 0.0
        self._ready = asyncio.Event()
        self._task: asyncio.Task | None = None

    def start(self):
        if self._task is not None and not self._task.done():
            return
        self.alive = True
        self.degraded = False
        self._ready.clear()
        self._task = asyncio.create_task(self._run(), name=f"change-feed-{self.user_id}")

    async def stop(self):
        self.alive = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.debug(f"Change feed listener of {self.user_id} stopped")

    async def wait_ready(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"The change feed of {self.user_id} is not live yet")
            return False
        return True

    async def _run(self):
        while self.alive:
            retrying = AsyncRetrying(
                wait=feed_wait(),
                stop=stop_after_attempt(settings.FEED_RETRY_ATTEMPTS),
                retry=retry_if_exception_type(BackendUnavailable),
                before_sleep=self._before_sleep,
                reraise=True,
            )
            try:
                async for attempt in retrying:
                    with attempt:
                        await self._consume()
            except ConnectionRuleError as e:
                self._degrade(e)
                return
            except Exception as e:
                logger.exception(f"Change feed listener of {self.user_id} failed: {e}")
                self._degrade(e)
                return

    def _before_sleep(self, retry_state):
        self.reconnecting = True
        before_sleep_log_concise(logger, logging.INFO)(retry_state)

    def _degrade(self, error: Exception):
        self.degraded = True
        self.reconnecting = False
        ratelimited_log(
            logger.error, f"Giving up on the change feed of {self.user_id}: {error}"
        )
        self.alerts.alert(f"Change feed down for {self.user_id}, reload on mount only")

    async def _consume(self):
        """Follow one subscription; raises if it never came up."""
        connected = False
        try:
            async with contextlib.aclosing(self.backend.subscribe(self.user_id)) as feed:
                async for event in feed:
                    if not self.alive:
                        return
                    if not connected:
                        connected = True
                        await self._on_connected()
                    if event is not None:
                        await self.handle(event)
        except BackendUnavailable as e:
            if not connected:
                raise
            logger.warning(f"Lost the change feed of {self.user_id}: {e}")
        if not connected:
            raise BackendUnavailable("The change feed closed before going live.")
        if not self.alive:
            return
        if time.monotonic() - self._live_since < settings.FEED_STABLE_SECONDS:
            # counts as a failed attempt
            raise BackendUnavailable("The change feed dropped right after going live.")
        # a subscription that stayed up resets the backoff
        self.reconnecting = True

    async def _on_connected(self):
        self._connections += 1
        self._live_since = time.monotonic()
        self.reconnecting = False
        self._ready.set()
        logger.debug(f"Change feed of {self.user_id} is live")
        if self._connections > 1 and self.on_reconnect is not None:
            await self.on_reconnect()

    async def handle(self, event: ChangeEvent) -> bool:
        """Apply one event to the store, returns whether the store changed."""
        if not self.alive or not event.concerns(self.user_id):
            return False

        match event.event_type:
            case ChangeType.insert if event.new is not None:
                return await self._on_insert(event.new)
            case ChangeType.update if event.new is not None:
                return await self._on_update(event.new)
            case ChangeType.delete if event.old is not None:
                return self.store.remove_by_connection_id(event.old.id)
        logger.warning(f"Malformed change event: {event}")
        return False

    async def _on_insert(self, record: ConnectionRecord) -> bool:
        profile = await self.profiles.get(record.other_party(self.user_id))
        if not self.alive:
            return False
        is_new = self._is_new_state(record)
        changed = self.store.apply_mutation(record, profile)
        incoming = (
            record.recipient_id == self.user_id
            and record.status == ConnectionStatus.pending
        )
        if changed and is_new and incoming:
            self.notifier.info(f"New connection request from {profile.display_name}")
        return changed

    async def _on_update(self, record: ConnectionRecord) -> bool:
        is_new = self._is_new_state(record)
        changed = self.store.apply_mutation(record)
        if not changed:
            return False
        # the recipient is the one accepting, so only the requester hears about it
        if (
            is_new
            and record.status == ConnectionStatus.accepted
            and record.requester_id == self.user_id
        ):
            view = self.store.get(record.id)
            profile = view.profile if view and view.profile else None
            if profile is None:
                profile = await self.profiles.get(record.recipient_id)
            if self.alive:
                self.notifier.success(
                    f"{profile.display_name} accepted your connection request"
                )
        return True

    def _is_new_state(self, record: ConnectionRecord) -> bool:
        # redelivered events must not notify twice
        known = self.store.get(record.id)
        return known is None or known.record.status != record.status
