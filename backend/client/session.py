"""Wiring of the connection features for one signed-in user.

The session owns the store, keeps it in sync with the change feed while
mounted and exposes the request operations with their UI-facing helpers.
"""

import asyncio
import contextlib
import logging

import settings
from client.backend import ConnectionBackend
from client.cache import ProfileCache
from client.listener import ChangeFeedListener
from client.notifier import ToastNotifier
from client.reconcile import Reconciler
from client.resolver import (
    ConnectAction,
    RelationshipStatus,
    connect_action,
    resolve_status,
)
from client.results import Result
from client.service import ConnectionRequestService, ResponseAction
from client.store import ConnectionStore
from models.connection import ConnectionView

logger = logging.getLogger("ideacollab.session")


class ConnectionSession:
    def __init__(
        self,
        backend: ConnectionBackend,
        user_id: str,
        notifier: ToastNotifier | None = None,
        reload_after_mutation: bool | None = None,
        reconcile_interval: float | None = None,
    ):
        self.backend = backend
        self.user_id = user_id
        self.notifier = notifier or ToastNotifier()
        self.store = ConnectionStore(user_id)
        self.profiles = ProfileCache(backend)
        self.reconciler = Reconciler(backend, self.store, user_id, self.profiles)
        self.service = ConnectionRequestService(
            backend,
            self.store,
            notifier=self.notifier,
            reconciler=self.reconciler,
            reload_after_mutation=reload_after_mutation,
        )
        self.listener = ChangeFeedListener(
            backend,
            self.store,
            user_id,
            notifier=self.notifier,
            profiles=self.profiles,
            on_reconnect=self.reconciler.reload,
        )
        if reconcile_interval is None:
            reconcile_interval = settings.RECONCILE_INTERVAL_SECONDS
        self.reconcile_interval = reconcile_interval
        self._periodic: asyncio.Task | None = None

    async def mount(self, ready_timeout: float | None = 5) -> Result:
        """Subscribe first and then load, so no change falls in between."""
        self.listener.start()
        await self.listener.wait_ready(ready_timeout)
        result = await self.reconciler.reload()
        if not result:
            self.notifier.error("Could not load your connections.")
        if self.reconcile_interval and self._periodic is None:
            self._periodic = asyncio.create_task(
                self.reconciler.run_periodically(self.reconcile_interval)
            )
        return result

    async def unmount(self):
        periodic, self._periodic = self._periodic, None
        if periodic is not None:
            periodic.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await periodic
        await self.listener.stop()
        logger.debug(f"Connection session of {self.user_id} unmounted")

    async def __aenter__(self):
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.unmount()

    # Relationship with another user

    def status_with(self, other_user_id: str) -> RelationshipStatus:
        return resolve_status(self.store, self.user_id, other_user_id)

    def connect_action(self, other_user_id: str) -> ConnectAction:
        return connect_action(self.status_with(other_user_id))

    # Operations

    async def send_request(self, to_user_id: str) -> Result:
        return await self.service.send_request(self.user_id, to_user_id)

    async def accept(self, connection_id: str) -> Result:
        return await self.service.respond(
            connection_id, ResponseAction.accept, self.user_id
        )

    async def reject(self, connection_id: str) -> Result:
        return await self.service.respond(
            connection_id, ResponseAction.reject, self.user_id
        )

    async def cancel(self, connection_id: str) -> Result:
        return await self.service.cancel(connection_id, self.user_id)

    # Lists

    @property
    def connections(self) -> list[ConnectionView]:
        return self.store.connections

    @property
    def incoming_pending(self) -> list[ConnectionView]:
        return self.store.incoming_pending

    @property
    def outgoing_pending(self) -> list[ConnectionView]:
        return self.store.outgoing_pending

    @property
    def pending_count(self) -> int:
        return self.service.pending_requests_count()
