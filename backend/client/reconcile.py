import asyncio
import logging

from client.backend import ConnectionBackend
from client.cache import ProfileCache
from client.results import Result
from client.store import ConnectionStore
from models.connection import ConnectionRole, ConnectionView
from services.errors import BackendUnavailable, ConnectionRuleError
from utils.logs import time_it

logger = logging.getLogger("ideacollab.reconcile")


class Reconciler:
    """Rebuilds a store from the backend, correcting any drift of the feed."""

    def __init__(
        self,
        backend: ConnectionBackend,
        store: ConnectionStore,
        user_id: str,
        profiles: ProfileCache | None = None,
    ):
        self.backend = backend
        self.store = store
        self.user_id = user_id
        self.profiles = profiles or ProfileCache(backend)

    @time_it
    async def reload(self) -> Result:
        # feed events applied while the snapshot is fetched must survive it
        since = self.store.mark()
        try:
            views = await self._fetch()
        except ConnectionRuleError as e:
            logger.warning(f"Cannot reload the connections of {self.user_id}: {e}")
            return Result.from_error(e)
        except Exception as e:
            logger.exception(f"Unexpected failure reloading {self.user_id}: {e}")
            return Result.from_error(BackendUnavailable())

        self.store.load(views, since=since)
        return Result.success()

    async def _fetch(self) -> list[ConnectionView]:
        sent = await self.backend.list_connections(
            self.user_id, ConnectionRole.requester
        )
        received = await self.backend.list_connections(
            self.user_id, ConnectionRole.recipient
        )

        views = []
        for view in [*sent, *received]:
            other_id = view.record.other_party(self.user_id)
            if view.profile is None:
                # the join came back empty, fall back to a direct fetch
                profile = await self.profiles.get(other_id)
            else:
                profile = view.profile
                self.profiles.remember(other_id, profile)
            views.append(ConnectionView(record=view.record, profile=profile))
        return views

    async def run_periodically(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            await self.reload()
