"""Client-side cache of the connections touching the current user.

One map keyed by connection id plus an index keyed by the other party's id
(the owner is fixed, so this is equivalent to indexing the unordered pair).
The UI-facing partitions are derived from that single map on read.

The store has no authority: it is rebuilt by `load` and patched by
`apply_mutation`/`remove_by_connection_id`, where the most recent version of a
row wins regardless of the order in which patches arrive. A snapshot taken
while patches keep flowing is loaded with the `mark()` read before fetching
it, so that the patches applied in the meantime are not undone.
"""

import logging
from typing import Iterable

from models.connection import (
    ConnectionRecord,
    ConnectionStatus,
    ConnectionView,
    Direction,
)
from models.profile import DisplayProfile

logger = logging.getLogger("ideacollab.store")


class ConnectionStore:
    def __init__(self, user_id: str):
        self.user_id = user_id
        self._by_id: dict[str, ConnectionView] = {}
        self._by_other: dict[str, str] = {}
        # deleted ids, so that late events cannot resurrect them
        self._removed: set[str] = set()
        # id -> position of its last patch, see `mark`
        self._patched: dict[str, int] = {}
        self._position = 0

    def __len__(self):
        return len(self._by_id)

    def __contains__(self, connection_id: str):
        return connection_id in self._by_id

    def mark(self) -> int:
        """Current position in the stream of patches, to be passed to `load`."""
        return self._position

    def load(self, views: Iterable[ConnectionView], since: int | None = None):
        """Replace the whole content with a fresh snapshot from the backend.

        With `since`, the rows patched after that mark are merged back on top
        of the snapshot (the newest version wins) and the ids removed after it
        stay removed.
        """
        recent = set()
        if since is not None:
            recent = {cid for cid, at in self._patched.items() if at > since}
        previous = dict(self._by_id)

        self._by_id.clear()
        self._by_other.clear()
        for view in views:
            if view.id in self._removed:
                if view.id in recent:
                    continue
                self._removed.discard(view.id)
            self._put(view.record, view.profile)

        for connection_id in recent:
            view = previous.get(connection_id)
            if view is None:
                continue
            loaded = self._by_id.get(connection_id)
            if loaded is None or loaded.record != view.record:
                self._merge(view.record, view.profile)
        logger.debug(f"Loaded {len(self._by_id)} connections for {self.user_id}")

    def apply_mutation(
        self, record: ConnectionRecord, profile: DisplayProfile | None = None
    ) -> bool:
        """Insert or update a row, returns False when the patch was stale."""
        changed = self._merge(record, profile)
        if changed:
            self._touch(record.id)
        return changed

    def _merge(self, record: ConnectionRecord, profile: DisplayProfile | None) -> bool:
        if not record.involves(self.user_id):
            return False
        if record.id in self._removed:
            logger.debug(f"Ignoring update of removed connection {record.id}")
            return False

        current = self._by_id.get(record.id)
        if current is None:
            # A different row may describe the same pair, the newest one wins
            other_id = self._by_other.get(record.other_party(self.user_id))
            current = self._by_id.get(other_id) if other_id else None
        if current is not None and not record.supersedes(current.record):
            logger.debug(f"Ignoring stale version of connection {record.id}")
            return False

        if profile is None and current is not None:
            profile = current.profile
        self._put(record, profile)
        return True

    def remove_by_connection_id(self, connection_id: str) -> bool:
        self._removed.add(connection_id)
        self._touch(connection_id)
        view = self._by_id.pop(connection_id, None)
        if view is None:
            return False
        other = view.record.other_party(self.user_id)
        if self._by_other.get(other) == connection_id:
            del self._by_other[other]
        return True

    def _touch(self, connection_id: str):
        self._position += 1
        self._patched[connection_id] = self._position

    def _put(self, record: ConnectionRecord, profile: DisplayProfile | None):
        other = record.other_party(self.user_id)
        previous_id = self._by_other.get(other)
        if previous_id is not None and previous_id != record.id:
            self._by_id.pop(previous_id, None)
        self._by_id[record.id] = ConnectionView(record=record, profile=profile)
        self._by_other[other] = record.id

    # Lookups

    def get(self, connection_id: str) -> ConnectionView | None:
        return self._by_id.get(connection_id)

    def lookup(self, other_user_id: str) -> ConnectionView | None:
        connection_id = self._by_other.get(other_user_id)
        return self._by_id.get(connection_id) if connection_id else None

    def records(self) -> list[ConnectionRecord]:
        return [view.record for view in self._by_id.values()]

    # Derived views, newest first

    def _select(self, status: ConnectionStatus, direction: Direction | None = None):
        views = [
            view
            for view in self._by_id.values()
            if view.record.status == status
            and (direction is None or view.record.direction_for(self.user_id) == direction)
        ]
        return sorted(views, key=lambda v: v.record.updated_at, reverse=True)

    @property
    def connections(self) -> list[ConnectionView]:
        return self._select(ConnectionStatus.accepted)

    @property
    def incoming_pending(self) -> list[ConnectionView]:
        return self._select(ConnectionStatus.pending, Direction.incoming)

    @property
    def outgoing_pending(self) -> list[ConnectionView]:
        return self._select(ConnectionStatus.pending, Direction.outgoing)

    @property
    def pending_count(self) -> int:
        return len(self.incoming_pending)
