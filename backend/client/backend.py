from abc import ABC, abstractmethod
from typing import AsyncIterator

from models.connection import (
    ChangeEvent,
    ConnectionRecord,
    ConnectionRole,
    ConnectionStatus,
    ConnectionView,
)
from models.profile import DisplayProfile


class ConnectionBackend(ABC):
    """What the client session needs from the hosted backend.

    Every method may raise a `ConnectionRuleError`; transport and storage
    failures surface as `BackendUnavailable`.
    """

    @abstractmethod
    async def list_connections(
        self,
        user_id: str,
        role: ConnectionRole,
        status: ConnectionStatus | None = None,
    ) -> list[ConnectionView]:
        """Connections where `user_id` has `role`, with the other party's profile.

        The profile is None when the join found nothing.
        """

    @abstractmethod
    async def find_between(self, user_a: str, user_b: str) -> ConnectionRecord | None:
        """The active row of the pair, else its latest one, in either direction."""

    @abstractmethod
    async def get_connection(self, connection_id: str) -> ConnectionRecord: ...

    @abstractmethod
    async def create_connection(
        self, requester_id: str, recipient_id: str
    ) -> ConnectionRecord: ...

    @abstractmethod
    async def update_status(
        self, connection_id: str, status: ConnectionStatus, acting_user_id: str
    ) -> ConnectionRecord: ...

    @abstractmethod
    async def delete_connection(self, connection_id: str, acting_user_id: str): ...

    @abstractmethod
    async def get_profile(self, user_id: str) -> DisplayProfile: ...

    @abstractmethod
    def subscribe(self, user_id: str) -> AsyncIterator[ChangeEvent | None]:
        """Push stream of the changes to rows where `user_id` takes part.

        A `None` is yielded once the subscription is live and then as a
        heartbeat while idle. The iteration ending means the subscription
        was lost.
        """

    async def close(self):
        pass
