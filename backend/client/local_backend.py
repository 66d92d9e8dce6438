import logging
from contextlib import contextmanager
from typing import AsyncIterator, Generator

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

import settings
from client.backend import ConnectionBackend
from models.connection import (
    ChangeEvent,
    ConnectionRecord,
    ConnectionRole,
    ConnectionStatus,
    ConnectionView,
)
from models.profile import DisplayProfile
from services import connections
from services.change_feed import ChangeFeed, change_feed
from services.errors import BackendUnavailable

logger = logging.getLogger("ideacollab.backend.local")


class LocalBackend(ConnectionBackend):
    """Backend running in the same process: the database plus the change feed."""

    def __init__(self, engine, feed: ChangeFeed = change_feed):
        self.engine = engine
        self.feed = feed

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as e:
            logger.exception(f"Database failure: {e}")
            raise BackendUnavailable(str(e)) from e

    async def list_connections(
        self,
        user_id: str,
        role: ConnectionRole,
        status: ConnectionStatus | None = None,
    ) -> list[ConnectionView]:
        with self._session() as session:
            rows = connections.list_connections(
                session, user_id=user_id, role=role, status=status
            )
            return [
                ConnectionView(
                    record=ConnectionRecord.model_validate(connection),
                    profile=DisplayProfile.from_profile(profile) if profile else None,
                )
                for connection, profile in rows
            ]

    async def find_between(self, user_a: str, user_b: str) -> ConnectionRecord | None:
        with self._session() as session:
            connection = connections.find_connection_between(session, user_a, user_b)
            return ConnectionRecord.model_validate(connection) if connection else None

    async def get_connection(self, connection_id: str) -> ConnectionRecord:
        with self._session() as session:
            connection = connections.get_connection(session, connection_id)
            return ConnectionRecord.model_validate(connection)

    async def create_connection(
        self, requester_id: str, recipient_id: str
    ) -> ConnectionRecord:
        with self._session() as session:
            connection = connections.request_connection(
                session,
                requester_id=requester_id,
                recipient_id=recipient_id,
                feed=self.feed,
            )
            return ConnectionRecord.model_validate(connection)

    async def update_status(
        self, connection_id: str, status: ConnectionStatus, acting_user_id: str
    ) -> ConnectionRecord:
        with self._session() as session:
            connection = connections.respond_to_connection(
                session,
                connection_id=connection_id,
                acting_user_id=acting_user_id,
                status=status,
                feed=self.feed,
            )
            return ConnectionRecord.model_validate(connection)

    async def delete_connection(self, connection_id: str, acting_user_id: str):
        with self._session() as session:
            connections.cancel_connection(
                session,
                connection_id=connection_id,
                acting_user_id=acting_user_id,
                feed=self.feed,
            )

    async def get_profile(self, user_id: str) -> DisplayProfile:
        with self._session() as session:
            return connections.get_display_profile(session, user_id)

    async def subscribe(self, user_id: str) -> AsyncIterator[ChangeEvent | None]:
        async with self.feed.subscribe(user_id) as subscription:
            yield None
            while True:
                try:
                    event = await subscription.get(
                        timeout=settings.FEED_KEEPALIVE_SECONDS
                    )
                except StopAsyncIteration:
                    return
                yield event
