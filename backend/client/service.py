import logging
from enum import Enum
from typing import Awaitable, Callable

import settings
from client.backend import ConnectionBackend
from client.notifier import ToastNotifier
from client.reconcile import Reconciler
from client.results import Result
from client.store import ConnectionStore
from models.connection import ConnectionRecord, ConnectionStatus, canonical_pair
from services.errors import (
    AlreadyConnected,
    AlreadyPending,
    BackendUnavailable,
    ConnectionRuleError,
    InvalidState,
    NotAuthorized,
)

logger = logging.getLogger("ideacollab.requests")


class ResponseAction(str, Enum):
    accept = "accept"
    reject = "reject"

    @property
    def status(self) -> ConnectionStatus:
        if self == ResponseAction.accept:
            return ConnectionStatus.accepted
        return ConnectionStatus.rejected


class ConnectionRequestService:
    """Mutating operations on connections, applied optimistically to the store.

    Every operation returns a `Result` and shows a toast; on failure the store
    is left untouched.
    """

    def __init__(
        self,
        backend: ConnectionBackend,
        store: ConnectionStore,
        notifier: ToastNotifier | None = None,
        reconciler: Reconciler | None = None,
        reload_after_mutation: bool | None = None,
    ):
        self.backend = backend
        self.store = store
        self.notifier = notifier or ToastNotifier()
        self.reconciler = reconciler
        if reload_after_mutation is None:
            reload_after_mutation = settings.RELOAD_AFTER_MUTATION
        self.reload_after_mutation = reload_after_mutation
        self._in_flight: set[tuple[str, ...]] = set()

    async def send_request(self, from_user_id: str, to_user_id: str) -> Result:
        return await self._run(
            ("request", *canonical_pair(from_user_id, to_user_id)),
            lambda: self._send_request(from_user_id, to_user_id),
            "Connection request sent",
        )

    async def respond(
        self, connection_id: str, action: ResponseAction | str, acting_user_id: str
    ) -> Result:
        try:
            action = ResponseAction(action)
        except ValueError:
            return self._failed(InvalidState(f"Unknown response {action!r}."))
        return await self._run(
            ("connection", connection_id),
            lambda: self._respond(connection_id, action, acting_user_id),
            f"Connection request {action.status.value}",
        )

    async def cancel(self, connection_id: str, acting_user_id: str) -> Result:
        return await self._run(
            ("connection", connection_id),
            lambda: self._cancel(connection_id, acting_user_id),
            "Connection request cancelled",
        )

    def pending_requests_count(self) -> int:
        return self.store.pending_count

    async def _run(
        self,
        key: tuple[str, ...],
        operation: Callable[[], Awaitable[ConnectionRecord]],
        success_message: str,
    ) -> Result:
        if key in self._in_flight:
            return self._failed(InvalidState("This request is already being processed."))

        self._in_flight.add(key)
        try:
            record = await operation()
        except ConnectionRuleError as e:
            return self._failed(e)
        except Exception as e:
            logger.exception(f"Unexpected failure of {key[0]}: {e}")
            return self._failed(BackendUnavailable())
        finally:
            self._in_flight.discard(key)

        self.notifier.success(success_message)
        if self.reload_after_mutation and self.reconciler is not None:
            await self.reconciler.reload()
        return Result.success(record, success_message)

    def _failed(self, error: ConnectionRuleError) -> Result:
        logger.info(f"Connection operation failed: {error.kind.value} - {error.message}")
        self.notifier.error(error.message)
        return Result.from_error(error)

    async def _send_request(self, from_user_id: str, to_user_id: str) -> ConnectionRecord:
        if from_user_id == to_user_id:
            raise InvalidState("Cannot connect with yourself.")

        existing = await self.backend.find_between(from_user_id, to_user_id)
        if existing is not None:
            match existing.status:
                case ConnectionStatus.pending:
                    raise AlreadyPending()
                case ConnectionStatus.accepted:
                    raise AlreadyConnected()

        record = await self.backend.create_connection(from_user_id, to_user_id)
        self.store.apply_mutation(record)
        return record

    async def _respond(
        self, connection_id: str, action: ResponseAction, acting_user_id: str
    ) -> ConnectionRecord:
        record = await self.backend.get_connection(connection_id)
        if acting_user_id != record.recipient_id:
            raise NotAuthorized("Only the recipient can respond to a connection request.")
        if record.status != ConnectionStatus.pending:
            raise InvalidState(f"The request was already {record.status.value}.")

        updated = await self.backend.update_status(
            connection_id, action.status, acting_user_id
        )
        self.store.apply_mutation(updated)
        return updated

    async def _cancel(self, connection_id: str, acting_user_id: str) -> ConnectionRecord:
        record = await self.backend.get_connection(connection_id)
        if acting_user_id != record.requester_id:
            raise NotAuthorized("Only the requester can cancel a connection request.")
        if record.status != ConnectionStatus.pending:
            raise InvalidState("Only pending requests can be cancelled.")

        await self.backend.delete_connection(connection_id, acting_user_id)
        self.store.remove_by_connection_id(connection_id)
        return record
