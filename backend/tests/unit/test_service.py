"""Unit tests for the connection request service."""

import asyncio

import pytest

from client.notifier import ToastLevel, ToastNotifier
from client.reconcile import Reconciler
from client.resolver import resolve_status
from client.service import ConnectionRequestService
from client.store import ConnectionStore
from models.connection import ConnectionStatus, Direction
from services.errors import BackendUnavailable, ErrorKind


@pytest.fixture
def make_service(local_backend, profiles):
    def _make(user_id, reload_after_mutation=False):
        store = ConnectionStore(user_id)
        reconciler = Reconciler(local_backend, store, user_id)
        return ConnectionRequestService(
            local_backend,
            store,
            notifier=ToastNotifier(),
            reconciler=reconciler,
            reload_after_mutation=reload_after_mutation,
        )

    return _make


class TestSendRequest:
    async def test_outgoing_pending_without_waiting_for_the_feed(self, make_service):
        service = make_service("alice")

        result = await service.send_request("alice", "bob")

        assert result.ok
        assert result.record.status == ConnectionStatus.pending
        status = resolve_status(service.store, "alice", "bob")
        assert status.status == "pending"
        assert status.direction == Direction.outgoing
        assert status.connection_id == result.record.id
        assert service.notifier.messages == ["Connection request sent"]

    async def test_second_request_is_already_pending(self, make_service):
        alice = make_service("alice")
        bob = make_service("bob")
        await alice.send_request("alice", "bob")

        again = await alice.send_request("alice", "bob")
        reverse = await bob.send_request("bob", "alice")

        assert again.error == ErrorKind.already_pending
        assert reverse.error == ErrorKind.already_pending
        assert alice.notifier.toasts[-1].level == ToastLevel.error

    async def test_already_connected(self, make_service):
        alice = make_service("alice")
        bob = make_service("bob")
        sent = await alice.send_request("alice", "bob")
        await bob.respond(sent.record.id, "accept", "bob")

        result = await alice.send_request("alice", "bob")
        assert result.error == ErrorKind.already_connected

    async def test_cannot_request_yourself(self, make_service):
        service = make_service("alice")
        result = await service.send_request("alice", "alice")
        assert result.error == ErrorKind.invalid_state
        assert len(service.store) == 0

    async def test_unknown_recipient(self, make_service):
        service = make_service("alice")
        result = await service.send_request("alice", "nobody")
        assert result.error == ErrorKind.not_found
        assert len(service.store) == 0

    async def test_request_again_after_rejection(self, make_service):
        alice = make_service("alice")
        bob = make_service("bob")
        first = await alice.send_request("alice", "bob")
        await bob.respond(first.record.id, "reject", "bob")

        second = await alice.send_request("alice", "bob")

        assert second.ok
        assert second.record.id != first.record.id
        assert second.record.updated_at > first.record.updated_at
        assert resolve_status(alice.store, "alice", "bob").status == "pending"

    async def test_concurrent_double_click(self, make_service, local_backend, mocker):
        service = make_service("alice")
        started = asyncio.Event()
        release = asyncio.Event()
        create = local_backend.create_connection

        async def slow_create(*args):
            started.set()
            await release.wait()
            return await create(*args)

        mocker.patch.object(local_backend, "create_connection", side_effect=slow_create)

        first = asyncio.create_task(service.send_request("alice", "bob"))
        await started.wait()
        second = await service.send_request("alice", "bob")
        release.set()

        assert second.error == ErrorKind.invalid_state
        assert (await first).ok

    async def test_backend_failure_leaves_the_store_untouched(
        self, make_service, local_backend, mocker
    ):
        service = make_service("alice")
        mocker.patch.object(
            local_backend, "create_connection", side_effect=BackendUnavailable()
        )

        result = await service.send_request("alice", "bob")

        assert result.error == ErrorKind.backend_unavailable
        assert len(service.store) == 0
        assert service.notifier.messages == ["The backend is unavailable."]

    async def test_unexpected_failure_is_reported_as_unavailable(
        self, make_service, local_backend, mocker
    ):
        service = make_service("alice")
        mocker.patch.object(
            local_backend, "find_between", side_effect=RuntimeError("boom")
        )

        result = await service.send_request("alice", "bob")
        assert result.error == ErrorKind.backend_unavailable


class TestRespond:
    async def test_accept(self, make_service):
        alice = make_service("alice")
        bob = make_service("bob")
        sent = await alice.send_request("alice", "bob")

        result = await bob.respond(sent.record.id, "accept", "bob")

        assert result.ok
        assert resolve_status(bob.store, "bob", "alice").status == "accepted"
        assert bob.notifier.messages == ["Connection request accepted"]

    async def test_double_accept_fails_the_second_time(self, make_service):
        alice = make_service("alice")
        bob = make_service("bob")
        sent = await alice.send_request("alice", "bob")

        first = await bob.respond(sent.record.id, "accept", "bob")
        second = await bob.respond(sent.record.id, "accept", "bob")

        assert first.ok
        assert second.error == ErrorKind.invalid_state

    async def test_requester_cannot_respond(self, make_service):
        alice = make_service("alice")
        sent = await alice.send_request("alice", "bob")

        result = await alice.respond(sent.record.id, "accept", "alice")
        assert result.error == ErrorKind.not_authorized

    async def test_unknown_action(self, make_service):
        bob = make_service("bob")
        result = await bob.respond("c1", "maybe", "bob")
        assert result.error == ErrorKind.invalid_state

    async def test_unknown_connection(self, make_service):
        bob = make_service("bob")
        result = await bob.respond("missing", "accept", "bob")
        assert result.error == ErrorKind.not_found

    async def test_reject_marks_instead_of_removing(self, make_service):
        alice = make_service("alice", reload_after_mutation=True)
        bob = make_service("bob", reload_after_mutation=True)
        sent = await alice.send_request("alice", "bob")

        result = await bob.respond(sent.record.id, "reject", "bob")
        await alice.reconciler.reload()

        assert result.ok
        assert resolve_status(bob.store, "bob", "alice").status == "rejected"
        assert resolve_status(alice.store, "alice", "bob").status == "rejected"


class TestCancel:
    async def test_cancel_removes_for_both_parties(self, make_service):
        alice = make_service("alice", reload_after_mutation=True)
        bob = make_service("bob", reload_after_mutation=True)
        sent = await alice.send_request("alice", "bob")
        await bob.reconciler.reload()
        assert bob.pending_requests_count() == 1

        result = await alice.cancel(sent.record.id, "alice")
        await bob.reconciler.reload()

        assert result.ok
        assert resolve_status(alice.store, "alice", "bob").status == "none"
        assert resolve_status(bob.store, "bob", "alice").status == "none"
        assert bob.pending_requests_count() == 0

    async def test_recipient_cannot_cancel(self, make_service):
        alice = make_service("alice")
        bob = make_service("bob")
        sent = await alice.send_request("alice", "bob")

        result = await bob.cancel(sent.record.id, "bob")
        assert result.error == ErrorKind.not_authorized

    async def test_cannot_cancel_an_accepted_connection(self, make_service):
        alice = make_service("alice")
        bob = make_service("bob")
        sent = await alice.send_request("alice", "bob")
        await bob.respond(sent.record.id, "accept", "bob")

        result = await alice.cancel(sent.record.id, "alice")
        assert result.error == ErrorKind.invalid_state


class TestReloadAfterMutation:
    async def test_broken_reload_does_not_fail_the_request(
        self, make_service, local_backend, mocker
    ):
        service = make_service("alice", reload_after_mutation=True)
        mocker.patch.object(
            local_backend, "list_connections", side_effect=ValueError("Expecting value")
        )

        result = await service.send_request("alice", "bob")

        assert result.ok
        assert resolve_status(service.store, "alice", "bob").status == "pending"
        assert service.notifier.messages == ["Connection request sent"]
