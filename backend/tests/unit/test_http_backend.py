"""Unit tests for the REST backend, with the API mocked by pytest-httpx."""

import datetime

import httpx
import pytest

from client.http_backend import HttpBackend, error_from_response, iter_sse
from models.connection import (
    ChangeEvent,
    ChangeType,
    ConnectionRole,
    ConnectionStatus,
    ConnectionView,
)
from models.profile import DisplayProfile
from services.errors import (
    AlreadyPending,
    BackendUnavailable,
    InvalidState,
    NotAuthorized,
    NotFound,
)

API = "http://test/api"
NOW = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
async def backend():
    backend = HttpBackend(API)
    yield backend
    await backend.close()


def as_json(model):
    return model.model_dump(mode="json", by_alias=True)


class TestRequests:
    async def test_list_connections(self, backend, httpx_mock, record_factory):
        view = ConnectionView(
            record=record_factory(), profile=DisplayProfile(full_name="Bob Marley")
        )
        httpx_mock.add_response(
            method="GET",
            url=f"{API}/connections?role=requester&userId=alice",
            json=[as_json(view)],
        )

        views = await backend.list_connections("alice", ConnectionRole.requester)

        assert views == [view]

    async def test_list_connections_by_status(self, backend, httpx_mock):
        httpx_mock.add_response(
            method="GET",
            url=f"{API}/connections?role=recipient&userId=bob&status=accepted",
            json=[],
        )
        views = await backend.list_connections(
            "bob", ConnectionRole.recipient, ConnectionStatus.accepted
        )
        assert views == []

    async def test_payload_is_camel_case(self, backend, httpx_mock, record_factory):
        record = record_factory()
        payload = as_json(record)
        assert "requesterId" in payload
        httpx_mock.add_response(url=f"{API}/connections/c1", json=payload)

        assert await backend.get_connection("c1") == record

    async def test_find_between_nothing(self, backend, httpx_mock):
        httpx_mock.add_response(
            url=f"{API}/connections/between/alice/bob",
            content=b"null",
            headers={"content-type": "application/json"},
        )
        assert await backend.find_between("alice", "bob") is None

    async def test_create_connection(self, backend, httpx_mock, record_factory):
        record = record_factory()
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/connections",
            match_json={"requesterId": "alice", "recipientId": "bob"},
            status_code=201,
            json=as_json(record),
        )
        assert await backend.create_connection("alice", "bob") == record

    async def test_update_status(self, backend, httpx_mock, record_factory):
        record = record_factory(status=ConnectionStatus.accepted, seconds=1)
        httpx_mock.add_response(
            method="PATCH",
            url=f"{API}/connections/c1",
            match_json={"status": "accepted"},
            json=as_json(record),
        )
        updated = await backend.update_status("c1", ConnectionStatus.accepted, "bob")
        assert updated.status == ConnectionStatus.accepted

    async def test_get_profile(self, backend, httpx_mock):
        httpx_mock.add_response(
            url=f"{API}/profiles/bob",
            json={"fullName": "Bob Marley", "avatarUrl": None, "title": "Designer"},
        )
        profile = await backend.get_profile("bob")
        assert profile.display_name == "Bob Marley"
        assert profile.title == "Designer"


class TestErrors:
    async def test_rule_errors_come_back_typed(self, backend, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/connections",
            status_code=409,
            json={
                "detail": {"code": "already_pending", "message": "Already asked."}
            },
        )
        with pytest.raises(AlreadyPending) as error:
            await backend.create_connection("alice", "bob")
        assert error.value.message == "Already asked."

    async def test_reads_are_retried_once(self, backend, httpx_mock, record_factory):
        httpx_mock.add_response(url=f"{API}/connections/c1", status_code=503)
        httpx_mock.add_response(url=f"{API}/connections/c1", json=as_json(record_factory()))

        record = await backend.get_connection("c1")
        assert record.id == "c1"

    async def test_transport_errors_are_unavailable(self, backend, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("refused"), url=f"{API}/profiles/bob")
        httpx_mock.add_exception(httpx.ConnectError("refused"), url=f"{API}/profiles/bob")

        with pytest.raises(BackendUnavailable):
            await backend.get_profile("bob")

    async def test_writes_are_not_retried(self, backend, httpx_mock):
        httpx_mock.add_exception(
            httpx.ReadTimeout("slow"), method="DELETE", url=f"{API}/connections/c1"
        )
        with pytest.raises(BackendUnavailable):
            await backend.delete_connection("c1", "alice")

    @pytest.mark.parametrize(
        "status_code, body, expected",
        [
            (401, {"detail": "Not authenticated"}, NotAuthorized),
            (403, {"detail": {"code": "not_authorized", "message": "No"}}, NotAuthorized),
            (404, {"detail": "Not Found"}, NotFound),
            (409, {"detail": "Conflict"}, InvalidState),
            (500, {"detail": "boom"}, BackendUnavailable),
            (409, {"detail": {"code": "unheard_of", "message": "?"}}, BackendUnavailable),
            (502, None, BackendUnavailable),
        ],
    )
    def test_error_from_response(self, status_code, body, expected):
        if body is None:
            response = httpx.Response(status_code, text="<html>Bad gateway</html>")
        else:
            response = httpx.Response(status_code, json=body)
        assert isinstance(error_from_response(response), expected)


async def lines_of(text):
    for line in text.split("\n"):
        yield line


class TestFeed:
    @pytest.fixture
    def change(self, record_factory):
        return ChangeEvent(
            event_type=ChangeType.insert, new=record_factory(), commit_timestamp=NOW
        )

    async def test_iter_sse(self, change):
        stream = (
            'event: ready\ndata: {"userId": "bob"}\n\n'
            ": keepalive\n\n"
            f"event: change\ndata: {change.model_dump_json(by_alias=True)}\n\n"
            "event: other\ndata: {}\n\n"
            "event: change\ndata: not json\n\n"
        )
        items = [item async for item in iter_sse(lines_of(stream))]

        assert items == [None, None, change]

    async def test_subscribe(self, backend, httpx_mock, change):
        body = (
            'event: ready\ndata: {"userId": "bob"}\n\n'
            f"event: change\ndata: {change.model_dump_json(by_alias=True)}\n\n"
        )
        httpx_mock.add_response(
            url=f"{API}/connections/feed",
            content=body.encode(),
            headers={"content-type": "text/event-stream"},
        )

        items = [item async for item in backend.subscribe("bob")]

        assert items == [None, change]

    async def test_subscribe_unauthenticated(self, backend, httpx_mock):
        httpx_mock.add_response(
            url=f"{API}/connections/feed",
            status_code=401,
            json={"detail": "Not authenticated"},
        )
        with pytest.raises(NotAuthorized):
            async for _ in backend.subscribe("bob"):
                pass

    async def test_subscribe_network_failure(self, backend, httpx_mock):
        httpx_mock.add_exception(
            httpx.ConnectError("refused"), url=f"{API}/connections/feed"
        )
        with pytest.raises(BackendUnavailable):
            async for _ in backend.subscribe("bob"):
                pass
