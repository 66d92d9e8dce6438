"""Backend reached over the REST API, with the change feed as Server-Sent Events."""

import logging
from typing import AsyncIterator

import httpx
from pydantic import ValidationError

import settings
from client.backend import ConnectionBackend
from client.retry import read_retry
from models.connection import (
    ChangeEvent,
    ConnectionRecord,
    ConnectionRole,
    ConnectionStatus,
    ConnectionView,
)
from models.profile import DisplayProfile
from services.errors import (
    BackendUnavailable,
    ConnectionRuleError,
    InvalidState,
    NotAuthorized,
    NotFound,
)

logger = logging.getLogger("ideacollab.backend.http")

_IGNORED = object()


def error_from_response(response: httpx.Response) -> ConnectionRuleError:
    """Turn an error response of the API back into the rule it violated"""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    detail = payload.get("detail") if isinstance(payload, dict) else None
    if isinstance(detail, dict) and "code" in detail:
        return ConnectionRuleError.from_kind(detail["code"], detail.get("message"))

    message = detail if isinstance(detail, str) else None
    match response.status_code:
        case 401 | 403:
            return NotAuthorized(message)
        case 404:
            return NotFound(message)
        case 409:
            return InvalidState(message)
    return BackendUnavailable(
        f"Unexpected response {response.status_code}: {response.text[:200]}"
    )


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[ChangeEvent | None]:
    """Parse a text/event-stream into change events.

    The `ready` event and the keepalive comments come out as None.
    """
    event_name, data = "message", []
    async for line in lines:
        if not line:
            if data:
                dispatched = _dispatch(event_name, "\n".join(data))
                if dispatched is not _IGNORED:
                    yield dispatched
            event_name, data = "message", []
            continue
        if line.startswith(":"):
            yield None
            continue
        field, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if field == "event":
            event_name = value
        elif field == "data":
            data.append(value)


def _dispatch(event_name: str, data: str):
    match event_name:
        case "ready":
            return None
        case "change":
            try:
                return ChangeEvent.model_validate_json(data)
            except ValidationError as e:
                logger.warning(f"Skipping a malformed change event: {e}")
                return _IGNORED
    logger.debug(f"Ignoring feed event {event_name}")
    return _IGNORED


class HttpBackend(ConnectionBackend):
    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        cookies: dict | None = None,
    ):
        self.client = client or httpx.AsyncClient(
            base_url=base_url or settings.API_URL,
            cookies=cookies,
            timeout=10.0,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    async def close(self):
        await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise BackendUnavailable(f"{method} {url} failed: {e}") from e
        if response.is_error:
            raise error_from_response(response)
        return response

    @read_retry()
    async def list_connections(
        self,
        user_id: str,
        role: ConnectionRole,
        status: ConnectionStatus | None = None,
    ) -> list[ConnectionView]:
        params = {"role": role.value, "userId": user_id}
        if status is not None:
            params["status"] = status.value
        response = await self._request("GET", "/connections", params=params)
        return [ConnectionView.model_validate(item) for item in response.json()]

    @read_retry()
    async def find_between(self, user_a: str, user_b: str) -> ConnectionRecord | None:
        response = await self._request("GET", f"/connections/between/{user_a}/{user_b}")
        payload = response.json()
        return ConnectionRecord.model_validate(payload) if payload else None

    @read_retry()
    async def get_connection(self, connection_id: str) -> ConnectionRecord:
        response = await self._request("GET", f"/connections/{connection_id}")
        return ConnectionRecord.model_validate(response.json())

    async def create_connection(
        self, requester_id: str, recipient_id: str
    ) -> ConnectionRecord:
        response = await self._request(
            "POST",
            "/connections",
            json={"requesterId": requester_id, "recipientId": recipient_id},
        )
        return ConnectionRecord.model_validate(response.json())

    async def update_status(
        self, connection_id: str, status: ConnectionStatus, acting_user_id: str
    ) -> ConnectionRecord:
        # the acting user is the one of the session cookie
        response = await self._request(
            "PATCH", f"/connections/{connection_id}", json={"status": status.value}
        )
        return ConnectionRecord.model_validate(response.json())

    async def delete_connection(self, connection_id: str, acting_user_id: str):
        await self._request("DELETE", f"/connections/{connection_id}")

    @read_retry()
    async def get_profile(self, user_id: str) -> DisplayProfile:
        response = await self._request("GET", f"/profiles/{user_id}")
        return DisplayProfile.model_validate(response.json())

    async def subscribe(self, user_id: str) -> AsyncIterator[ChangeEvent | None]:
        # the server streams the feed of the session user
        timeout = httpx.Timeout(10.0, read=settings.FEED_KEEPALIVE_SECONDS * 3)
        try:
            async with self.client.stream(
                "GET", "/connections/feed", timeout=timeout
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise error_from_response(response)
                async for item in iter_sse(response.aiter_lines()):
                    yield item
        except httpx.TransportError as e:
            raise BackendUnavailable(f"Change feed interrupted: {e}") from e
