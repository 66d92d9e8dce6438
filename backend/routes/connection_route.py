import json
import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlmodel import Session

import settings
from models.common import CamelModel, get_session
from models.connection import (
    ConnectionRecord,
    ConnectionRole,
    ConnectionStatus,
    ConnectionView,
)
from models.profile import DisplayProfile, Profile
from routes.deps import current_user, rule_error_response
from services import connections
from services.change_feed import ChangeFeed, change_feed
from services.errors import (
    BackendUnavailable,
    ConnectionRuleError,
    NotAuthorized,
    NotFound,
)

logger = logging.getLogger("ideacollab.routes.connections")

router = APIRouter(prefix="/connections")


def get_change_feed() -> ChangeFeed:
    return change_feed


class ConnectionRequestBody(CamelModel):
    recipient_id: str
    requester_id: str | None = None


class StatusUpdateBody(CamelModel):
    status: ConnectionStatus


def _ensure_self(user: Profile, user_id: str | None):
    if user_id is not None and user_id != user.id:
        raise rule_error_response(NotAuthorized("You can only act as yourself."))


@router.get("")
async def list_connections(
    role: ConnectionRole,
    status: ConnectionStatus | None = None,
    user_id: str | None = Query(default=None, alias="userId"),
    session: Session = Depends(get_session),
    user: Profile = Depends(current_user),
) -> list[ConnectionView]:
    """Connections where the current user has `role`, newest first.

    The profile is the other party's one, null when it's missing.
    """
    _ensure_self(user, user_id)
    rows = connections.list_connections(
        session, user_id=user.id, role=role, status=status
    )
    return [
        ConnectionView(
            record=ConnectionRecord.model_validate(connection),
            profile=DisplayProfile.from_profile(profile) if profile else None,
        )
        for connection, profile in rows
    ]


@router.get("/feed")
async def connection_feed(
    request: Request,
    user: Profile = Depends(current_user),
    feed: ChangeFeed = Depends(get_change_feed),
):
    return StreamingResponse(
        _feed_stream(request, feed, user.id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


async def _feed_stream(request: Request, feed: ChangeFeed, user_id: str):
    # only subscribed while the body is being streamed
    async with feed.subscribe(user_id) as subscription:
        yield _sse("ready", json.dumps({"userId": subscription.user_id}))
        while True:
            try:
                event = await subscription.get(timeout=settings.FEED_KEEPALIVE_SECONDS)
            except StopAsyncIteration:
                return
            except BackendUnavailable:
                logger.warning(f"Closing the lagging feed of {subscription.user_id}")
                return
            if event is None:
                if await request.is_disconnected():
                    return
                yield ": keepalive\n\n"
                continue
            yield _sse("change", event.model_dump_json(by_alias=True))


@router.get("/between/{user_a}/{user_b}")
async def connection_between(
    user_a: str,
    user_b: str,
    session: Session = Depends(get_session),
    user: Profile = Depends(current_user),
) -> ConnectionRecord | None:
    if user.id not in (user_a, user_b):
        raise rule_error_response(NotAuthorized())
    connection = connections.find_connection_between(session, user_a, user_b)
    return ConnectionRecord.model_validate(connection) if connection else None


@router.get("/{connection_id}")
async def get_connection(
    connection_id: str,
    session: Session = Depends(get_session),
    user: Profile = Depends(current_user),
) -> ConnectionRecord:
    try:
        connection = connections.get_connection(session, connection_id)
    except ConnectionRuleError as e:
        raise rule_error_response(e) from e
    record = ConnectionRecord.model_validate(connection)
    if not record.involves(user.id):
        # other people's connections are invisible, not forbidden
        raise rule_error_response(NotFound())
    return record


@router.post("", status_code=201)
async def create_connection(
    body: ConnectionRequestBody,
    session: Session = Depends(get_session),
    user: Profile = Depends(current_user),
    feed: ChangeFeed = Depends(get_change_feed),
) -> ConnectionRecord:
    _ensure_self(user, body.requester_id)
    try:
        connection = connections.request_connection(
            session, requester_id=user.id, recipient_id=body.recipient_id, feed=feed
        )
    except ConnectionRuleError as e:
        raise rule_error_response(e) from e
    return ConnectionRecord.model_validate(connection)


@router.patch("/{connection_id}")
async def update_connection(
    connection_id: str,
    body: StatusUpdateBody,
    session: Session = Depends(get_session),
    user: Profile = Depends(current_user),
    feed: ChangeFeed = Depends(get_change_feed),
) -> ConnectionRecord:
    try:
        connection = connections.respond_to_connection(
            session,
            connection_id=connection_id,
            acting_user_id=user.id,
            status=body.status,
            feed=feed,
        )
    except ConnectionRuleError as e:
        raise rule_error_response(e) from e
    return ConnectionRecord.model_validate(connection)


@router.delete("/{connection_id}")
async def delete_connection(
    connection_id: str,
    session: Session = Depends(get_session),
    user: Profile = Depends(current_user),
    feed: ChangeFeed = Depends(get_change_feed),
):
    try:
        connections.cancel_connection(
            session, connection_id=connection_id, acting_user_id=user.id, feed=feed
        )
    except ConnectionRuleError as e:
        raise rule_error_response(e) from e
    return {"status": "ok"}

