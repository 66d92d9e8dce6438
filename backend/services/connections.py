import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from models.common import utcnow
from models.connection import (
    ChangeEvent,
    ChangeType,
    Connection,
    ConnectionRecord,
    ConnectionRole,
    ConnectionStatus,
    canonical_pair,
)
from models.profile import DisplayProfile, Profile
from models.types import next_timestamp
from services.change_feed import ChangeFeed, change_feed
from services.errors import (
    AlreadyConnected,
    AlreadyPending,
    InvalidState,
    NotAuthorized,
    NotFound,
)

logger = logging.getLogger("ideacollab.connections")


def _publish(
    feed: ChangeFeed,
    event_type: ChangeType,
    *,
    old: ConnectionRecord | None = None,
    new: ConnectionRecord | None = None,
):
    feed.publish(
        ChangeEvent(event_type=event_type, old=old, new=new, commit_timestamp=utcnow())
    )


def _pair_rows(session: Session, user_a: str, user_b: str) -> list[Connection]:
    low, high = canonical_pair(user_a, user_b)
    return list(
        session.exec(
            select(Connection)
            .where(Connection.user_low_id == low, Connection.user_high_id == high)
            .order_by(Connection.updated_at.desc())
        ).all()
    )


def _raise_for_active(connection: Connection):
    match connection.status:
        case ConnectionStatus.accepted:
            raise AlreadyConnected()
        case ConnectionStatus.pending:
            raise AlreadyPending()


def get_connection(session: Session, connection_id: str) -> Connection:
    connection = session.get(Connection, connection_id)
    if connection is None:
        raise NotFound()
    return connection


def find_connection_between(
    session: Session, user_a: str, user_b: str
) -> Connection | None:
    """The row currently describing the pair: the active one, else the latest."""
    rows = _pair_rows(session, user_a, user_b)
    for row in rows:
        if row.status.is_active:
            return row
    return rows[0] if rows else None


def request_connection(
    session: Session,
    *,
    requester_id: str,
    recipient_id: str,
    feed: ChangeFeed = change_feed,
) -> Connection:
    if requester_id == recipient_id:
        raise InvalidState("Cannot connect with yourself.")
    if session.get(Profile, recipient_id) is None:
        raise NotFound("User not found.")

    rows = _pair_rows(session, requester_id, recipient_id)
    for existing in rows:
        _raise_for_active(existing)

    # Re-request after a rejection: the stale rows make room for the new one
    stale = [ConnectionRecord.model_validate(row) for row in rows]
    for row in rows:
        session.delete(row)
    now = next_timestamp(max((r.updated_at for r in stale), default=None))
    connection = Connection.between(
        requester_id,
        recipient_id,
        status=ConnectionStatus.pending,
        created_at=now,
        updated_at=now,
    )
    session.add(connection)
    try:
        session.commit()
    except IntegrityError:
        # Lost a race with a concurrent request for the same pair
        session.rollback()
        logger.info(f"Duplicate request between {requester_id} and {recipient_id}")
        existing = find_connection_between(session, requester_id, recipient_id)
        if existing is not None:
            _raise_for_active(existing)
        raise AlreadyPending()

    for record in stale:
        logger.debug(f"Replacing rejected connection {record.id}")
        _publish(feed, ChangeType.delete, old=record)
    created = ConnectionRecord.model_validate(connection)
    _publish(feed, ChangeType.insert, new=created)
    logger.info(f"{requester_id} requested a connection with {recipient_id}")
    return connection


def respond_to_connection(
    session: Session,
    *,
    connection_id: str,
    acting_user_id: str,
    status: ConnectionStatus,
    feed: ChangeFeed = change_feed,
) -> Connection:
    if status not in (ConnectionStatus.accepted, ConnectionStatus.rejected):
        raise InvalidState(f"Cannot respond with {status.value}.")

    connection = get_connection(session, connection_id)
    if acting_user_id != connection.recipient_id:
        raise NotAuthorized("Only the recipient can respond to a connection request.")
    if connection.status != ConnectionStatus.pending:
        raise InvalidState(f"The request was already {connection.status.value}.")

    old = ConnectionRecord.model_validate(connection)
    connection.status = status
    connection.updated_at = next_timestamp(connection.updated_at)
    session.add(connection)
    session.commit()

    _publish(
        feed, ChangeType.update, old=old, new=ConnectionRecord.model_validate(connection)
    )
    logger.info(f"{acting_user_id} {status.value} connection {connection_id}")
    return connection


def cancel_connection(
    session: Session,
    *,
    connection_id: str,
    acting_user_id: str,
    feed: ChangeFeed = change_feed,
) -> ConnectionRecord:
    connection = get_connection(session, connection_id)
    if acting_user_id != connection.requester_id:
        raise NotAuthorized("Only the requester can cancel a connection request.")
    if connection.status != ConnectionStatus.pending:
        raise InvalidState("Only pending requests can be cancelled.")

    old = ConnectionRecord.model_validate(connection)
    session.delete(connection)
    session.commit()

    _publish(feed, ChangeType.delete, old=old)
    logger.info(f"{acting_user_id} cancelled connection {connection_id}")
    return old


def list_connections(
    session: Session,
    *,
    user_id: str,
    role: ConnectionRole,
    status: ConnectionStatus | None = None,
) -> list[tuple[Connection, Profile | None]]:
    """Connections where `user_id` has `role`, joined with the other party's profile."""
    if role == ConnectionRole.requester:
        own_column, other_column = Connection.requester_id, Connection.recipient_id
    else:
        own_column, other_column = Connection.recipient_id, Connection.requester_id

    query = (
        select(Connection, Profile)
        .join(Profile, Profile.id == other_column, isouter=True)
        .where(own_column == user_id)
    )
    if status is not None:
        query = query.where(Connection.status == status)
    query = query.order_by(Connection.created_at.desc())
    return [(connection, profile) for connection, profile in session.exec(query)]


def get_display_profile(session: Session, user_id: str) -> DisplayProfile:
    profile = session.get(Profile, user_id)
    if profile is None:
        raise NotFound("User not found.")
    return DisplayProfile.from_profile(profile)
