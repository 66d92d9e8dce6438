from dataclasses import dataclass
from typing import Literal

from client.store import ConnectionStore
from models.connection import ConnectionStatus, Direction

RelationshipState = Literal["none", "pending", "accepted", "rejected"]


@dataclass(frozen=True)
class RelationshipStatus:
    status: RelationshipState
    connection_id: str | None = None
    direction: Direction | None = None


NO_RELATIONSHIP = RelationshipStatus(status="none")


@dataclass(frozen=True)
class ConnectAction:
    label: str
    enabled: bool


def resolve_status(
    store: ConnectionStore, current_user_id: str, other_user_id: str
) -> RelationshipStatus:
    """Relationship between two users, as known to the store of `current_user_id`."""
    if current_user_id == other_user_id:
        return NO_RELATIONSHIP
    view = store.lookup(other_user_id)
    if view is None:
        return NO_RELATIONSHIP
    record = view.record
    return RelationshipStatus(
        status=record.status.value,
        connection_id=record.id,
        direction=record.direction_for(current_user_id),
    )


def connect_action(relationship: RelationshipStatus) -> ConnectAction:
    """Label and enablement of the connect button on a profile."""
    match relationship.status:
        case ConnectionStatus.pending.value:
            if relationship.direction == Direction.incoming:
                return ConnectAction("Accept", True)
            return ConnectAction("Pending", False)
        case ConnectionStatus.accepted.value:
            return ConnectAction("Connected", False)
        case ConnectionStatus.rejected.value:
            return ConnectAction("Request Connection Again", True)
    return ConnectAction("Connect", True)
