import datetime
import uuid
from enum import Enum

from pydantic import ConfigDict
from sqlalchemy import CheckConstraint, Column, Index, text
from sqlmodel import SQLModel, Field

from .common import CamelModel
from .profile import DisplayProfile
from .types import UtcAwareDateTime

ACTIVE_STATUSES_SQL = "status IN ('pending', 'accepted')"


class ConnectionStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"

    @property
    def is_active(self) -> bool:
        """Pending and accepted rows block a new request for the same pair."""
        return self in (ConnectionStatus.pending, ConnectionStatus.accepted)


# Tie-breaker when two versions of a row carry the same updated_at
STATUS_RANK = {
    ConnectionStatus.pending: 0,
    ConnectionStatus.rejected: 1,
    ConnectionStatus.accepted: 2,
}


class Direction(str, Enum):
    outgoing = "outgoing"
    incoming = "incoming"


class ConnectionRole(str, Enum):
    requester = "requester"
    recipient = "recipient"


def canonical_pair(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a < b else (b, a)


class Connection(SQLModel, table=True):
    __tablename__ = "connections"
    __table_args__ = (
        Index(
            "uq_connection_active_pair",
            "user_low_id",
            "user_high_id",
            unique=True,
            sqlite_where=text(ACTIVE_STATUSES_SQL),
            postgresql_where=text(ACTIVE_STATUSES_SQL),
        ),
        CheckConstraint("requester_id <> recipient_id", name="ck_connection_not_self"),
    )

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    requester_id: str = Field(foreign_key="profiles.id", index=True)
    recipient_id: str = Field(foreign_key="profiles.id", index=True)

    # Canonical pair (always low < high)
    user_low_id: str = Field(index=True)
    user_high_id: str = Field(index=True)

    status: ConnectionStatus = Field(default=ConnectionStatus.pending, index=True)
    created_at: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc),
        sa_column=Column(UtcAwareDateTime(), nullable=False),
    )
    updated_at: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc),
        sa_column=Column(UtcAwareDateTime(), nullable=False),
    )

    @classmethod
    def between(cls, requester_id: str, recipient_id: str, **kwargs) -> "Connection":
        low, high = canonical_pair(requester_id, recipient_id)
        return cls(
            requester_id=requester_id,
            recipient_id=recipient_id,
            user_low_id=low,
            user_high_id=high,
            **kwargs,
        )


class ConnectionRecord(CamelModel):
    """Identity and state of a connection, as seen by a client."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    requester_id: str
    recipient_id: str
    status: ConnectionStatus
    created_at: datetime.datetime
    updated_at: datetime.datetime

    @property
    def pair(self) -> tuple[str, str]:
        return canonical_pair(self.requester_id, self.recipient_id)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.requester_id, self.recipient_id)

    def other_party(self, user_id: str) -> str:
        return self.recipient_id if user_id == self.requester_id else self.requester_id

    def direction_for(self, user_id: str) -> Direction | None:
        if user_id == self.requester_id:
            return Direction.outgoing
        if user_id == self.recipient_id:
            return Direction.incoming
        return None

    def supersedes(self, other: "ConnectionRecord") -> bool:
        """Last writer wins on updated_at, ties go to the more advanced status."""
        if self.updated_at != other.updated_at:
            return self.updated_at > other.updated_at
        return STATUS_RANK[self.status] >= STATUS_RANK[other.status]


class ConnectionView(CamelModel):
    """A connection with the display profile of the other party."""

    model_config = ConfigDict(frozen=True)

    record: ConnectionRecord
    profile: DisplayProfile | None = None

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def status(self) -> ConnectionStatus:
        return self.record.status


class ChangeType(str, Enum):
    insert = "insert"
    update = "update"
    delete = "delete"


class ChangeEvent(CamelModel):
    """A row-level change pushed on the realtime feed."""

    event_type: ChangeType
    old: ConnectionRecord | None = None
    new: ConnectionRecord | None = None
    commit_timestamp: datetime.datetime

    @property
    def record(self) -> ConnectionRecord | None:
        return self.new or self.old

    def concerns(self, user_id: str) -> bool:
        return any(r is not None and r.involves(user_id) for r in (self.old, self.new))
