"""Profile models"""

import datetime

from sqlalchemy import func
from sqlmodel import SQLModel, Field, Column
from pydantic import ConfigDict

from .common import CamelModel
from .types import UtcAwareDateTime

UNKNOWN_USER_NAME = "Unknown User"


class Profile(SQLModel, CamelModel, table=True):
    """A member profile. The id is the auth provider's user id."""

    __tablename__ = "profiles"

    id: str = Field(primary_key=True)
    full_name: str | None = None
    title: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    onboarding_completed: bool = False
    created_at: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc),
        sa_column=Column(UtcAwareDateTime(), nullable=False),
    )
    updated_at: datetime.datetime | None = Field(
        default=None,
        sa_column=Column(UtcAwareDateTime(), onupdate=func.now(), nullable=True),
    )

    def __str__(self):
        return self.full_name or self.id


class DisplayProfile(CamelModel):
    """The display-only slice of a profile, joined next to a connection.

    It is never used to decide identity or state.
    """

    model_config = ConfigDict(frozen=True)

    full_name: str | None = None
    avatar_url: str | None = None
    title: str | None = None

    @classmethod
    def from_profile(cls, profile: Profile | None) -> "DisplayProfile":
        if profile is None:
            return cls.placeholder()
        return cls(
            full_name=profile.full_name,
            avatar_url=profile.avatar_url,
            title=profile.title,
        )

    @classmethod
    def placeholder(cls) -> "DisplayProfile":
        return cls(full_name=UNKNOWN_USER_NAME)

    @property
    def display_name(self) -> str:
        return self.full_name or UNKNOWN_USER_NAME
