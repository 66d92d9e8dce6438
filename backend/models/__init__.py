"""Models package for the IdeaCollabHub backend"""

from .common import get_session, CamelModel
from .connection import (
    ChangeEvent,
    ChangeType,
    Connection,
    ConnectionRecord,
    ConnectionRole,
    ConnectionStatus,
    ConnectionView,
    Direction,
    canonical_pair,
)
from .profile import DisplayProfile, Profile
from .types import UtcAwareDateTime

__all__ = [
    "ChangeEvent",
    "ChangeType",
    "Connection",
    "ConnectionRecord",
    "ConnectionRole",
    "ConnectionStatus",
    "ConnectionView",
    "Direction",
    "DisplayProfile",
    "Profile",
    "UtcAwareDateTime",
    "canonical_pair",
    "get_session",
    "CamelModel",
]
