# display profiles of the other parties, shared by the listener and the reconciler
import logging
from functools import partial

from expiringdict import ExpiringDict

import settings
from client.backend import ConnectionBackend
from models.profile import DisplayProfile
from services.errors import ConnectionRuleError

logger = logging.getLogger("ideacollab.cache")

new_cache = partial(
    ExpiringDict,
    max_len=10_000,
    max_age_seconds=settings.PROFILE_CACHE_SECONDS,
)


class ProfileCache:
    def __init__(self, backend: ConnectionBackend):
        self.backend = backend
        self.profiles = new_cache()

    def remember(self, user_id: str, profile: DisplayProfile | None):
        if profile is not None:
            self.profiles[user_id] = profile

    async def get(self, user_id: str) -> DisplayProfile:
        """The display profile of a user, the placeholder when it cannot be fetched."""
        profile = self.profiles.get(user_id)
        if profile is not None:
            return profile
        try:
            profile = await self.backend.get_profile(user_id)
        except ConnectionRuleError as e:
            logger.warning(f"Cannot fetch the profile of {user_id}: {e}")
            return DisplayProfile.placeholder()
        self.profiles[user_id] = profile
        return profile
