# app/profiles.py
from typing import Optional
import logging

from app.background import Dispatch, detached, run_in_background
from app.data_model import UserProfile
from app.data_storage import SupabaseStore
from app.local_cache import LocalCache
from app.supabase_client import PersistenceError

logger = logging.getLogger("uvicorn.error")


class ProfileRepository:
    def __init__(self, store: SupabaseStore, cache: LocalCache, dispatch: Optional[Dispatch] = None):
        self.store = store
        self.cache = cache
        self.dispatch = dispatch or run_in_background

    def load(self, user_id: str) -> Optional[UserProfile]:
        """
        Remote first; the cache answers when the store is unreachable.
        Raises PersistenceError when the store fails and nothing is cached.
        """
        cached = self.cache.get_cached_profile(user_id)
        try:
            # rows written before the language column existed keep the cached choice
            profile = self.store.get_profile(user_id, fallback_language=cached.language if cached else None)
        except PersistenceError as e:
            if cached is None:
                raise
            logger.error(f"Profile fetch failed, serving cache: {e}")
            return cached
        if profile is None:
            return None
        self.cache.set_cached_profile(user_id, profile)
        return profile

    def save(self, user_id: str, profile: UserProfile, dispatch: Optional[Dispatch] = None) -> None:
        """Cache synchronously; the remote upsert is fire-and-forget."""
        self.cache.set_cached_profile(user_id, profile)
        (dispatch or self.dispatch)(
            detached(self.store.upsert_profile, f"upsert profile {user_id}"), user_id, profile
        )
