# app/session.py
from typing import Callable, List, Optional
import logging

from app.data_model import UserProfile
from app.local_cache import LocalCache

logger = logging.getLogger("uvicorn.error")

Listener = Callable[["SessionContext"], None]


class SessionContext:
    """
    Current-user state, passed explicitly to whatever needs it.

    Observers register with subscribe() and get called after every change.
    bind_auth() ties the session to Supabase auth events; unbind_auth()
    must be called on shutdown to release the subscription.
    """

    def __init__(self, cache: Optional[LocalCache] = None):
        self.cache = cache
        self.user_id: Optional[str] = None
        self.profile: Optional[UserProfile] = None
        self._listeners: List[Listener] = []
        self._auth_subscription = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    # --- observers ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Session listener failed: {e}", exc_info=True)

    # --- state changes ---

    def sign_in(self, user_id: str, profile: Optional[UserProfile] = None) -> None:
        if profile is None and self.cache is not None:
            profile = self.cache.get_cached_profile(user_id)
        self.user_id = user_id
        self.profile = profile
        self._notify()

    def sign_out(self) -> None:
        if self.user_id is not None and self.cache is not None:
            self.cache.clear(self.user_id)
        self.user_id = None
        self.profile = None
        self._notify()

    def set_profile(self, profile: UserProfile) -> None:
        self.profile = profile
        self._notify()

    # --- remote auth ---

    def _on_auth_event(self, event, session) -> None:
        user = getattr(session, "user", None) if session is not None else None
        if event == "SIGNED_OUT" or user is None:
            if self.user_id is not None:
                self.sign_out()
            return
        if user.id != self.user_id:
            self.sign_in(user.id)

    def bind_auth(self, auth) -> None:
        if self._auth_subscription is not None:
            return
        self._auth_subscription = auth.on_auth_state_change(self._on_auth_event)

    def unbind_auth(self) -> None:
        subscription, self._auth_subscription = self._auth_subscription, None
        if subscription is not None:
            subscription.unsubscribe()
